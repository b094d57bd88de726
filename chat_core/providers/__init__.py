"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 配置 (registry)。
- 提供各厂商的具体实现 (如 openrouter_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.providers.base import ProviderClient
from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = name or getattr(settings, "default_provider", "openrouter")
    try:
        config = get_provider_config(provider_name)
    except KeyError:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")
    if config.name == "openrouter":
        return OpenRouterClient(settings, config)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"No client for provider: {config.name}")
