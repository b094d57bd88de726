"""Provider 配置。

集中维护各 Provider 的基础地址与模型别名：

- 请求中的模型 ID 默认原样透传给厂商（例如 "google/gemma-2-9b-it"）。
- aliases 允许使用简短的逻辑名，便于后续升级或切换底层模型。
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    aliases: Dict[str, str] = field(default_factory=dict)

    def resolve_model(self, model: str) -> str:
        return self.aliases.get(model, model)


OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    aliases={
        "default": "google/gemma-2-9b-it",
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openrouter": OPENROUTER_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
