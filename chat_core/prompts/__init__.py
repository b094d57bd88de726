"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取聊天场景的 system prompt 文本，
作为 ChatRequest.system 发送给 Provider。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "zh") -> str:
    """根据语言加载聊天系统提示词，未知语言回退到中文。"""

    fname = PROMPTS_DIR / locale / "chat_system.md"
    if not fname.exists():
        fname = PROMPTS_DIR / "zh" / "chat_system.md"
    return fname.read_text(encoding="utf-8")
