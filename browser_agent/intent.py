"""意图检测：判断一条消息是不是浏览器命令（纯函数，无 I/O）"""

from typing import Dict, Tuple

from .models import IntentResult

COMMAND_PREFIX = ">"

# 按类别分组的关键词；置信度按命中的类别数计算
KEYWORD_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "navigation": ("go to", "open", "navigate", "visit", "browse", "website", "url", "page"),
    "interaction": (
        "click", "press", "tap", "select", "choose",
        "type", "enter", "input", "fill", "write",
        "scroll", "login", "sign in", "register", "submit",
    ),
    "search": ("search for", "search:", "search", "find", "lookup", "look up", "look for"),
    "capture": ("screenshot", "capture", "image", "picture"),
    "sites": ("google", "linkedin", "facebook", "twitter", "github", "youtube", "instagram"),
}

CONFIDENCE_PER_CATEGORY = 0.3
THRESHOLD = 0.2


def detect(message: str) -> IntentResult:
    """
    显式前缀 `>` 直接返回 1.0；
    否则 confidence = min(1.0, 0.3 × 命中的类别数)，大于 0.2 视为命令。
    """
    text = (message or "").strip()
    if text.startswith(COMMAND_PREFIX):
        return IntentResult(is_command=True, confidence=1.0)

    lowered = text.lower()
    matched = sum(
        1 for keywords in KEYWORD_CATEGORIES.values()
        if any(keyword in lowered for keyword in keywords)
    )
    confidence = min(1.0, round(matched * CONFIDENCE_PER_CATEGORY, 2))
    return IntentResult(is_command=confidence > THRESHOLD, confidence=confidence)


def strip_command_prefix(message: str) -> str:
    text = (message or "").strip()
    if text.startswith(COMMAND_PREFIX):
        return text[len(COMMAND_PREFIX):].strip()
    return text
