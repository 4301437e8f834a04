"""规划模块：把自然语言命令解析为动作计划

主路径调用 LLM 输出 JSON；LLM 不可用或输出无效时退回规则匹配。
parse() 永远返回可执行的计划，不会抛异常。
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import Settings
from .models import (
    Action,
    ActionPlan,
    ClickAction,
    ExtractAction,
    InvalidAction,
    NavigateAction,
    SearchAction,
    action_from_dict,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert browser automation assistant.
Parse the user's natural language command into a sequence of structured browser actions.

Common patterns:
1. Profile/person search: "go to [Person]'s [Platform] page"
   -> navigate to a search engine -> search for the person -> click the first result
2. Topic search: "search for [topic]" or "find [topic]" -> search on the current page
3. Content extraction: "read all posts" or "get the articles" -> extract
4. Navigation: "go to [website]" or "open [site]" -> navigate directly to the URL
5. Interaction: "click [element]" or "type [text]" -> interact with page elements

You must respond with a single JSON object and nothing else:
{
  "intent": "brief description of the user's intent",
  "platform": "platform name if applicable (linkedin, google, ...) or null",
  "actions": [
    {
      "type": "navigate|search|click|type|extract|scroll|wait",
      "url": "absolute URL, navigate only",
      "query": "search query, search only",
      "target": "element description, click only",
      "selector": "robust Playwright selector (CSS or text) for click/type, optional",
      "text": "text to type, type only",
      "direction": "top|bottom|up|down, scroll only",
      "waitTime": 2000,
      "description": "human readable description"
    }
  ],
  "reasoning": "brief explanation of your interpretation"
}

Every navigate needs a url, every search a query, every click a target or selector,
every type a text and every scroll a direction. Keep actions simple and executable."""

# 平台名 → 用来搜索个人主页的入口
PLATFORM_SEARCH_URLS = {
    "linkedin": "https://www.google.com",
    "github": "https://www.google.com",
    "twitter": "https://www.google.com",
    "facebook": "https://www.google.com",
    "instagram": "https://www.google.com",
    "youtube": "https://www.google.com",
}

_VERBS = r"(?:please\s+)?(?:go\s+to|find|open|visit|show\s+me|pull\s+up|look\s+up|search\s+for)"
SEARCH_RE = re.compile(
    r"(?:\b(?:search\s+for|look\s+up|lookup|find)\s+|\bsearch:\s*)['\"“”]?([^'\"“”\n]+)['\"“”]?",
    re.IGNORECASE,
)
NAVIGATE_RE = re.compile(r"\b(?:go\s+to|navigate\s+to|navigate|open|visit)\s+(\S+)", re.IGNORECASE)
SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def normalize_url(raw: str) -> str:
    """
    没有协议时补上 https://，并去掉开头的非字母数字噪声。
    已带协议的 URL 原样返回。
    """
    url = (raw or "").strip().strip("\"'<>")
    url = url.rstrip(".,;!?")
    if not url:
        return ""
    if SCHEME_RE.match(url):
        return url
    url = re.sub(r"^[^a-z0-9]+", "", url, flags=re.IGNORECASE)
    return f"https://{url}" if url else ""


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    从模型输出中取出第一个完整的 JSON 对象。

    按括号深度匹配，忽略字符串内的花括号，所以 reasoning 里出现 { } 也不会截错。
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is not None:
            try:
                value = json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                value = None
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return None


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def plan_from_dict(data: Dict[str, Any]) -> Optional[ActionPlan]:
    """LLM 输出 → ActionPlan；没有任何有效动作时返回 None"""
    raw_actions = data.get("actions")
    if not isinstance(raw_actions, list):
        return None
    actions: List[Action] = [action_from_dict(item) for item in raw_actions]
    if not any(not isinstance(a, InvalidAction) for a in actions):
        return None
    platform = data.get("platform")
    reasoning = data.get("reasoning")
    return ActionPlan(
        intent=str(data.get("intent") or "browser_command"),
        actions=actions,
        platform=platform if isinstance(platform, str) and platform else None,
        reasoning=reasoning if isinstance(reasoning, str) and reasoning else None,
        source="llm",
    )


# ──────────────────────────────────────────────
# 规则匹配 (fallback)
# ──────────────────────────────────────────────

def _platform_profile_plan(text: str, lowered: str) -> Optional[ActionPlan]:
    match = re.search(r"\b(" + "|".join(PLATFORM_SEARCH_URLS) + r")\b", lowered)
    if not match:
        return None
    platform = match.group(1)

    wants_profile = "page" in lowered or "profile" in lowered
    patterns = [rf"^(?:{_VERBS}\s+)?(.+?)(?:'s?|’s?)\s+{platform}\b"]
    # "X on linkedin" 只有明确提到 page/profile 时才算找人，否则是普通搜索
    if wants_profile:
        patterns.append(rf"^(?:{_VERBS}\s+)?(.+?)\s+on\s+{platform}\b")

    name = ""
    for pattern in patterns:
        m = re.search(pattern, text, re.IGNORECASE)
        if m and m.group(1).strip():
            name = m.group(1).strip()
            break

    if not name:
        if wants_profile:
            logger.info("检测到 %s 主页请求，但没有提取到人名", platform)
        return None

    query = f"{name} {platform}"
    return ActionPlan(
        intent=f"find_{platform}_profile",
        platform=platform,
        actions=[
            NavigateAction(url=PLATFORM_SEARCH_URLS[platform], description=f"Navigate to search for {platform} profile"),
            SearchAction(query=query, description=f'Search for "{query}"'),
            ClickAction(target="first profile result", description="Click on the first profile result"),
        ],
        reasoning=f'Fallback parsing: detected {platform} profile search for "{name}"',
        source="fallback",
    )


def _search_plan(text: str) -> Optional[ActionPlan]:
    match = SEARCH_RE.search(text)
    if not match:
        return None
    query = match.group(1).strip().rstrip(".?!")
    if not query:
        return None

    actions: List[Action] = []
    navigate = NAVIGATE_RE.search(text)
    # "go to google.com and search for cats"：先导航再搜索
    if navigate and navigate.start() < match.start():
        url = normalize_url(navigate.group(1))
        if url:
            actions.append(NavigateAction(url=url, description=f"Navigate to {url}"))
    actions.append(SearchAction(query=query, description=f'Search for "{query}"'))
    return ActionPlan(
        intent="search_content",
        actions=actions,
        reasoning=f'Fallback parsing: detected search command for "{query}"',
        source="fallback",
    )


def _navigate_plan(text: str) -> Optional[ActionPlan]:
    match = NAVIGATE_RE.search(text)
    if not match:
        return None
    url = normalize_url(match.group(1))
    if not url:
        return None
    return ActionPlan(
        intent="navigate_to_url",
        actions=[NavigateAction(url=url, description=f"Navigate to {url}")],
        reasoning=f'Fallback parsing: detected navigation to "{url}"',
        source="fallback",
    )


def fallback_plan(command: str) -> ActionPlan:
    """规则匹配，结果永远非空"""
    text = (command or "").strip()
    lowered = text.lower()

    plan = _platform_profile_plan(text, lowered) or _search_plan(text) or _navigate_plan(text)
    if plan is not None:
        return plan

    if not text:
        return ActionPlan(
            intent="capture_current_page",
            actions=[ExtractAction(description="Captured the current page")],
            reasoning="Fallback parsing: empty command, capturing the current page",
            source="fallback",
        )

    return ActionPlan(
        intent="general_command",
        actions=[SearchAction(query=text, description=f"Execute: {text}")],
        reasoning="Fallback parsing: treating as general search command",
        source="fallback",
    )


class Planner:
    """规划模块：调用 LLM 解析命令，失败时退回规则匹配"""

    def __init__(self, client: Optional[AsyncOpenAI], model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "Planner":
        if not settings.has_llm:
            return cls(None, settings.openai_model)
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        return cls(client, settings.openai_model)

    async def parse(self, command: str) -> ActionPlan:
        if self.client is None:
            return fallback_plan(command)

        try:
            plan = await self._ask_llm(command)
        except Exception as e:
            logger.warning("⚠ LLM 解析失败，改用规则匹配: %s", e)
            return fallback_plan(command)

        if plan is None:
            logger.warning("⚠ LLM 输出中没有可用的动作，改用规则匹配")
            return fallback_plan(command)

        logger.info("🧠 LLM 解析结果: intent=%s, %d 个动作", plan.intent, len(plan.actions))
        return plan

    async def _ask_llm(self, command: str) -> Optional[ActionPlan]:
        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f'User command: "{command}"'},
            ],
        )
        output_str = response.choices[0].message.content or ""
        data = extract_json_object(output_str)
        if data is None:
            logger.warning("JSON 解析失败, 原始输出: %s", output_str)
            return None
        return plan_from_dict(data)
