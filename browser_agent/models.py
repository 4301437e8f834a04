"""数据模型定义"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionStatus(Enum):
    """远程浏览器会话状态"""
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    PROXYING = "PROXYING"
    TERMINATED = "TERMINATED"

    @classmethod
    def from_remote(cls, raw: Optional[str]) -> "SessionStatus":
        """把服务商返回的状态字符串映射为本地状态，未知或终态一律视为 TERMINATED"""
        value = (raw or "").upper()
        if value in ("STARTING", "PENDING"):
            return cls.STARTING
        if value == "RUNNING":
            return cls.RUNNING
        if value == "PROXYING":
            return cls.PROXYING
        return cls.TERMINATED


@dataclass
class Session:
    """单个远程浏览器会话"""
    id: str
    status: SessionStatus
    connect_url: Optional[str]
    live_view_url: Optional[str] = None
    current_url: str = ""
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        return self.status != SessionStatus.TERMINATED

    @property
    def is_attachable(self) -> bool:
        return self.status in (SessionStatus.RUNNING, SessionStatus.PROXYING) and bool(self.connect_url)

    def touch(self):
        self.last_activity_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.id,
            "status": self.status.value,
            "connectUrl": self.connect_url,
            "liveViewUrl": self.live_view_url,
            "currentUrl": self.current_url,
            "createdAt": self.created_at,
            "lastActivityAt": self.last_activity_at,
            "isActive": self.is_active,
        }


# ──────────────────────────────────────────────
# 动作（tagged union）
# ──────────────────────────────────────────────

SCROLL_DIRECTIONS = ("top", "bottom", "up", "down")
DEFAULT_WAIT_MS = 2000


@dataclass
class NavigateAction:
    url: str
    description: Optional[str] = None
    type = "navigate"


@dataclass
class SearchAction:
    query: str
    description: Optional[str] = None
    type = "search"


@dataclass
class ClickAction:
    target: str  # CSS 选择器或自然语言描述
    description: Optional[str] = None
    type = "click"


@dataclass
class TypeAction:
    text: str
    selector: Optional[str] = None
    description: Optional[str] = None
    type = "type"


@dataclass
class ExtractAction:
    description: Optional[str] = None
    type = "extract"


@dataclass
class ScrollAction:
    direction: str  # top|bottom|up|down
    description: Optional[str] = None
    type = "scroll"


@dataclass
class WaitAction:
    duration_ms: int = DEFAULT_WAIT_MS
    description: Optional[str] = None
    type = "wait"


@dataclass
class InvalidAction:
    """格式错误或不支持的动作，执行器直接记为失败，不会触碰页面"""
    raw_type: str
    reason: str
    raw: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None
    type = "invalid"


Action = Union[
    NavigateAction,
    SearchAction,
    ClickAction,
    TypeAction,
    ExtractAction,
    ScrollAction,
    WaitAction,
    InvalidAction,
]


def _text(data: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def action_from_dict(data: Any) -> Action:
    """
    把模型返回的松散字典校验为具体的动作类型。

    缺少必填字段或类型未知时返回 InvalidAction，而不是抛异常。
    """
    if not isinstance(data, dict):
        return InvalidAction(raw_type=type(data).__name__, reason="Action payload is not an object")

    kind = _text(data, "type").lower()
    description = _text(data, "description") or None

    if kind == "navigate":
        url = _text(data, "url")
        if not url:
            return InvalidAction(kind, "Navigate action missing URL", data, description)
        return NavigateAction(url=url, description=description)

    if kind == "search":
        query = _text(data, "query", "text")
        if not query:
            return InvalidAction(kind, "Search action missing query", data, description)
        return SearchAction(query=query, description=description)

    if kind == "click":
        target = _text(data, "selector", "target")
        if not target:
            return InvalidAction(kind, "Click action missing target", data, description)
        return ClickAction(target=target, description=description)

    if kind == "type":
        text = _text(data, "text", "value", "query")
        if not text:
            return InvalidAction(kind, "Type action missing text", data, description)
        return TypeAction(text=text, selector=_text(data, "selector") or None, description=description)

    if kind == "scroll":
        direction = _text(data, "direction", "target").lower()
        if direction not in SCROLL_DIRECTIONS:
            reason = "Scroll action missing direction" if not direction else f"Unsupported scroll direction: {direction}"
            return InvalidAction(kind, reason, data, description)
        return ScrollAction(direction=direction, description=description)

    if kind == "wait":
        raw_ms = data.get("duration_ms", data.get("durationMs", data.get("waitTime")))
        if raw_ms is None:
            return WaitAction(description=description)
        try:
            duration_ms = int(raw_ms)
        except (TypeError, ValueError):
            return InvalidAction(kind, f"Wait duration is not a number: {raw_ms!r}", data, description)
        if duration_ms < 0:
            return InvalidAction(kind, "Wait duration must not be negative", data, description)
        return WaitAction(duration_ms=duration_ms, description=description)

    if kind == "extract":
        return ExtractAction(description=description)

    return InvalidAction(kind or "unknown", f"Unknown action type: {kind or '(missing)'}", data, description)


def describe_action(action: Action) -> str:
    """动作的默认人类可读描述"""
    if action.description:
        return action.description
    if isinstance(action, NavigateAction):
        return f"Navigated to {action.url}"
    if isinstance(action, SearchAction):
        return f'Searched for "{action.query}"'
    if isinstance(action, ClickAction):
        return f'Clicked on "{action.target}"'
    if isinstance(action, TypeAction):
        return f'Typed "{action.text}"'
    if isinstance(action, ExtractAction):
        return "Extracted page content"
    if isinstance(action, ScrollAction):
        return f"Scrolled {action.direction}"
    if isinstance(action, WaitAction):
        return f"Waited {action.duration_ms}ms"
    return f"Invalid action: {action.raw_type}"


def action_to_dict(action: Action) -> Dict[str, Any]:
    data: Dict[str, Any] = {"type": action.type}
    if isinstance(action, NavigateAction):
        data["url"] = action.url
    elif isinstance(action, SearchAction):
        data["query"] = action.query
    elif isinstance(action, ClickAction):
        data["target"] = action.target
    elif isinstance(action, TypeAction):
        data["text"] = action.text
        if action.selector:
            data["selector"] = action.selector
    elif isinstance(action, ScrollAction):
        data["direction"] = action.direction
    elif isinstance(action, WaitAction):
        data["waitTime"] = action.duration_ms
    elif isinstance(action, InvalidAction):
        data["rawType"] = action.raw_type
        data["reason"] = action.reason
    if action.description:
        data["description"] = action.description
    return data


@dataclass
class ActionPlan:
    """Planner 输出的结构化动作计划，执行一次后丢弃"""
    intent: str
    actions: List[Action]
    platform: Optional[str] = None
    reasoning: Optional[str] = None
    source: str = "llm"  # llm|fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "platform": self.platform,
            "actions": [action_to_dict(a) for a in self.actions],
            "reasoning": self.reasoning,
            "source": self.source,
        }


@dataclass(frozen=True)
class ActionResult:
    """单个动作的执行结果，创建后不可变"""
    success: bool
    description: str
    data: Optional[Dict[str, Any]] = None
    screenshot: Optional[str] = None  # base64
    error: Optional[str] = None
    url: Optional[str] = None
    timestamp_ms: int = field(default_factory=now_ms)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "screenshot": self.screenshot,
            "error": self.error,
            "url": self.url,
            "description": self.description,
            "timestampMs": self.timestamp_ms,
            "durationMs": self.duration_ms,
        }


@dataclass
class InputSnapshot:
    """页面上单个输入框的快照，用于搜索失败时的诊断"""
    index: int
    selector: str
    tag: str
    name: Optional[str]
    input_type: Optional[str]
    placeholder: Optional[str]
    element_id: Optional[str]
    class_name: Optional[str]
    aria_label: Optional[str]
    visible: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "selector": self.selector,
            "tag": self.tag,
            "name": self.name,
            "type": self.input_type,
            "placeholder": self.placeholder,
            "id": self.element_id,
            "class": self.class_name,
            "ariaLabel": self.aria_label,
            "visible": self.visible,
        }


@dataclass
class IntentResult:
    is_command: bool
    confidence: float


@dataclass
class CommandResponse:
    """返回给调用方的统一响应"""
    success: bool
    message: str
    session_id: Optional[str] = None
    live_view_url: Optional[str] = None
    results: List[ActionResult] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    is_command: bool = True
    confidence: Optional[float] = None
    plan: Optional[ActionPlan] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "sessionId": self.session_id,
            "liveViewUrl": self.live_view_url,
            "results": [r.to_dict() for r in self.results],
            "actions": list(self.actions),
            "isBrowserCommand": self.is_command,
            "confidence": self.confidence,
            "parsedCommand": self.plan.to_dict() if self.plan else None,
        }
