"""Remote Browser Agent 包

包含各个模块：
- models: 数据模型
- intent: 意图检测
- planner: 命令解析（LLM + 规则匹配）
- remote: Browserbase REST / CDP 客户端
- session: 会话管理
- perception: 页面感知
- controller: 动作执行
- aggregator: 结果汇总
- core: 核心 BrowserAgent 类
- server: HTTP 接口
"""

from .models import ActionPlan, ActionResult, CommandResponse, Session, SessionStatus
from .intent import detect
from .planner import Planner, fallback_plan, normalize_url
from .remote import BrowserbaseClient, CDPConnector
from .session import SessionManager
from .controller import Controller
from .aggregator import ResultAggregator
from .core import BrowserAgent

__all__ = [
    "ActionPlan",
    "ActionResult",
    "CommandResponse",
    "Session",
    "SessionStatus",
    "detect",
    "Planner",
    "fallback_plan",
    "normalize_url",
    "BrowserbaseClient",
    "CDPConnector",
    "SessionManager",
    "Controller",
    "ResultAggregator",
    "BrowserAgent",
]
