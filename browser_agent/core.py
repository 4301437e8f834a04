"""浏览器自动化核心类：意图检测 → 解析 → 执行 → 汇总"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .aggregator import ResultAggregator
from .config import Settings
from .controller import Controller
from .errors import ConfigurationError, RemoteAPIError, SessionError
from .intent import detect, strip_command_prefix
from .models import ActionResult, CommandResponse
from .planner import Planner
from .remote import BrowserbaseClient, CDPConnector
from .session import SessionManager

logger = logging.getLogger(__name__)

NOT_A_COMMAND_MESSAGE = (
    "This doesn't appear to be a browser automation command. Try commands like "
    '"go to google.com", "search for something", "take a screenshot", '
    'or prefix with ">" for explicit browser commands.'
)


class BrowserAgent:
    """
    一个实例驱动一个远程会话，服务一段对话。

    同一时间只执行一条命令：新命令会取消并等待正在执行的旧命令。
    """

    def __init__(
        self,
        session_manager: SessionManager,
        planner: Planner,
        controller: Controller,
        aggregator: Optional[ResultAggregator] = None,
    ):
        self.session_manager = session_manager
        self.planner = planner
        self.controller = controller
        self.aggregator = aggregator or ResultAggregator(session_manager)
        self._current: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserAgent":
        client = BrowserbaseClient(
            api_key=settings.browserbase_api_key,
            project_id=settings.browserbase_project_id,
            api_base=settings.browserbase_api_base,
            timeout=settings.http_timeout_s,
        )
        session_manager = SessionManager(client, CDPConnector(), settings)
        return cls(
            session_manager=session_manager,
            planner=Planner.from_settings(settings),
            controller=Controller(session_manager, settle_delay=settings.action_settle_ms / 1000),
        )

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    async def handle_message(self, message: str, chat_id: Optional[str] = None) -> CommandResponse:
        intent = detect(message)
        logger.info("🎯 意图检测 chat=%s: is_command=%s confidence=%.2f", chat_id, intent.is_command, intent.confidence)
        if not intent.is_command:
            return CommandResponse(
                success=False,
                message=NOT_A_COMMAND_MESSAGE,
                is_command=False,
                confidence=intent.confidence,
            )

        command = strip_command_prefix(message)
        # 循环到没有运行中的命令为止；循环结束到设置 _current 之间不能有 await
        while self._current is not None and not self._current.done():
            previous = self._current
            logger.info("⏹ 新命令到达，取消正在执行的命令")
            previous.cancel()
            await asyncio.wait({previous})

        task = asyncio.ensure_future(self._run(command))
        self._current = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # 调用方自己被取消（例如客户端断开）
            task.cancel()
            raise
        finally:
            if self._current is task:
                self._current = None

        if task.cancelled():
            session = self.session_manager.session
            return CommandResponse(
                success=False,
                message=f"⏹ Command cancelled: {command}",
                session_id=session.id if session else None,
                live_view_url=session.live_view_url if session else None,
                confidence=intent.confidence,
            )

        response = task.result()
        response.confidence = intent.confidence
        return response

    async def _run(self, command: str) -> CommandResponse:
        logger.info("🧠 解析命令: %s", command)
        plan = await self.planner.parse(command)

        try:
            results = await self.controller.execute(plan)
        except (SessionError, ConfigurationError) as e:
            logger.error("❌ 无法建立浏览器会话: %s", e)
            failure = ActionResult(success=False, description="Failed to start browser session", error=str(e))
            return CommandResponse(
                success=False,
                message=f"❌ Failed to execute: {plan.intent} (browser session unavailable: {e})",
                results=[failure],
                actions=[failure.description],
                plan=plan,
            )

        return await self.aggregator.aggregate(plan, results)

    def stop(self) -> bool:
        """取消正在执行的命令，返回是否真的取消了"""
        if self._current is not None and not self._current.done():
            self._current.cancel()
            return True
        return False

    async def end_session(self, session_id: str) -> Dict[str, Any]:
        """
        结束指定会话，可重复调用。

        与本实例持有的会话一致时走完整的 close()，否则只调用远程 DELETE；404 视为成功。
        """
        self.session_manager.settings.require_browserbase()

        current = self.session_manager.session
        if current is not None and current.id == session_id:
            self.stop()
            await self.session_manager.close()
            return {"success": True, "message": f"Session {session_id} closed"}

        try:
            deleted = await self.session_manager.client.delete_session(session_id)
        except (RemoteAPIError, httpx.HTTPError) as e:
            logger.error("❌ 删除会话 %s 失败: %s", session_id, e)
            return {
                "success": False,
                "error": f"Failed to terminate session {session_id}: {e}",
                "statusCode": e.status_code if isinstance(e, RemoteAPIError) else 500,
            }

        status = "Terminated" if deleted else "Already_Gone"
        return {"success": True, "message": f"Session {session_id} cleanup processed. Status: {status}"}

    def release_on_unload(self) -> Optional[str]:
        self.stop()
        return self.session_manager.release_on_unload()

    def status(self) -> Dict[str, Any]:
        data = self.session_manager.snapshot()
        data["commandInFlight"] = self.busy
        return data

    async def shutdown(self):
        self.stop()
        await self.session_manager.close()
        await self.session_manager.client.aclose()
