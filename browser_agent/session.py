"""会话管理：远程浏览器会话的创建、复用与销毁

每个 SessionManager 实例只持有一个远程会话，由调用方注入使用。
"""

import asyncio
import atexit
import base64
import logging
from typing import Any, Dict, Optional, Set

import httpx
from playwright.async_api import Page

from .config import Settings
from .errors import RemoteAPIError, SessionError
from .models import Session, SessionStatus
from .remote import BrowserbaseClient, BrowserConnection, CDPConnector

logger = logging.getLogger(__name__)

# 降低自动化检测特征的启动参数
STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]

VIEWPORT = {"width": 1440, "height": 900}


class SessionManager:
    """远程浏览器会话的生命周期管理"""

    def __init__(
        self,
        client: BrowserbaseClient,
        connector: Optional[CDPConnector] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.connector = connector or CDPConnector()
        self.settings = settings or Settings()
        self.session: Optional[Session] = None
        self.connection: Optional[BrowserConnection] = None
        self._init_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._exit_hook_registered = False

    @property
    def browser_settings(self) -> Dict[str, Any]:
        return {"args": list(STEALTH_ARGS), "viewport": dict(VIEWPORT)}

    async def ensure_active(self) -> Session:
        """
        返回当前可用的会话，没有则创建。

        并发调用时只会发起一次创建请求，所有等待者共享同一个结果（或同一个异常）。
        """
        if self.session is not None and self.session.is_active:
            return self.session

        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._create())
            self._init_task.add_done_callback(_consume_exception)
        else:
            logger.info("⏳ 会话正在创建中，等待已有的创建请求完成...")

        # shield：单个等待者被取消不会中断其他等待者共享的创建过程
        return await asyncio.shield(self._init_task)

    async def _create(self) -> Session:
        self.settings.require_browserbase()

        if self.session is not None:
            logger.info("🧹 本地仍持有失效会话 %s，先关闭", self.session.id)
            await self.close()

        logger.info("🚀 创建 Browserbase 会话，stealth 参数: %s", STEALTH_ARGS)
        request = asyncio.ensure_future(
            self.client.create_session(
                browser_settings=self.browser_settings,
                keep_alive=True,
                timeout_s=self.settings.session_timeout_s,
            )
        )
        try:
            data = await asyncio.shield(request)
        except asyncio.CancelledError:
            # POST 已经发出，服务商那边可能已经建好了会话
            request.add_done_callback(self._delete_orphan)
            raise
        except (RemoteAPIError, httpx.HTTPError) as e:
            raise SessionError(f"Failed to create browser session: {e}") from e

        if not data or not data.get("id"):
            raise SessionError("Failed to initialize session or session ID missing.")

        session = Session(
            id=data["id"],
            status=SessionStatus.from_remote(data.get("status")),
            connect_url=data.get("connectUrl"),
        )
        self.session = session
        logger.info("✓ 会话已创建 %s (status=%s)", session.id, session.status.value)

        try:
            if session.status == SessionStatus.STARTING:
                await self._wait_until_running(session)
            if not session.is_attachable:
                raise SessionError(
                    f"Session {session.id} is {session.status.value} and cannot be attached"
                    + ("" if session.connect_url else " (no connectUrl)")
                )
            await self._attach(session)
        except Exception as e:
            logger.error("❌ 会话 %s 连接失败，销毁会话: %s", session.id, e)
            await self.close()
            if isinstance(e, SessionError):
                raise
            raise SessionError(f"Playwright connection failed: {e}") from e

        session.live_view_url = await self.client.get_live_view_url(session.id)
        return session

    def _delete_orphan(self, request: asyncio.Future):
        """创建过程被取消后，POST 仍然成功返回的会话需要删掉"""
        if request.cancelled() or request.exception() is not None:
            return
        session_id = (request.result() or {}).get("id")
        if not session_id:
            return
        logger.info("🧹 创建被取消，删除已建好的会话 %s", session_id)
        task = asyncio.ensure_future(self._delete_quietly(session_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _delete_quietly(self, session_id: str):
        try:
            await self.client.delete_session(session_id)
        except (RemoteAPIError, httpx.HTTPError) as e:
            logger.warning("⚠ 删除会话 %s 失败: %s", session_id, e)

    async def _wait_until_running(self, session: Session):
        """会话处于 STARTING 时轮询状态，直到可以连接或超时"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.session_start_timeout_s
        while session.status == SessionStatus.STARTING:
            if loop.time() >= deadline:
                raise SessionError(
                    f"Session {session.id} still STARTING after {self.settings.session_start_timeout_s}s"
                )
            await asyncio.sleep(self.settings.session_poll_interval_s)
            data = await self.client.get_session(session.id)
            session.status = SessionStatus.from_remote(data.get("status"))
            session.connect_url = data.get("connectUrl") or session.connect_url
            logger.info("⏳ 会话 %s 状态: %s", session.id, session.status.value)

    async def _attach(self, session: Session):
        if not session.connect_url:
            raise SessionError(f"Missing connectUrl for session {session.id}")
        logger.info("🔌 连接 Playwright 到会话 %s", session.id)
        connection = await self.connector.connect(session.connect_url)
        self.connection = connection
        session.current_url = connection.page.url

    async def page(self) -> Page:
        """返回当前会话的页面，连接断开时重新附着"""
        session = await self.ensure_active()
        if self.connection is None or not self.connection.is_connected:
            try:
                await self._attach(session)
            except Exception as e:
                logger.error("❌ 重新连接会话 %s 失败: %s", session.id, e)
                await self.close()
                raise SessionError(f"Playwright connection failed: {e}") from e
        return self.connection.page

    def touch(self):
        if self.session is not None:
            self.session.touch()

    def record_url(self, url: str):
        if self.session is not None:
            self.session.current_url = url

    async def refresh_live_view_url(self) -> Optional[str]:
        """从 debug 接口刷新实时画面 URL；失败只记日志，保留原值"""
        session = self.session
        if session is None:
            return None
        try:
            data = await self.client.get_debug_urls(session.id)
            url = data.get("debuggerFullscreenUrl")
            if url and url != session.live_view_url:
                session.live_view_url = url
                logger.info("🔗 实时画面 URL 已更新: %s", url)
        except (RemoteAPIError, httpx.HTTPError, ValueError) as e:
            logger.warning("⚠ 无法刷新实时画面 URL: %s", e)
        return session.live_view_url

    async def capture_screenshot(self) -> str:
        """截图（base64）：优先 REST 接口，失败时改用 CDP"""
        session = await self.ensure_active()
        try:
            return await self.client.get_screenshot(session.id)
        except (RemoteAPIError, httpx.HTTPError, ValueError) as e:
            logger.info("REST 截图失败 (%s)，改用 CDP 截图", e)
        page = await self.page()
        raw = await page.screenshot(type="png")
        return base64.b64encode(raw).decode("ascii")

    async def close(self):
        """
        关闭会话，可重复调用。

        顺序：断开 CDP 连接 → 调用远程 DELETE（404 视为成功）→ 无条件清空本地状态。
        """
        if self._init_task is not None and not self._init_task.done() and self._init_task is not asyncio.current_task():
            self._init_task.cancel()

        session, connection = self.session, self.connection
        if session is None and connection is None:
            logger.info("🤷 没有需要关闭的会话")
            return

        self.connection = None
        try:
            if connection is not None:
                try:
                    await connection.close()
                    logger.info("🎭 Playwright 连接已断开")
                except Exception as e:
                    logger.warning("⚠ 断开 Playwright 连接失败: %s", e)

            if session is not None:
                session.status = SessionStatus.TERMINATED
                try:
                    if await self.client.delete_session(session.id):
                        logger.info("✓ 会话 %s 已删除", session.id)
                except (RemoteAPIError, httpx.HTTPError) as e:
                    logger.warning("⚠ 删除会话 %s 失败: %s", session.id, e)
        finally:
            self.session = None
            logger.info("👻 本地会话状态已清空")

    def release_on_unload(self) -> Optional[str]:
        """
        页面卸载时的尽力清理，不阻塞调用方。

        有运行中的事件循环时在后台执行 close()，否则发送 beacon 删除请求。
        """
        session = self.session
        if session is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.close())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            self._beacon_release()
        return session.id

    def _beacon_release(self):
        session = self.session
        self.session = None
        self.connection = None
        if session is None:
            return
        session.status = SessionStatus.TERMINATED
        self.client.send_beacon_delete(session.id)

    def register_exit_cleanup(self):
        """进程退出时尽力删除远程会话"""
        if self._exit_hook_registered:
            return
        atexit.register(self._beacon_release)
        self._exit_hook_registered = True

    def snapshot(self) -> Dict[str, Any]:
        if self.session is None:
            return {"isActive": False, "sessionId": None, "initializing": self.initializing}
        data = self.session.to_dict()
        data["attached"] = self.connection is not None and self.connection.is_connected
        data["initializing"] = self.initializing
        return data

    @property
    def initializing(self) -> bool:
        return self._init_task is not None and not self._init_task.done()


def _consume_exception(task: asyncio.Task):
    # 所有等待者都被取消时，避免 "exception was never retrieved"
    if not task.cancelled():
        task.exception()
