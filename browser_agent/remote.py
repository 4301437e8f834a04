"""远程控制客户端：Browserbase REST 接口 + CDP 连接

只负责传输，不包含业务逻辑。
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .errors import RemoteAPIError

logger = logging.getLogger(__name__)

DASHBOARD_URL = "https://www.browserbase.com/sessions/{session_id}"


class BrowserbaseClient:
    """Browserbase 会话管理 API 的薄封装"""

    def __init__(
        self,
        api_key: Optional[str],
        project_id: Optional[str],
        api_base: str = "https://api.browserbase.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-bb-api-key": self.api_key or "", "Content-Type": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug("→ %s %s%s", method, self.api_base, path)
        response = await self._get_client().request(method, path, **kwargs)
        if response.is_success:
            return response
        logger.error("❌ Browserbase API 错误: %s %s -> %s %s", method, path, response.status_code, response.text)
        raise RemoteAPIError(response.status_code, response.text, method=method, path=path)

    async def create_session(
        self,
        browser_settings: Dict[str, Any],
        keep_alive: bool = True,
        timeout_s: int = 3600,
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            "/sessions",
            json={
                "projectId": self.project_id,
                "keepAlive": keep_alive,
                "timeout": timeout_s,
                "browserSettings": browser_settings,
            },
        )
        return response.json()

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/sessions/{session_id}")
        return response.json()

    async def delete_session(self, session_id: str) -> bool:
        """
        删除会话。

        返回 True 表示已删除，False 表示会话本来就不存在（404）。
        其他非 2xx 状态抛出 RemoteAPIError。
        """
        try:
            await self._request("DELETE", f"/sessions/{session_id}")
        except RemoteAPIError as e:
            if e.is_not_found:
                logger.info("☑ 会话 %s 已不存在 (404)，视为删除成功", session_id)
                return False
            raise
        return True

    async def get_debug_urls(self, session_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/sessions/{session_id}/debug")
        return response.json()

    async def get_live_view_url(self, session_id: str) -> str:
        """
        获取实时画面 URL，依次尝试 live-urls 接口、debug 接口，
        最后退回到控制台地址。不会抛异常。
        """
        try:
            response = await self._request("GET", f"/sessions/{session_id}/live-urls")
            data = response.json()
            url = data.get("debuggerFullscreenUrl") or data.get("debuggerUrl") or data.get("liveViewUrl")
            if url:
                return url
        except (httpx.HTTPError, RemoteAPIError, ValueError) as e:
            logger.debug("live-urls 接口不可用: %s", e)

        try:
            data = await self.get_debug_urls(session_id)
            url = data.get("debuggerFullscreenUrl") or data.get("debuggerUrl")
            if url:
                return url
        except (httpx.HTTPError, RemoteAPIError, ValueError) as e:
            logger.warning("⚠ debug 接口也失败了: %s", e)

        return DASHBOARD_URL.format(session_id=session_id)

    async def get_screenshot(self, session_id: str) -> str:
        response = await self._request("GET", f"/sessions/{session_id}/screenshot")
        data = response.json()
        screenshot = data.get("screenshot") or data.get("data")
        if not screenshot:
            raise RemoteAPIError(response.status_code, "Screenshot payload missing", "GET", f"/sessions/{session_id}/screenshot")
        return screenshot

    def send_beacon_delete(self, session_id: str, join_timeout: float = 0.5) -> threading.Thread:
        """
        尽力而为的删除请求（类似浏览器的 sendBeacon）。

        在后台守护线程里发送 DELETE，最多等待 join_timeout 秒，
        进程退出时可能来不及完成。
        """
        url = f"{self.api_base}/sessions/{session_id}"
        headers = self.headers
        transport = self._transport

        def _send():
            try:
                with httpx.Client(timeout=5.0, transport=transport) as client:
                    response = client.delete(url, headers=headers)
                logger.info("📡 beacon 删除会话 %s -> %s", session_id, response.status_code)
            except Exception as e:
                logger.warning("⚠ beacon 删除会话 %s 失败: %s", session_id, e)

        thread = threading.Thread(target=_send, name=f"bb-beacon-{session_id}", daemon=True)
        thread.start()
        thread.join(join_timeout)
        return thread


@dataclass
class BrowserConnection:
    """一条已建立的 CDP 连接"""
    playwright: Optional[Playwright]
    browser: Browser
    context: BrowserContext
    page: Page

    @property
    def is_connected(self) -> bool:
        return self.browser.is_connected()

    async def close(self):
        """断开连接并停止 Playwright；重复调用无副作用"""
        try:
            if self.browser.is_connected():
                await self.browser.close()
        finally:
            if self.playwright is not None:
                playwright, self.playwright = self.playwright, None
                await playwright.stop()


class CDPConnector:
    """通过 connectUrl 附着到远程浏览器"""

    def __init__(self, timeout_ms: int = 30000):
        self.timeout_ms = timeout_ms

    async def connect(self, connect_url: str) -> BrowserConnection:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(connect_url, timeout=self.timeout_ms)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
        except BaseException:
            await playwright.stop()
            raise
        logger.info("✓ CDP 已连接，当前页面 %s", page.url)
        return BrowserConnection(playwright=playwright, browser=browser, context=context, page=page)
