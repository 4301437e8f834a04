"""测试用的假 Browserbase 客户端、CDP 连接和页面"""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from browser_agent.config import Settings
from browser_agent.controller import Controller
from browser_agent.errors import RemoteAPIError
from browser_agent.perception import INPUT_INVENTORY_JS
from browser_agent.session import SessionManager


def make_settings(**overrides) -> Settings:
    values = dict(
        browserbase_project_id="proj-1",
        browserbase_api_key="bb-key",
        session_poll_interval_s=0,
        action_settle_ms=0,
    )
    values.update(overrides)
    return Settings(**values)


class FakeBrowserbaseClient:
    def __init__(self, status: str = "RUNNING", create_delay: float = 0.0):
        self.status = status
        self.create_delay = create_delay
        self.create_calls = 0
        self.create_payloads: List[dict] = []
        self.fail_create: Optional[Exception] = None
        self.poll_statuses: List[str] = []
        self.deleted: List[str] = []
        self.gone = set()
        self.delete_error: Optional[Exception] = None
        self.debug_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.beacons: List[str] = []
        self.closed = False

    async def create_session(self, browser_settings, keep_alive=True, timeout_s=3600):
        self.create_calls += 1
        self.create_payloads.append(
            {"browserSettings": browser_settings, "keepAlive": keep_alive, "timeout": timeout_s}
        )
        await asyncio.sleep(self.create_delay)
        if self.fail_create is not None:
            raise self.fail_create
        return {"id": f"sess-{self.create_calls}", "status": self.status, "connectUrl": "wss://connect.example/cdp"}

    async def get_session(self, session_id):
        status = self.poll_statuses.pop(0) if self.poll_statuses else self.status
        return {"id": session_id, "status": status, "connectUrl": "wss://connect.example/cdp"}

    async def delete_session(self, session_id):
        self.deleted.append(session_id)
        if self.delete_error is not None:
            raise self.delete_error
        if session_id in self.gone:
            return False
        self.gone.add(session_id)
        return True

    async def get_debug_urls(self, session_id):
        if self.debug_error is not None:
            raise self.debug_error
        return {"debuggerFullscreenUrl": f"https://live.example/debug/{session_id}"}

    async def get_live_view_url(self, session_id):
        return f"https://live.example/{session_id}"

    async def get_screenshot(self, session_id):
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return "c2NyZWVu"

    def send_beacon_delete(self, session_id, join_timeout=0.5):
        self.beacons.append(session_id)

    async def aclose(self):
        self.closed = True


class FakeElement:
    def __init__(self, visible=True, enabled=True, editable=True):
        self.visible = visible
        self.enabled = enabled
        self.editable = editable


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: Optional[int] = None):
        self.page = page
        self.selector = selector
        self.index = index

    def _elements(self) -> List[FakeElement]:
        if self.selector in self.page.broken_selectors:
            raise PlaywrightError(f"Unexpected token in selector {self.selector}")
        return self.page.elements.get(self.selector, [])

    def _element(self) -> Optional[FakeElement]:
        elements = self._elements()
        i = self.index or 0
        return elements[i] if i < len(elements) else None

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, 0)

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, index)

    async def count(self) -> int:
        return len(self._elements())

    async def is_visible(self) -> bool:
        element = self._element()
        return bool(element and element.visible)

    async def is_enabled(self) -> bool:
        element = self._element()
        return bool(element and element.enabled)

    async def is_editable(self) -> bool:
        element = self._element()
        return bool(element and element.editable)

    async def click(self, timeout=None):
        self.page.calls.append(("click", self.selector, self.index or 0))

    async def fill(self, value):
        self.page.calls.append(("fill", self.selector, value))

    async def press_sequentially(self, text, delay=0):
        self.page.calls.append(("type", self.selector, text))

    async def press(self, key):
        self.page.calls.append(("press", self.selector, key))


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def type(self, text, delay=0):
        self.page.calls.append(("keyboard", text))


class FakePage:
    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.elements: Dict[str, List[FakeElement]] = {}
        self.broken_selectors = set()
        self.inputs: List[dict] = []
        self.calls: List[tuple] = []
        self.goto_failures = 0
        self.load_state_errors: Dict[str, Exception] = {}
        self.keyboard = FakeKeyboard(self)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def goto(self, url, wait_until=None, timeout=None):
        self.calls.append(("goto", url, wait_until))
        if self.goto_failures > 0:
            self.goto_failures -= 1
            raise PlaywrightError(f"net::ERR_CONNECTION_RESET at {url}")
        self.url = url.rstrip("/") + "/"

    async def wait_for_load_state(self, state, timeout=None):
        self.calls.append(("wait_for_load_state", state))
        if state in self.load_state_errors:
            raise self.load_state_errors[state]

    async def evaluate(self, script, *args):
        if script == INPUT_INVENTORY_JS:
            return self.inputs
        self.calls.append(("evaluate", script))
        return None

    async def screenshot(self, type="png"):
        return b"png"

    async def title(self):
        return "Example Domain"


class FakeConnection:
    def __init__(self, page: FakePage):
        self.page = page
        self.connected = True
        self.closed = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def close(self):
        self.closed = True
        self.connected = False


class FakeConnector:
    def __init__(self, page: Optional[FakePage] = None):
        self.page = page or FakePage()
        self.connect_calls = 0
        self.fail: Optional[Exception] = None
        self.connections: List[FakeConnection] = []

    async def connect(self, connect_url):
        self.connect_calls += 1
        if self.fail is not None:
            raise self.fail
        connection = FakeConnection(self.page)
        self.connections.append(connection)
        return connection


def make_manager(page: Optional[FakePage] = None, **settings_overrides):
    client = FakeBrowserbaseClient()
    connector = FakeConnector(page)
    manager = SessionManager(client, connector, make_settings(**settings_overrides))
    return manager, client, connector


def make_controller(page: Optional[FakePage] = None, retry_policies=None):
    manager, client, connector = make_manager(page)
    controller = Controller(manager, settle_delay=0, retry_policies=retry_policies or {})
    controller.RESULTS_FALLBACK_DELAY_S = 0
    return controller, manager, client, connector


def fake_openai(content: Optional[str] = None, error: Optional[Exception] = None):
    """只实现 chat.completions.create 的假 AsyncOpenAI"""
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client.calls = calls
    return client


def remote_error(status: int) -> RemoteAPIError:
    return RemoteAPIError(status, "boom", "DELETE", "/sessions/x")
