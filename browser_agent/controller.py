"""执行模块：按顺序执行动作计划

单个动作失败只记录为失败结果，不会中断后续动作。
"""

import asyncio
import logging
import re
import time
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import ActionError, ElementNotFoundError, InvalidActionError, SearchInputNotFoundError
from .models import (
    Action,
    ActionPlan,
    ActionResult,
    ClickAction,
    ExtractAction,
    InvalidAction,
    NavigateAction,
    ScrollAction,
    SearchAction,
    TypeAction,
    WaitAction,
    action_to_dict,
    describe_action,
)
from .perception import Perception
from .retry import DEFAULT_RETRY_POLICIES, NO_RETRY, RetryPolicy
from .session import SessionManager

logger = logging.getLogger(__name__)

# 搜索框选择器，按优先级排列
SEARCH_SELECTORS = [
    'input[name="q"]',
    'input[type="search"]',
    'input[placeholder*="search" i]',
    'input[aria-label*="search" i]',
    '[data-testid*="search"] input',
    '.search-input',
    '#search-input',
    'input[name="search"]',
    'input[name="search_query"]',
    '[role="searchbox"]',
    'input.search',
    '#search',
    '[name="query"]',
    'textarea[name="q"]',
    'textarea[aria-label*="search" i]',
]

# 含这些字符的目标直接当作 CSS 选择器
SELECTOR_CHARS_RE = re.compile(r"[.#\[>]")
WHITESPACE_RE = re.compile(r"\s")

ORDINALS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3,
    "fifth": 4, "5th": 4,
}
ORDINAL_RE = re.compile(r"\b(" + "|".join(ORDINALS) + r")\b", re.IGNORECASE)

# "first result" 一类序数描述使用的通用结果选择器
ORDINAL_PATTERNS = [
    "#search a:has(h3)",
    "ytd-video-renderer a#video-title",
    '[role="main"] a[href]',
    "main a[href]",
    "a[href]",
    "button",
    'div[role="button"]',
]

SCROLL_JS = {
    "top": "() => window.scrollTo({ top: 0, behavior: 'smooth' })",
    "bottom": "() => window.scrollTo({ top: document.body.scrollHeight, behavior: 'smooth' })",
    "up": "() => window.scrollBy(0, -window.innerHeight)",
    "down": "() => window.scrollBy(0, window.innerHeight)",
}


class StepOutcome(NamedTuple):
    data: Optional[Dict[str, Any]] = None
    url: Optional[str] = None
    screenshot: Optional[str] = None


def click_candidates(target: str) -> List[Tuple[str, int]]:
    """
    根据目标字符串生成 (选择器, 序号) 候选列表。

    含 . # [ > 的直接作为选择器；只含空格的先按选择器试一次，再按文本匹配；
    其余按文本、aria-label、title、按钮/链接文字匹配，最后再把原字符串当选择器试。
    """
    target = target.strip()
    if SELECTOR_CHARS_RE.search(target):
        return [(target, 0)]

    quoted = target.replace('"', '\\"')
    candidates = [
        (f'text="{quoted}"', 0),
        (f'[aria-label="{quoted}"]', 0),
        (f'[title="{quoted}"]', 0),
        (f'button:has-text("{quoted}")', 0),
        (f'a:has-text("{quoted}")', 0),
    ]
    ordinal = ORDINAL_RE.search(target)
    if ordinal:
        index = ORDINALS[ordinal.group(1).lower()]
        candidates.extend((pattern, index) for pattern in ORDINAL_PATTERNS)

    if WHITESPACE_RE.search(target):
        return [(target, 0)] + candidates
    return candidates + [(target, 0)]


class Controller:
    """执行模块：把动作计划落到远程页面上"""

    NAVIGATION_TIMEOUT_MS = 30000
    NETWORK_IDLE_TIMEOUT_MS = 10000
    LOAD_TIMEOUT_MS = 5000
    RESULTS_FALLBACK_DELAY_S = 3.0
    CLICK_TIMEOUT_MS = 10000

    def __init__(
        self,
        session_manager: SessionManager,
        settle_delay: float = 0.5,
        retry_policies: Optional[Dict[str, RetryPolicy]] = None,
        perception: Optional[Perception] = None,
    ):
        self.session_manager = session_manager
        self.settle_delay = settle_delay
        self.retry_policies = DEFAULT_RETRY_POLICIES if retry_policies is None else retry_policies
        self.perception = perception or Perception()
        self._handlers = {
            NavigateAction: self._navigate,
            SearchAction: self._search,
            ClickAction: self._click,
            TypeAction: self._type,
            ExtractAction: self._extract,
            ScrollAction: self._scroll,
            WaitAction: self._wait,
        }

    async def execute(self, plan: ActionPlan) -> List[ActionResult]:
        """
        按顺序执行计划中的全部动作，每个动作对应一条结果。

        会话无法建立时抛出异常（整条命令失败）；动作级别的错误只记录不抛出。
        """
        await self.session_manager.ensure_active()

        results: List[ActionResult] = []
        total = len(plan.actions)
        for i, action in enumerate(plan.actions):
            logger.info("▶ 动作 %d/%d: %s", i + 1, total, action_to_dict(action))
            result = await self.run_action(action)
            results.append(result)
            if result.success:
                logger.info("✓ %s", result.description)
            else:
                logger.warning("❌ %s: %s", result.description, result.error)

            # 给 DOM 一点时间稳定下来
            if i < total - 1 and self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)
        return results

    async def run_action(self, action: Action) -> ActionResult:
        started = time.monotonic()
        description = describe_action(action)

        if isinstance(action, InvalidAction):
            return ActionResult(
                success=False,
                description=f"Failed: {description}",
                error=action.reason,
                data={"action": action.raw} if action.raw else None,
            )

        handler = self._handlers.get(type(action))
        if handler is None:
            return ActionResult(
                success=False,
                description=f"Failed: {description}",
                error=f"Unsupported action type: {type(action).__name__}",
            )

        policy = self.retry_policies.get(action.type, NO_RETRY)
        try:
            outcome = await policy.run(action.type, lambda: handler(action))
        except ActionError as e:
            return self._failure(action, description, str(e), started, e.details)
        except Exception as e:
            return self._failure(action, description, str(e) or type(e).__name__, started)

        self.session_manager.touch()
        return ActionResult(
            success=True,
            description=description,
            data=outcome.data,
            screenshot=outcome.screenshot,
            url=outcome.url,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def _failure(
        self,
        action: Action,
        description: str,
        error: str,
        started: float,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        return ActionResult(
            success=False,
            description=f"Failed: {description}",
            error=error,
            data=details,
            url=action.url if isinstance(action, NavigateAction) else None,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def _navigate(self, action: NavigateAction) -> StepOutcome:
        """打开 URL 并等待 load"""
        page = await self.session_manager.page()
        await page.goto(action.url, wait_until="load", timeout=self.NAVIGATION_TIMEOUT_MS)
        self.session_manager.record_url(page.url)
        return StepOutcome(data={"navigatedTo": action.url, "finalUrl": page.url}, url=action.url)

    async def _search(self, action: SearchAction) -> StepOutcome:
        """找到搜索框，输入关键词并回车"""
        page = await self.session_manager.page()
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=self.NETWORK_IDLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.info("⏳ 页面 domcontentloaded 超时，继续查找搜索框")

        search_input, selector, attempts = await self._find_search_input(page)
        if search_input is None:
            inputs = await self._inventory_inputs(page)
            raise SearchInputNotFoundError(page.url, attempts, inputs)

        logger.info("🎯 使用搜索框: %s", selector)
        await search_input.click()
        await search_input.fill("")
        await search_input.press_sequentially(action.query, delay=50)
        await search_input.press("Enter")
        await self._wait_for_results(page)

        self.session_manager.record_url(page.url)
        return StepOutcome(
            data={"searchQuery": action.query, "selector": selector, "finalUrl": page.url},
            url=page.url,
        )

    async def _find_search_input(self, page: Page):
        attempts: List[Dict[str, Any]] = []
        for selector in SEARCH_SELECTORS:
            locator = page.locator(selector).first
            attempt: Dict[str, Any] = {"selector": selector, "count": 0, "visible": False, "enabled": False, "editable": False}
            try:
                attempt["count"] = await page.locator(selector).count()
                if attempt["count"] > 0:
                    attempt["visible"] = await locator.is_visible()
                    if attempt["visible"]:
                        attempt["enabled"] = await locator.is_enabled()
                        attempt["editable"] = await locator.is_editable()
            except PlaywrightError as e:
                attempt = {"selector": selector, "error": str(e)}
            attempts.append(attempt)
            if attempt.get("visible") and attempt.get("enabled") and attempt.get("editable"):
                return locator, selector, attempts
        return None, None, attempts

    async def _inventory_inputs(self, page: Page) -> List[Dict[str, Any]]:
        try:
            snapshots = await self.perception.inventory_inputs(page)
        except PlaywrightError as e:
            logger.error("❌ 无法读取页面输入框: %s", e)
            return []
        logger.info("🔍 页面上的输入框:\n%s", self.perception.summarize(snapshots) or "(无)")
        return [snap.to_dict() for snap in snapshots]

    async def _wait_for_results(self, page: Page):
        """networkidle → load → 固定等待，逐级降级"""
        try:
            await page.wait_for_load_state("networkidle", timeout=self.NETWORK_IDLE_TIMEOUT_MS)
            return
        except PlaywrightTimeoutError:
            logger.info("⏳ networkidle 超时，等待 load...")
        try:
            await page.wait_for_load_state("load", timeout=self.LOAD_TIMEOUT_MS)
            return
        except PlaywrightTimeoutError:
            logger.info("⏳ load 超时，固定等待 %.0f 秒", self.RESULTS_FALLBACK_DELAY_S)
        await asyncio.sleep(self.RESULTS_FALLBACK_DELAY_S)

    async def _click(self, action: ClickAction) -> StepOutcome:
        """依次尝试候选选择器，点击第一个可见的元素"""
        page = await self.session_manager.page()
        attempted: List[str] = []
        for selector, index in click_candidates(action.target):
            label = selector if index == 0 else f"{selector} >> nth={index}"
            attempted.append(label)
            try:
                if await page.locator(selector).count() <= index:
                    continue
                element = page.locator(selector).nth(index)
                if not await element.is_visible():
                    continue
                await element.click(timeout=self.CLICK_TIMEOUT_MS)
            except PlaywrightError as e:
                logger.debug("候选 %s 失败: %s", label, e)
                continue
            logger.info("✓ 点击成功: %s", label)
            return StepOutcome(data={"clickTarget": action.target, "selector": label}, url=page.url)
        raise ElementNotFoundError(action.target, attempted)

    async def _type(self, action: TypeAction) -> StepOutcome:
        """输入文本：有选择器时填入该元素，否则输入到当前焦点"""
        page = await self.session_manager.page()
        if action.selector:
            element = page.locator(action.selector).first
            if await page.locator(action.selector).count() == 0:
                raise ElementNotFoundError(action.selector, [action.selector])
            await element.fill(action.text)
        else:
            await page.keyboard.type(action.text, delay=50)
        return StepOutcome(data={"typed": action.text, "selector": action.selector})

    async def _scroll(self, action: ScrollAction) -> StepOutcome:
        script = SCROLL_JS.get(action.direction)
        if script is None:
            raise InvalidActionError(f"Unsupported scroll direction: {action.direction}")
        page = await self.session_manager.page()
        await page.evaluate(script)
        return StepOutcome(data={"direction": action.direction})

    async def _wait(self, action: WaitAction) -> StepOutcome:
        await asyncio.sleep(action.duration_ms / 1000)
        return StepOutcome(data={"waitTime": action.duration_ms})

    async def _extract(self, action: ExtractAction) -> StepOutcome:
        """用截图代表页面内容"""
        screenshot = await self.session_manager.capture_screenshot()
        page = await self.session_manager.page()
        return StepOutcome(
            data={"url": page.url, "title": await page.title()},
            url=page.url,
            screenshot=screenshot,
        )
