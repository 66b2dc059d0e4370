"""执行模块：把意图落到浏览器上

Actuator 是浏览器能力接口，execute() 对意图做穷举分发并统一
把失败包装成带类型的 ActionResult；PlaywrightController 是基于
Playwright 的实现。
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import Settings
from .errors import ActuatorError, ActuatorTimeout, ElementNotFound, IntentValidationError, TabSessionClosed
from .intents import (
    ActionIntent, AskApproval, AskUser, Click, Complete, Extract, Navigate, OpenTab,
    Scroll, SwitchTab, TypeText, Wait, WaitForElement,
)
from .models import ActionResult, PageSnapshot
from .perception import Perception
from .storage import StateStore
from .tabs import TabEvent, TabEventKind, TabSession

EXTRACT_PREVIEW_CHARS = 1500


class Actuator(ABC):
    """浏览器能力接口；所有失败都以 ActuatorError 子类抛出，不会静默忽略"""

    @abstractmethod
    async def navigate(self, url: str) -> None: ...

    @abstractmethod
    async def click(self, selector: str) -> None: ...

    @abstractmethod
    async def type_text(self, selector: str, text: str) -> None: ...

    @abstractmethod
    async def scroll(self, direction: str, amount: int) -> None: ...

    @abstractmethod
    async def wait(self, seconds: float) -> None: ...

    @abstractmethod
    async def wait_for_element(self, selector: str) -> None: ...

    @abstractmethod
    async def extract_snapshot(self) -> PageSnapshot: ...

    @abstractmethod
    async def open_tab(self, url: Optional[str] = None) -> None: ...

    @abstractmethod
    async def switch_tab(self, index: int) -> None: ...

    @abstractmethod
    def tab_count(self) -> int: ...

    @abstractmethod
    def active_tab(self) -> int: ...

    @abstractmethod
    async def save_state(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def execute(self, intent: ActionIntent) -> ActionResult:
        """
        执行意图并刷新快照。
        校验失败和浏览器失败都返回 success=False 的结果（尽量附带新快照），
        调用方据此记录历史后继续循环。
        """
        try:
            intent.validate()
            message = await self._dispatch(intent)
        except (IntentValidationError, ActuatorError) as e:
            logger.warning(f"❌ {intent.description} 失败: {e}")
            return ActionResult(success=False, message=str(e), error=e, snapshot=await self._try_snapshot())

        try:
            snapshot = await self.extract_snapshot()
        except ActuatorError as e:
            logger.warning(f"❌ {intent.description} 已执行，但刷新页面状态失败: {e}")
            return ActionResult(
                success=False, message=f"{message or 'ok'}; page refresh failed: {e}", error=e, executed=True
            )

        if message is None:
            message = "ok"
        if isinstance(intent, Extract):
            message = snapshot.visible_text[:EXTRACT_PREVIEW_CHARS] or "(页面没有可见文本)"
        logger.info(f"✓ {intent.description}")
        return ActionResult(success=True, message=message, snapshot=snapshot)

    async def _dispatch(self, intent: ActionIntent) -> Optional[str]:
        if isinstance(intent, Navigate):
            await self.navigate(intent.url)
            return f"navigated to {intent.url}"
        if isinstance(intent, Click):
            await self.click(intent.selector)
            return f"clicked {intent.selector}"
        if isinstance(intent, TypeText):
            await self.type_text(intent.selector, intent.text)
            return f"typed into {intent.selector}"
        if isinstance(intent, Scroll):
            await self.scroll(intent.direction, intent.amount)
            return f"scrolled {intent.direction} {intent.amount}px"
        if isinstance(intent, Extract):
            return None
        if isinstance(intent, Wait):
            await self.wait(intent.seconds)
            return f"waited {intent.seconds:g}s"
        if isinstance(intent, WaitForElement):
            await self.wait_for_element(intent.selector)
            return f"element {intent.selector} is visible"
        if isinstance(intent, OpenTab):
            await self.open_tab(intent.url)
            return f"opened tab {self.active_tab()}" + (f" at {intent.url}" if intent.url else "")
        if isinstance(intent, SwitchTab):
            await self.switch_tab(intent.index)
            return f"switched to tab {intent.index}"
        if isinstance(intent, (Complete, AskApproval, AskUser)):
            raise IntentValidationError(f"{intent.kind.value} is not an executable browser action")
        raise IntentValidationError(f"unknown action: {intent.kind.value}")

    async def _try_snapshot(self) -> Optional[PageSnapshot]:
        try:
            return await self.extract_snapshot()
        except ActuatorError as e:
            logger.debug(f"失败后刷新页面状态也失败: {e}")
            return None


class PlaywrightController(Actuator):
    """基于 Playwright 的 Actuator 实现"""

    def __init__(self, settings: Settings, store: Optional[StateStore] = None):
        self.settings = settings
        self.store = store
        self.perception = Perception()
        self.tabs: TabSession[Page] = TabSession(opener=self._new_page, navigator=self._goto)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def start(self) -> "PlaywrightController":
        s = self.settings
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=s.headless,
            slow_mo=s.slow_mo_ms,
            args=["--disable-popup-blocking", "--disable-blink-features=AutomationControlled"],
        )

        self._context = await self._browser.new_context(
            viewport={"width": s.viewport_width, "height": s.viewport_height},
            user_agent=s.user_agent,
            ignore_https_errors=True,
            accept_downloads=True,
            storage_state=self._saved_storage_state(),
        )
        self._context.set_default_timeout(s.action_timeout_ms)
        # 页面自己打开的新标签页（target="_blank"、window.open）
        self._context.on("page", self._on_page)

        page = await self._context.new_page()
        self.tabs.add(page)
        return self

    def _saved_storage_state(self) -> Optional[dict]:
        """读取上次保存的 cookies / localStorage；内容损坏时忽略"""
        if self.store is None:
            return None
        blob = self.store.load_browser_state()
        if blob is None:
            return None
        try:
            state = json.loads(blob)
        except ValueError as e:
            logger.warning(f"已保存的浏览器状态无法解析，忽略: {e}")
            return None
        if not isinstance(state, dict):
            logger.warning("已保存的浏览器状态格式不对，忽略")
            return None
        logger.info(f"加载已保存的浏览器状态: {self.store.state_path}")
        return state

    # ── 标签页事件 ──────────────────────────────────

    def _on_page(self, page: Page) -> None:
        page.on("dialog", _accept_dialog)
        page.on("close", lambda p: self.tabs.dispatch(TabEvent(TabEventKind.CLOSED, p)))
        self.tabs.dispatch(TabEvent(TabEventKind.OPENED, page))

    async def _new_page(self) -> Page:
        if self._context is None:
            raise TabSessionClosed("browser is not running")
        try:
            return await self._context.new_page()
        except PlaywrightError as e:
            raise ActuatorError(f"failed to create new page: {e}") from e

    def _page(self) -> Page:
        return self.tabs.active()

    # ── 基本动作 ────────────────────────────────────

    async def _goto(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.settings.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ActuatorTimeout(f"navigation to {url} timed out: {e}") from e
        except PlaywrightError as e:
            raise ActuatorError(f"failed to navigate to {url}: {e}") from e

    async def navigate(self, url: str) -> None:
        await self._goto(self._page(), url)

    async def click(self, selector: str) -> None:
        page = self._page()
        locator = page.locator(selector).first
        await self._wait_visible(locator, selector, self.settings.action_timeout_ms)
        try:
            await locator.click(timeout=self.settings.action_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ActuatorTimeout(f"click on {selector} timed out: {e}") from e
        except PlaywrightError as e:
            raise ActuatorError(f"click on {selector} failed: {e}") from e
        await self._settle(page)

    async def type_text(self, selector: str, text: str) -> None:
        locator = self._page().locator(selector).first
        await self._wait_visible(locator, selector, self.settings.action_timeout_ms)
        try:
            await locator.fill(text, timeout=self.settings.action_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ActuatorTimeout(f"typing into {selector} timed out: {e}") from e
        except PlaywrightError as e:
            raise ActuatorError(f"typing into {selector} failed: {e}") from e

    async def scroll(self, direction: str, amount: int) -> None:
        dy = amount if direction == "down" else -amount
        try:
            await self._page().evaluate("(dy) => window.scrollBy(0, dy)", dy)
        except PlaywrightError as e:
            raise ActuatorError(f"scroll failed: {e}") from e

    async def wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def wait_for_element(self, selector: str) -> None:
        page = self._page()
        await self._settle(page)
        await self._wait_visible(page.locator(selector).first, selector, self.settings.element_wait_timeout_ms)

    async def extract_snapshot(self) -> PageSnapshot:
        page = self._page()
        await self._settle(page)
        count, active = self.tabs.state()
        return await self.perception.capture(page, tab_count=count, active_tab=active)

    async def open_tab(self, url: Optional[str] = None) -> None:
        await self.tabs.open(url)

    async def switch_tab(self, index: int) -> None:
        page = self.tabs.switch_to(index)
        try:
            await page.bring_to_front()
        except PlaywrightError as e:
            raise ActuatorError(f"failed to activate tab {index}: {e}") from e
        await self._settle(page)

    def tab_count(self) -> int:
        return self.tabs.tab_count()

    def active_tab(self) -> int:
        return self.tabs.active_index()

    async def save_state(self) -> None:
        if self._context is None or self.store is None:
            return
        try:
            state = await self._context.storage_state()
        except PlaywrightError as e:
            if "closed" in str(e).lower():
                return
            raise ActuatorError(f"failed to save browser state: {e}") from e
        self.store.save_browser_state(json.dumps(state).encode("utf-8"))

    async def close(self) -> None:
        """保存状态并关闭浏览器"""
        try:
            await self.save_state()
        except ActuatorError as e:
            logger.warning(f"关闭前保存浏览器状态失败: {e}")

        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"关闭 context 出错: {e}")
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"关闭浏览器出错: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("✓ 浏览器已关闭")

    # ── 辅助 ────────────────────────────────────────

    async def _wait_visible(self, locator, selector: str, timeout: float) -> None:
        try:
            await locator.wait_for(state="visible", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise ElementNotFound(selector, f"element '{selector}' not found or not visible after {timeout / 1000:g}s") from e
        except PlaywrightError as e:
            raise ElementNotFound(selector, f"element '{selector}' could not be resolved: {e}") from e

    async def _settle(self, page: Page) -> None:
        """等页面网络空闲；超时不算失败"""
        try:
            await page.wait_for_load_state("networkidle", timeout=self.settings.load_state_timeout_ms)
        except PlaywrightTimeoutError:
            pass
        except PlaywrightError as e:
            raise ActuatorError(f"page is not available: {e}") from e


async def _accept_dialog(dialog) -> None:
    try:
        await dialog.accept()
    except PlaywrightError as e:
        logger.debug(f"dialog accept failed: {e}")
