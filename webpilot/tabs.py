"""标签页会话：维护打开的标签页列表和当前活动标签页

标签页既会被主循环打开/切换，也会被页面自己打开（target="_blank"）
或关闭，这些异步事件通过 dispatch() 投递进来。所有读写都在同一把锁下。
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Tuple, TypeVar

from loguru import logger

from .errors import TabIndexError, TabSessionClosed

H = TypeVar("H")


class TabEventKind(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"


@dataclass(frozen=True)
class TabEvent:
    kind: TabEventKind
    handle: Any


class TabSession(Generic[H]):
    """标签页列表 + 活动下标

    不变式：有标签页时 0 <= active_index < tab_count。
    标签页全部关闭后会话进入终止状态，之后的访问显式失败。
    """

    def __init__(
        self,
        handles: Optional[List[H]] = None,
        opener: Optional[Callable[[], Awaitable[H]]] = None,
        navigator: Optional[Callable[[H, str], Awaitable[None]]] = None,
    ):
        self._lock = threading.RLock()
        self._tabs: List[H] = list(handles or [])
        self._active = 0 if self._tabs else -1
        self._closed = False
        self._opener = opener
        self._navigator = navigator

    # ── 读取 ────────────────────────────────────────

    def tab_count(self) -> int:
        with self._lock:
            return len(self._tabs)

    def active_index(self) -> int:
        """没有标签页时返回 -1"""
        with self._lock:
            return self._active

    def active(self) -> H:
        with self._lock:
            if not self._tabs:
                raise TabSessionClosed("no open tabs remain in the browser session")
            return self._tabs[self._active]

    def state(self) -> Tuple[int, int]:
        """(tab_count, active_index)，在同一次加锁下读取"""
        with self._lock:
            return len(self._tabs), self._active

    # ── 修改 ────────────────────────────────────────

    def add(self, handle: H, activate: bool = True) -> int:
        """加入标签页并设为活动页；重复加入同一句柄只会激活它"""
        with self._lock:
            if self._closed:
                raise TabSessionClosed("browser session has no open tabs")
            try:
                index = self._tabs.index(handle)
            except ValueError:
                self._tabs.append(handle)
                index = len(self._tabs) - 1
            if activate or self._active < 0:
                self._active = index
            return index

    def remove(self, handle: H) -> bool:
        """移除标签页；若它是活动页，则第一个剩余标签页成为活动页"""
        with self._lock:
            try:
                index = self._tabs.index(handle)
            except ValueError:
                return False
            was_active = index == self._active
            del self._tabs[index]
            if not self._tabs:
                self._active = -1
                self._closed = True
            elif was_active:
                self._active = 0
            elif index < self._active:
                self._active -= 1
            return True

    def switch_to(self, index: int) -> H:
        with self._lock:
            if not self._tabs:
                raise TabSessionClosed("no open tabs remain in the browser session")
            if index < 0 or index >= len(self._tabs):
                raise TabIndexError(index, len(self._tabs))
            self._active = index
            return self._tabs[index]

    def dispatch(self, event: TabEvent) -> None:
        """处理浏览器异步投递的标签页事件"""
        try:
            if event.kind is TabEventKind.OPENED:
                index = self.add(event.handle)
                logger.info(f"✓ 检测到新标签页，已切换到标签页 {index}")
            elif event.kind is TabEventKind.CLOSED:
                if self.remove(event.handle):
                    logger.info(f"标签页已关闭，剩余 {self.tab_count()} 个")
        except TabSessionClosed:
            logger.warning(f"会话已终止，忽略标签页事件: {event.kind.value}")

    async def open(self, url: Optional[str] = None) -> H:
        """新建标签页并设为活动页；给了 url 就导航过去"""
        if self._opener is None:
            raise TabSessionClosed("tab session has no browser to open tabs with")
        handle = await self._opener()
        self.add(handle)
        if url and self._navigator is not None:
            await self._navigator(handle, url)
        return handle
