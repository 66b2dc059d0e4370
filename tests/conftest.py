"""
测试配置：按脚本回放的决策后端与浏览器替身
"""
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from webpilot.controller import Actuator  # noqa: E402
from webpilot.core import TaskOrchestrator  # noqa: E402
from webpilot.intents import ActionIntent, ActionKind  # noqa: E402
from webpilot.memory import History  # noqa: E402
from webpilot.models import FormInfo, InteractiveElement, PageSnapshot, Task  # noqa: E402
from webpilot.planner import Decider  # noqa: E402
from webpilot.tabs import TabSession  # noqa: E402


def make_snapshot(url="https://example.com", elements=(), forms=(), text="", description="",
                  tab_count=1, active_tab=0) -> PageSnapshot:
    return PageSnapshot(
        url=url,
        title="Example",
        description=description,
        visible_text=text,
        interactive_elements=tuple(elements),
        forms=tuple(forms),
        tab_count=tab_count,
        active_tab=active_tab,
    )


@dataclass
class DecideCall:
    snapshot: PageSnapshot
    actions: List[ActionKind]
    history: List


class ScriptedDecider(Decider):
    """按顺序返回脚本里的意图；脚本用完后返回 then（默认 None，即完成）"""

    def __init__(self, script: Sequence = (), then: Optional[ActionIntent] = None):
        self.script = list(script)
        self.then = then
        self.calls: List[DecideCall] = []

    async def decide(self, task: Task, snapshot: PageSnapshot, history: History, actions):
        self.calls.append(DecideCall(snapshot=snapshot, actions=list(actions), history=history.entries))
        if not self.script:
            return self.then
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step

    async def analyze_page(self, snapshot: PageSnapshot, task: Task) -> str:
        return f"analysis of {snapshot.url}"


class FakeActuator(Actuator):
    """内存里的浏览器：记录调用，可按方法名注入一次性失败"""

    def __init__(self, url="https://example.com", elements=(), forms=(), text=""):
        self.url = url
        self.elements = tuple(elements)
        self.forms = tuple(forms)
        self.text = text
        self.tabs: TabSession[str] = TabSession(handles=["tab-0"])
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.on_click = None
        self.snapshots_taken = 0
        self.saved = 0
        self.closed = False
        self._next_tab = 1

    def fail(self, method: str, error: Exception, times: int = 1) -> None:
        self.failures.setdefault(method, []).extend([error] * times)

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    async def navigate(self, url):
        self.calls.append(("navigate", url))
        self._maybe_fail("navigate")
        self.url = url

    async def click(self, selector):
        self.calls.append(("click", selector))
        self._maybe_fail("click")
        if self.on_click is not None:
            self.on_click(selector)

    async def type_text(self, selector, text):
        self.calls.append(("type", selector, text))
        self._maybe_fail("type_text")

    async def scroll(self, direction, amount):
        self.calls.append(("scroll", direction, amount))
        self._maybe_fail("scroll")

    async def wait(self, seconds):
        self.calls.append(("wait", seconds))
        self._maybe_fail("wait")

    async def wait_for_element(self, selector):
        self.calls.append(("wait_for_element", selector))
        self._maybe_fail("wait_for_element")

    async def extract_snapshot(self):
        self.snapshots_taken += 1
        self._maybe_fail("extract_snapshot")
        self.tabs.active()
        return make_snapshot(
            url=self.url,
            elements=self.elements,
            forms=self.forms,
            text=self.text,
            tab_count=self.tabs.tab_count(),
            active_tab=self.tabs.active_index(),
        )

    async def open_tab(self, url=None):
        self.calls.append(("open_tab", url))
        self._maybe_fail("open_tab")
        handle = f"tab-{self._next_tab}"
        self._next_tab += 1
        self.tabs.add(handle)
        if url:
            self.url = url

    async def switch_tab(self, index):
        self.calls.append(("switch_tab", index))
        self.tabs.switch_to(index)

    def tab_count(self):
        return self.tabs.tab_count()

    def active_tab(self):
        return self.tabs.active_index()

    async def save_state(self):
        self.saved += 1

    async def close(self):
        self.closed = True


LOGIN_PAGE = (
    InteractiveElement(tag="button", text="Sign in", selector="#sign-in"),
    InteractiveElement(tag="a", text="Help", selector="a[href='/help']"),
    InteractiveElement(tag="button", text="Hidden", selector="#hidden", is_visible=False),
)

CONTACT_FORM = (FormInfo(action="/contact", method="post", submit_text="Send"),)


@pytest.fixture
def actuator():
    return FakeActuator(elements=LOGIN_PAGE)


@pytest.fixture
def make_orchestrator(actuator):
    def _make(decider, **kwargs):
        kwargs.setdefault("step_delay", 0)
        kwargs.setdefault("failure_delay", 0)
        return TaskOrchestrator(decider, kwargs.pop("actuator", actuator), **kwargs)
    return _make
