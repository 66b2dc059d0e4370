"""
Actuator.execute 测试：动作分派、失败包装与快照刷新
"""
import json

import pytest

from conftest import FakeActuator
from webpilot.config import Settings
from webpilot.controller import PlaywrightController
from webpilot.errors import (
    ActuatorError, ActuatorTimeout, ElementNotFound, IntentValidationError, TabIndexError,
)
from webpilot.intents import (
    AskUser, Click, Complete, Extract, Navigate, OpenTab, Scroll, SwitchTab, TypeText, Wait,
    WaitForElement,
)
from webpilot.storage import StateStore


@pytest.mark.asyncio
async def test_each_intent_reaches_its_capability():
    actuator = FakeActuator()
    intents = [
        Navigate(url="https://example.com/a"),
        Click(selector="#go"),
        TypeText(selector="#q", text="playwright"),
        Scroll(direction="up", amount=300),
        Wait(seconds=1),
        WaitForElement(selector=".results"),
    ]
    for intent in intents:
        result = await actuator.execute(intent)
        assert result.success, result.message

    assert actuator.calls == [
        ("navigate", "https://example.com/a"),
        ("click", "#go"),
        ("type", "#q", "playwright"),
        ("scroll", "up", 300),
        ("wait", 1),
        ("wait_for_element", ".results"),
    ]


@pytest.mark.asyncio
async def test_success_carries_refreshed_snapshot():
    actuator = FakeActuator()
    result = await actuator.execute(Navigate(url="https://example.com/next"))

    assert result.success
    assert result.snapshot.url == "https://example.com/next"
    assert result.message == "navigated to https://example.com/next"


@pytest.mark.asyncio
async def test_extract_returns_visible_text():
    actuator = FakeActuator(text="Order #42 shipped")
    result = await actuator.execute(Extract())
    assert result.success
    assert result.message == "Order #42 shipped"


@pytest.mark.asyncio
async def test_tabs_open_and_switch():
    actuator = FakeActuator()
    result = await actuator.execute(OpenTab(url="https://example.com/docs"))
    assert result.success
    assert result.snapshot.tab_count == 2
    assert result.snapshot.active_tab == 1

    result = await actuator.execute(SwitchTab(index=0))
    assert result.success
    assert result.snapshot.active_tab == 0


@pytest.mark.asyncio
async def test_switch_out_of_range_is_reported():
    actuator = FakeActuator()
    result = await actuator.execute(SwitchTab(index=3))
    assert not result.success
    assert isinstance(result.error, TabIndexError)
    assert result.snapshot is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ElementNotFound("#missing"), ActuatorTimeout("click timed out")])
async def test_browser_failures_become_failed_results(error):
    actuator = FakeActuator()
    actuator.fail("click", error)

    result = await actuator.execute(Click(selector="#missing"))

    assert not result.success
    assert result.error is error
    assert result.snapshot is not None


@pytest.mark.asyncio
async def test_validation_failure_skips_the_browser():
    actuator = FakeActuator()
    result = await actuator.execute(TypeText(selector="", text="x"))

    assert not result.success
    assert isinstance(result.error, IntentValidationError)
    assert actuator.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("intent", [Complete(summary="done"), AskUser(question="which one?")])
async def test_control_intents_are_not_executable(intent):
    actuator = FakeActuator()
    result = await actuator.execute(intent)
    assert not result.success
    assert isinstance(result.error, IntentValidationError)


@pytest.mark.asyncio
async def test_refresh_failure_after_action_is_marked_executed():
    actuator = FakeActuator()
    actuator.fail("extract_snapshot", ActuatorError("page crashed"))

    result = await actuator.execute(Click(selector="#go"))

    assert not result.success
    assert result.executed
    assert result.snapshot is None
    assert result.message.startswith("clicked #go")
    assert "page refresh failed" in result.message
    assert actuator.calls == [("click", "#go")]


@pytest.mark.asyncio
async def test_failed_action_is_not_marked_executed():
    actuator = FakeActuator()
    actuator.fail("click", ElementNotFound("#go"))

    result = await actuator.execute(Click(selector="#go"))

    assert not result.success
    assert not result.executed


def test_saved_browser_state_is_read_through_the_store(tmp_path):
    store = StateStore(tmp_path)
    controller = PlaywrightController(Settings(), store)
    assert controller._saved_storage_state() is None

    state = {"cookies": [{"name": "sid", "value": "abc"}], "origins": []}
    store.save_browser_state(json.dumps(state).encode("utf-8"))
    assert controller._saved_storage_state() == state


def test_corrupt_browser_state_is_ignored(tmp_path):
    store = StateStore(tmp_path)
    store.save_browser_state(b"{not json")
    assert PlaywrightController(Settings(), store)._saved_storage_state() is None
