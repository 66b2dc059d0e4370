"""
意图解码与校验测试
"""
import pytest

from webpilot.errors import IntentDecodeError, IntentValidationError
from webpilot.intents import (
    AskApproval, Click, Navigate, OpenTab, Scroll, SwitchTab, TypeText, Wait,
    intent_from_tool_call, intent_to_tool_call,
)


def test_decode_from_json_string():
    intent = intent_from_tool_call("type", '{"selector": "#q", "text": "weather", "reasoning": "search"}')
    assert intent == TypeText(selector="#q", text="weather", reasoning="search")
    assert intent.description == "type 'weather' into #q"


def test_decode_applies_defaults():
    assert intent_from_tool_call("scroll", {}) == Scroll(direction="down", amount=500)
    assert intent_from_tool_call("open_new_tab", None) == OpenTab()
    assert intent_from_tool_call("wait", "") == Wait(seconds=2.0)


@pytest.mark.parametrize(
    "name,arguments",
    [
        ("hover", {}),
        ("navigate", {}),
        ("switch_to_tab", {"index": "second"}),
        ("click", "{broken"),
        ("click", ["#a"]),
        ("ask_user", {}),
    ],
)
def test_incomplete_or_unknown_calls_fail_to_decode(name, arguments):
    with pytest.raises(IntentDecodeError):
        intent_from_tool_call(name, arguments)


def test_blank_field_decodes_but_fails_validation():
    intent = intent_from_tool_call("click", {"selector": "   "})
    with pytest.raises(IntentValidationError):
        intent.validate()


@pytest.mark.parametrize(
    "intent",
    [
        Navigate(url=""),
        Scroll(direction="sideways"),
        Scroll(amount=0),
        Wait(seconds=-1),
        Wait(seconds=600),
        SwitchTab(index=-1),
    ],
)
def test_validation_rejects_bad_values(intent):
    with pytest.raises(IntentValidationError):
        intent.validate()


def test_approval_request_carries_a_concrete_action():
    intent = intent_from_tool_call(
        "ask_confirmation",
        {"action": "click", "reasoning": "submit payment", "parameters": {"selector": "#pay"}},
    )
    assert isinstance(intent, AskApproval)
    assert intent.reasoning == "submit payment"
    assert intent.proposed_intent() == Click(selector="#pay")


@pytest.mark.parametrize(
    "arguments",
    [
        {"action": "click", "reasoning": "r", "parameters": {}},
        {"action": "complete_task", "reasoning": "r", "parameters": {}},
        {"action": "teleport", "reasoning": "r", "parameters": {}},
        {"action": "click", "parameters": {"selector": "#pay"}},
    ],
)
def test_approval_request_with_bad_proposal_fails_to_decode(arguments):
    with pytest.raises(IntentDecodeError):
        intent_from_tool_call("ask_confirmation", arguments)


def test_tool_call_encoding_matches_decoding():
    intent = AskApproval(action="navigate", reason="leave page", params={"url": "https://example.com"})
    name, arguments = intent_to_tool_call(intent)
    assert name == "ask_confirmation"
    assert intent_from_tool_call(name, arguments) == intent
