"""
SecurityGate 风险分级测试
"""
from dataclasses import replace

import pytest

from conftest import CONTACT_FORM, make_snapshot
from webpilot.intents import (
    AskApproval, Click, Extract, Navigate, Scroll, TypeText, Wait,
)
from webpilot.models import RiskLevel
from webpilot.security import SecurityGate

gate = SecurityGate()
RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]
PLAIN_PAGE = make_snapshot(url="https://example.com/profile")
CHECKOUT_PAGE = make_snapshot(url="https://shop.example.com/checkout", description="Review your order")
FORM_PAGE = make_snapshot(url="https://example.com/contact", forms=CONTACT_FORM)


@pytest.mark.parametrize(
    "intent",
    [
        Click(selector='button:has-text("Delete account")'),
        Click(selector="#remove-item"),
        Click(selector="[data-qa='cancel-subscription']"),
        Click(selector="#btn", reasoning="удалить письмо"),
        TypeText(selector="#search", text="x", reasoning="清空搜索框"),
        Navigate(url="https://example.com/account/reset"),
    ],
)
def test_destructive_keywords_require_approval(intent):
    risk = gate.classify(intent, PLAIN_PAGE)
    assert risk.level is RiskLevel.HIGH
    assert risk.requires_approval
    assert risk.reasons


def test_confirm_click_on_payment_page_is_high():
    assert gate.classify(Click(selector="#confirm"), CHECKOUT_PAGE).level is RiskLevel.HIGH
    assert gate.classify(Click(selector="button.buy-now"), CHECKOUT_PAGE).level is RiskLevel.HIGH


def test_confirm_click_elsewhere_is_medium():
    assert gate.classify(Click(selector="#confirm"), PLAIN_PAGE).level is RiskLevel.MEDIUM


def test_submit_click_with_form_present_is_high():
    assert gate.classify(Click(selector="#send-message"), FORM_PAGE).level is RiskLevel.HIGH
    assert gate.classify(Click(selector="#send-message"), PLAIN_PAGE).level is RiskLevel.MEDIUM


def test_missing_page_context_resolves_toward_approval():
    assert gate.classify(Click(selector="#confirm"), None).requires_approval
    assert gate.classify(Click(selector="#submit"), None).requires_approval


def test_decider_requested_approval_is_always_high():
    ask = AskApproval(action="scroll", reason="just checking", params={})
    assert gate.classify(ask, PLAIN_PAGE).level is RiskLevel.HIGH


@pytest.mark.parametrize(
    "intent,level",
    [
        (Click(selector="#login"), RiskLevel.MEDIUM),
        (TypeText(selector="#q", text="weather"), RiskLevel.MEDIUM),
        (Navigate(url="https://example.com"), RiskLevel.LOW),
        (Scroll(), RiskLevel.LOW),
        (Wait(seconds=1), RiskLevel.LOW),
        (Extract(), RiskLevel.LOW),
    ],
)
def test_ordinary_actions(intent, level):
    risk = gate.classify(intent, PLAIN_PAGE)
    assert risk.level is level
    assert not risk.requires_approval


@pytest.mark.parametrize(
    "intent",
    [
        Click(selector="#login"),
        TypeText(selector="#q", text="weather"),
        Navigate(url="https://example.com"),
        Scroll(),
        Click(selector="#confirm"),
    ],
)
@pytest.mark.parametrize("snapshot", [PLAIN_PAGE, CHECKOUT_PAGE, FORM_PAGE])
def test_adding_a_destructive_keyword_never_lowers_risk(intent, snapshot):
    before = gate.classify(intent, snapshot)
    after = gate.classify(replace(intent, reasoning="delete everything"), snapshot)
    assert RISK_ORDER.index(after.level) >= RISK_ORDER.index(before.level)
    assert after.level is RiskLevel.HIGH


def test_custom_vocabulary():
    strict = SecurityGate(destructive_keywords=("archive",))
    assert strict.classify(Click(selector="#archive"), PLAIN_PAGE).requires_approval
    assert not strict.classify(Click(selector="#delete"), PLAIN_PAGE).requires_approval
