"""
History 与动作抑制窗口测试
"""
from webpilot.intents import TOOL_KINDS, ActionKind, Click, Extract, Navigate, Scroll, Wait
from webpilot.memory import History, available_actions, recently_extracted, scrolling_too_much


def history_of(*intents) -> History:
    history = History()
    for intent in intents:
        history.record_success(intent, "ok")
    return history


def test_entries_keep_execution_order():
    history = history_of(Navigate(url="https://example.com"), Click(selector="#a"))
    history.record_failure(Click(selector="#b"), "element '#b' not found", ["#a", "#c"])
    history.record_note("operator input", "use the second account")

    assert [e.step for e in history] == [1, 2, 3, 4]
    assert [e.description for e in history] == [
        "navigate to https://example.com", "click #a", "click #b", "operator input",
    ]
    failed = history.entries[2]
    assert not failed.success
    assert failed.candidates == ("#a", "#c")
    assert failed.outcome == "error: element '#b' not found. available selectors on page: #a, #c"


def test_failure_without_intent_describes_observation():
    history = History()
    entry = history.record_failure(None, "page crashed")
    assert entry.description == "observe page"
    assert entry.kind is None


def test_format_history():
    assert History().format_history() == "(无历史)"
    history = history_of(Click(selector="#a"))
    history.record_failure(Click(selector="#b"), "timeout")
    assert history.format_history() == "Step 1: click #a → ✓ ok\nStep 2: click #b → ✗ error: timeout"
    assert history.format_history(last_n=1) == "Step 2: click #b → ✗ error: timeout"


def test_extract_withheld_while_in_last_three():
    history = history_of(Extract(), Click(selector="#a"), Click(selector="#b"))
    assert recently_extracted(history)
    assert ActionKind.EXTRACT not in available_actions(history)

    history.record_success(Click(selector="#c"), "ok")
    assert not recently_extracted(history)
    assert ActionKind.EXTRACT in available_actions(history)


def test_scroll_withheld_at_three_of_last_five():
    history = history_of(Scroll(), Wait(seconds=1), Scroll())
    assert not scrolling_too_much(history)

    history.record_success(Scroll(), "ok")
    assert scrolling_too_much(history)
    assert ActionKind.SCROLL not in available_actions(history)

    history.record_success(Click(selector="#a"), "ok")
    history.record_success(Click(selector="#b"), "ok")
    # 第一次滚动已经滑出窗口
    assert not scrolling_too_much(history)


def test_failed_scrolls_count_toward_throttle():
    history = History()
    for _ in range(3):
        history.record_failure(Scroll(), "scroll failed")
    assert scrolling_too_much(history)


def test_suppression_is_recomputed_from_history_each_time():
    history = History()
    assert available_actions(history) == list(TOOL_KINDS)
    history.record_success(Extract(), "text")
    assert ActionKind.EXTRACT not in available_actions(history)
    assert ActionKind.EXTRACT in available_actions(history, extract_window=0)


def test_dict_round_trip_keeps_intents():
    history = history_of(Navigate(url="https://example.com"))
    history.record_failure(Click(selector="#x"), "not found", ["#y"])
    history.record_note("operator input", "yes")

    restored = History.from_dicts(history.to_dicts())

    assert restored.entries == history.entries
