"""
StateStore 持久化测试
"""
import json

from webpilot.intents import AskApproval, Click
from webpilot.memory import History
from webpilot.models import Task, TaskStatus
from webpilot.storage import StateStore


def test_empty_store(tmp_path):
    store = StateStore(tmp_path / "state")
    assert (tmp_path / "state").is_dir()
    assert not store.has_browser_state()
    assert store.load_browser_state() is None
    assert len(store.load_history()) == 0


def test_browser_state_is_opaque_bytes(tmp_path):
    store = StateStore(tmp_path)
    blob = json.dumps({"cookies": [{"name": "sid", "value": "abc"}], "origins": []}).encode("utf-8")

    store.save_browser_state(blob)

    assert store.has_browser_state()
    assert store.load_browser_state() == blob
    assert not list(tmp_path.glob("*.tmp"))


def test_history_survives_restart(tmp_path):
    history = History()
    history.record_success(Click(selector="#login"), "clicked #login")
    history.record_note("approval requested: click #delete", "denied by operator", success=False)
    history.record_success(
        AskApproval(action="click", reason="confirm", params={"selector": "#ok"}), "approved"
    )

    StateStore(tmp_path).save_history(history)
    restored = StateStore(tmp_path).load_history()

    assert restored.entries == history.entries
    assert restored.format_history() == history.format_history()


def test_task_survives_restart(tmp_path):
    task = Task(description="log in to the work account", status=TaskStatus.WAITING_ON_USER)
    StateStore(tmp_path).save_task(task)

    restored = StateStore(tmp_path).load_task()

    assert restored == task
    assert not restored.is_terminal


def test_corrupt_task_record_is_ignored(tmp_path):
    store = StateStore(tmp_path)
    assert store.load_task() is None
    store.task_path.write_text('{"id": "x"}', encoding="utf-8")
    assert store.load_task() is None
