"""记忆模块：按执行顺序保存历史步骤，并据此计算下一轮可用的动作"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .intents import TOOL_KINDS, ActionIntent, ActionKind, intent_from_tool_call, intent_to_tool_call
from .models import HistoryEntry


class History:
    """只追加的历史记录；顺序即执行顺序，会原样作为上下文交给 Decider"""

    def __init__(self, entries: Optional[Iterable[HistoryEntry]] = None):
        self._entries: List[HistoryEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(list(self._entries))

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def step_counter(self) -> int:
        return len(self._entries)

    def recent(self, n: int) -> List[HistoryEntry]:
        if n <= 0:
            return []
        return self._entries[-n:]

    def _append(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        return entry

    def record_success(self, intent: ActionIntent, outcome: str) -> HistoryEntry:
        return self._append(HistoryEntry(
            step=self.step_counter + 1,
            description=intent.description,
            outcome=outcome,
            success=True,
            intent=intent,
        ))

    def record_failure(self, intent: Optional[ActionIntent], error: str,
                       candidates: Sequence[str] = ()) -> HistoryEntry:
        """记录失败；candidates 是当前页面可用的选择器，帮助下一轮换个选择器"""
        outcome = f"error: {error}"
        if candidates:
            outcome += f". available selectors on page: {', '.join(candidates)}"
        return self._append(HistoryEntry(
            step=self.step_counter + 1,
            description=intent.description if intent is not None else "observe page",
            outcome=outcome,
            success=False,
            intent=intent,
            error=error,
            candidates=tuple(candidates),
        ))

    def record_note(self, description: str, outcome: str, success: bool = True) -> HistoryEntry:
        """记录非动作事件（操作员回答、拒绝确认等）"""
        return self._append(HistoryEntry(
            step=self.step_counter + 1,
            description=description,
            outcome=outcome,
            success=success,
        ))

    def format_history(self, last_n: Optional[int] = None) -> str:
        """格式化历史记录，供 LLM 阅读"""
        if not self._entries:
            return "(无历史)"

        entries = self._entries if last_n is None else self._entries[-last_n:]
        lines = []
        for rec in entries:
            mark = "✓" if rec.success else "✗"
            lines.append(f"Step {rec.step}: {rec.description} → {mark} {rec.outcome}")
        return "\n".join(lines)

    def to_dicts(self) -> List[Dict[str, Any]]:
        records = []
        for rec in self._entries:
            data: Dict[str, Any] = {
                "step": rec.step,
                "description": rec.description,
                "outcome": rec.outcome,
                "success": rec.success,
                "error": rec.error,
                "candidates": list(rec.candidates),
            }
            if rec.intent is not None:
                name, arguments = intent_to_tool_call(rec.intent)
                data["intent"] = {"action": name, "arguments": arguments}
            records.append(data)
        return records

    @classmethod
    def from_dicts(cls, records: Iterable[Dict[str, Any]]) -> "History":
        entries = []
        for data in records:
            intent = None
            if data.get("intent"):
                intent = intent_from_tool_call(data["intent"]["action"], data["intent"].get("arguments") or {})
            entries.append(HistoryEntry(
                step=int(data["step"]),
                description=data["description"],
                outcome=data["outcome"],
                success=bool(data["success"]),
                intent=intent,
                error=data.get("error"),
                candidates=tuple(data.get("candidates") or ()),
            ))
        return cls(entries)


# ──────────────────────────────────────────────
# 动作抑制：每轮根据最近的历史窗口重新计算，不做缓存
# ──────────────────────────────────────────────

def recently_extracted(history: History, window: int = 3) -> bool:
    """最近 window 条记录里出现过 extract"""
    return any(rec.kind is ActionKind.EXTRACT for rec in history.recent(window))


def scrolling_too_much(history: History, window: int = 5, threshold: int = 3) -> bool:
    """最近 window 条记录里 scroll 达到 threshold 次"""
    count = sum(1 for rec in history.recent(window) if rec.kind is ActionKind.SCROLL)
    return count >= threshold


def available_actions(history: History, extract_window: int = 3,
                      scroll_window: int = 5, scroll_threshold: int = 3) -> List[ActionKind]:
    """本轮提供给 Decider 的动作集合"""
    suppressed = set()
    if recently_extracted(history, extract_window):
        suppressed.add(ActionKind.EXTRACT)
    if scrolling_too_much(history, scroll_window, scroll_threshold):
        suppressed.add(ActionKind.SCROLL)
    return [kind for kind in TOOL_KINDS if kind not in suppressed]
