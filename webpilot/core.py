"""任务编排器：观察 → 决策 → 风险检查 → 执行 → 记录 的主循环"""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from .controller import Actuator
from .errors import (
    ActuatorError, AgentError, ApprovalDenied, DeciderError, ElementNotFound,
    MaxIterationsExceeded, TabSessionClosed, TaskCancelled, TaskStateError,
)
from .intents import ActionIntent, AskApproval, AskUser, Complete
from .memory import History, available_actions
from .models import PageSnapshot, PendingApproval, RiskAssessment, Task, TaskStatus
from .planner import Decider
from .security import SecurityGate
from .storage import StateStore

# 后端用纯文本回复时，命中这些词即视为任务完成
COMPLETION_PHRASES = ("done", "task complete", "task completed", "готово", "задача выполнена", "任务完成", "已完成")
_COMPLETION_RE = re.compile(r"\b(done|complete|completed|finished|выполнено|готово|завершено|сделано)\b")
_COMPLETION_CJK = ("完成",)


def is_completion(intent: Optional[ActionIntent]) -> bool:
    """纯文本以问号结尾时只认完整短语，其余按关键词匹配"""
    if intent is None or isinstance(intent, Complete):
        return True
    if isinstance(intent, AskUser):
        question = intent.question.strip()
        text = question.lower().rstrip(".!。！")
        if not text or text in COMPLETION_PHRASES:
            return True
        if question.endswith(("?", "？")):
            return False
        return bool(_COMPLETION_RE.search(text)) or any(k in text for k in _COMPLETION_CJK)
    return False


class LoopState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    DECIDING = "deciding"
    GATING = "gating"
    EXECUTING = "executing"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_USER_INPUT = "awaiting_user_input"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskOutcome:
    """一次循环调用的结果；每种结束方式都带有具体原因"""
    task: Task
    state: LoopState
    reason: str
    iterations: int
    pending: Optional[PendingApproval] = None
    question: Optional[str] = None
    summary: Optional[str] = None
    error: Optional[AgentError] = None

    @property
    def suspended(self) -> bool:
        return self.state in (LoopState.AWAITING_APPROVAL, LoopState.AWAITING_USER_INPUT)


def _discard_result(future: "asyncio.Future") -> None:
    if not future.cancelled():
        future.exception()


class TaskOrchestrator:
    """
    任务执行主循环。

    同一时间只执行一个任务；每轮先拿页面快照，再问 Decider，
    经 SecurityGate 分级后执行，结果按顺序写入 History。
    需要确认或需要用户输入时挂起并返回，调用方通过
    resolve_approval / provide_input / resume 重新进入循环。
    """

    def __init__(
        self,
        decider: Decider,
        actuator: Actuator,
        gate: Optional[SecurityGate] = None,
        store: Optional[StateStore] = None,
        max_iterations: int = 50,
        extract_window: int = 3,
        scroll_window: int = 5,
        scroll_threshold: int = 3,
        step_delay: float = 0.5,
        failure_delay: float = 1.0,
        candidate_limit: int = 10,
        persist_timeout: float = 5.0,
    ):
        self.decider = decider
        self.actuator = actuator
        self.gate = gate or SecurityGate()
        self.store = store
        self.max_iterations = max_iterations
        self.extract_window = extract_window
        self.scroll_window = scroll_window
        self.scroll_threshold = scroll_threshold
        self.step_delay = step_delay
        self.failure_delay = failure_delay
        self.candidate_limit = candidate_limit
        self.persist_timeout = persist_timeout

        self._task: Optional[Task] = None
        self._history = History()
        self._pending: Optional[PendingApproval] = None
        self._question: Optional[str] = None
        self._state = LoopState.IDLE
        self._iterations = 0
        self._running = False
        self._cancel_event: Optional[asyncio.Event] = None

    # ── 只读属性 ────────────────────────────────────

    @property
    def task(self) -> Optional[Task]:
        return self._task

    @property
    def history(self) -> History:
        return self._history

    @property
    def pending_approval(self) -> Optional[PendingApproval]:
        return self._pending

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    # ── 对外接口 ────────────────────────────────────

    async def run(self, description: str) -> TaskOutcome:
        """开始新任务（新的历史记录）"""
        if self._running:
            raise TaskStateError("another task is already running")
        self._task = Task(description=description)
        self._history = History()
        self._pending = None
        self._question = None
        logger.info(f"开始任务 [{self._task.id}]: {description}")
        return await self._invoke()

    def restore(self, task: Task, history: History) -> None:
        """接回上次进程留下的未完成任务；之后用 resume() 继续"""
        if self._running:
            raise TaskStateError("another task is already running")
        if task.is_terminal:
            raise TaskStateError(f"task {task.id} already {task.status.value}")
        self._task = task
        self._history = history
        self._pending = None
        self._question = None
        self._state = LoopState.IDLE
        logger.info(f"恢复任务 [{task.id}]: {task.description}（{len(history)} 条历史）")

    async def resume(self) -> TaskOutcome:
        """用同一个任务和已有历史重新进入循环"""
        self._check_resumable()
        if self._state is LoopState.AWAITING_APPROVAL:
            raise TaskStateError("an action is waiting for approval; call resolve_approval()")
        self._question = None
        return await self._invoke()

    async def provide_input(self, text: str) -> TaskOutcome:
        """记录操作员的回答后继续"""
        self._check_resumable()
        if self._state is not LoopState.AWAITING_USER_INPUT:
            raise TaskStateError("the task is not waiting for user input")
        self._history.record_note("operator input", text)
        return await self.resume()

    async def resolve_approval(self, approved: bool) -> TaskOutcome:
        """确认则执行挂起的动作并继续；拒绝则结束任务，不会执行该动作"""
        self._check_resumable()
        pending = self._pending
        if pending is None or self._state is not LoopState.AWAITING_APPROVAL:
            raise TaskStateError("no action is waiting for approval")
        self._pending = None

        if not approved:
            self._history.record_note(
                f"approval requested: {pending.intent.description}", "denied by operator", success=False
            )
            logger.warning(f"操作员拒绝了动作: {pending.intent.description}")
            error = ApprovalDenied(f"operator denied '{pending.intent.description}'")
            outcome = self._fail(error, f"approval denied: {pending.intent.description}")
            await self._persist()
            return outcome

        logger.info(f"✓ 操作员已确认: {pending.intent.description}")
        return await self._invoke(first_action=pending.intent)

    def cancel(self) -> None:
        """请求取消当前循环（可在信号处理中调用）"""
        if self._cancel_event is not None and not self._cancel_event.is_set():
            logger.warning("收到取消请求")
            self._cancel_event.set()

    async def analyze_current_page(self) -> str:
        snapshot = await self.actuator.extract_snapshot()
        task = self._task or Task(description="describe the current page")
        return await self.decider.analyze_page(snapshot, task)

    # ── 主循环 ──────────────────────────────────────

    def _check_resumable(self) -> None:
        if self._running:
            raise TaskStateError("another task is already running")
        if self._task is None:
            raise TaskStateError("no task to resume")
        if self._task.is_terminal:
            raise TaskStateError(f"task {self._task.id} already {self._task.status.value}")

    async def _invoke(self, first_action: Optional[ActionIntent] = None) -> TaskOutcome:
        self._running = True
        self._cancel_event = asyncio.Event()
        self._iterations = 0
        self._task.status = TaskStatus.IN_PROGRESS
        try:
            return await self._drive(first_action)
        finally:
            self._running = False

    async def _drive(self, first_action: Optional[ActionIntent]) -> TaskOutcome:
        try:
            snapshot = None
            if first_action is not None:
                snapshot = await self._execute(first_action)
            return await self._loop(snapshot)
        except MaxIterationsExceeded as e:
            outcome = self._fail(e, str(e))
        except DeciderError as e:
            outcome = self._fail(e, f"decider failed: {e}")
        except TabSessionClosed as e:
            outcome = self._fail(e, f"browser session closed: {e}")
        except TaskCancelled as e:
            outcome = self._fail(e, "task cancelled")
        except asyncio.CancelledError:
            self._fail(TaskCancelled("task cancelled"), "task cancelled")
            await self._persist()
            raise
        except Exception:
            self._task.status = TaskStatus.FAILED
            self._state = LoopState.FAILED
            raise
        await self._persist()
        return outcome

    async def _loop(self, snapshot: Optional[PageSnapshot]) -> TaskOutcome:
        while self._iterations < self.max_iterations:
            self._check_cancelled()
            self._iterations += 1
            logger.info(f"{'=' * 20} Step {self._iterations}/{self.max_iterations} {'=' * 20}")

            # 1. 观察：执行后拿到的快照直接复用；标签页有变化时重新获取
            self._state = LoopState.OBSERVING
            if snapshot is None or self._tabs_changed(snapshot):
                snapshot = await self._observe()
                if snapshot is None:
                    continue

            # 2. 决策：动作集合每轮按最近历史重新计算
            self._state = LoopState.DECIDING
            actions = available_actions(
                self._history, self.extract_window, self.scroll_window, self.scroll_threshold
            )
            intent = await self._guard(self.decider.decide(self._task, snapshot, self._history, actions))

            if is_completion(intent):
                return await self._complete(intent)
            logger.info(f"动作: {intent.description}")
            if intent.reasoning:
                logger.info(f"思考: {intent.reasoning}")
            if isinstance(intent, AskUser):
                return await self._suspend_for_input(intent)

            # 3. 风险检查
            self._state = LoopState.GATING
            risk = self.gate.classify(intent, snapshot)
            if risk.requires_approval:
                return await self._suspend_for_approval(intent, risk)

            # 4. 执行
            snapshot = await self._execute(intent)

        raise MaxIterationsExceeded(self.max_iterations)

    async def _observe(self) -> Optional[PageSnapshot]:
        try:
            return await self._guard(self.actuator.extract_snapshot())
        except TabSessionClosed:
            raise
        except ActuatorError as e:
            logger.warning(f"❌ 获取页面信息失败: {e}")
            self._history.record_failure(None, f"failed to get page info: {e}")
            await self._pause(self.failure_delay)
            return None

    async def _execute(self, intent: ActionIntent) -> Optional[PageSnapshot]:
        """执行并记录；返回执行后的快照（可能为 None，下一轮会重新获取）"""
        self._state = LoopState.EXECUTING
        result = await self._guard(self.actuator.execute(intent))

        if result.success:
            self._history.record_success(intent, result.message)
            await self._pause(self.step_delay)
            return result.snapshot

        if result.executed:
            # 动作已生效，只是刷新失败：按成功记录，下一轮重新观察
            self._history.record_success(intent, result.message)
            if isinstance(result.error, TabSessionClosed):
                raise result.error
            await self._pause(self.step_delay)
            return None

        if isinstance(result.error, TabSessionClosed):
            raise result.error

        snapshot = result.snapshot
        candidates = []
        if isinstance(result.error, ElementNotFound):
            if snapshot is None:
                snapshot = await self._observe_quietly()
            if snapshot is not None:
                candidates = snapshot.candidate_selectors(self.candidate_limit)
        self._history.record_failure(intent, result.error_text, candidates)
        await self._pause(self.failure_delay)
        return snapshot

    async def _observe_quietly(self) -> Optional[PageSnapshot]:
        try:
            return await self._guard(self.actuator.extract_snapshot())
        except TabSessionClosed:
            raise
        except ActuatorError as e:
            logger.debug(f"刷新页面状态失败: {e}")
            return None

    def _tabs_changed(self, snapshot: PageSnapshot) -> bool:
        return (self.actuator.tab_count() != snapshot.tab_count
                or self.actuator.active_tab() != snapshot.active_tab)

    # ── 结束与挂起 ──────────────────────────────────

    async def _complete(self, intent: Optional[ActionIntent]) -> TaskOutcome:
        if isinstance(intent, Complete):
            summary = intent.summary
        elif isinstance(intent, AskUser):
            summary = intent.question
        else:
            summary = ""
        self._task.status = TaskStatus.COMPLETED
        self._state = LoopState.COMPLETED
        logger.success(f"✓✓✓ 任务完成 ✓✓✓ {summary}")
        await self._persist()
        return TaskOutcome(
            task=self._task,
            state=LoopState.COMPLETED,
            reason=summary or "task complete",
            iterations=self._iterations,
            summary=summary,
        )

    async def _suspend_for_input(self, intent: AskUser) -> TaskOutcome:
        self._history.record_note(intent.description, "waiting for operator")
        self._question = intent.question
        self._task.status = TaskStatus.WAITING_ON_USER
        self._state = LoopState.AWAITING_USER_INPUT
        logger.info(f"等待用户输入: {intent.question}")
        await self._persist()
        return TaskOutcome(
            task=self._task,
            state=LoopState.AWAITING_USER_INPUT,
            reason=intent.question,
            iterations=self._iterations,
            question=intent.question,
        )

    async def _suspend_for_approval(self, intent: ActionIntent, risk: RiskAssessment) -> TaskOutcome:
        target = intent.proposed_intent() if isinstance(intent, AskApproval) else intent
        self._pending = PendingApproval(
            intent=target,
            requested=intent,
            risk=risk,
            reason=intent.reasoning or "; ".join(risk.reasons),
        )
        self._task.status = TaskStatus.WAITING_ON_USER
        self._state = LoopState.AWAITING_APPROVAL
        logger.warning(f"需要确认: {target.description}")
        await self._persist()
        return TaskOutcome(
            task=self._task,
            state=LoopState.AWAITING_APPROVAL,
            reason=f"approval required: {target.description} ({'; '.join(risk.reasons)})",
            iterations=self._iterations,
            pending=self._pending,
        )

    def _fail(self, error: AgentError, reason: str) -> TaskOutcome:
        self._task.status = TaskStatus.FAILED
        self._state = LoopState.FAILED
        logger.error(f"❌ 任务失败: {reason}")
        return TaskOutcome(
            task=self._task,
            state=LoopState.FAILED,
            reason=reason,
            iterations=self._iterations,
            error=error,
        )

    # ── 取消与持久化 ────────────────────────────────

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise TaskCancelled("task cancelled")

    async def _guard(self, awaitable):
        """等待可能阻塞的调用，同时响应取消；取消时放弃该调用"""
        self._check_cancelled()
        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            cancelled.cancel()
            raise
        if work in done:
            cancelled.cancel()
            return work.result()
        work.cancel()
        work.add_done_callback(_discard_result)
        raise TaskCancelled("task cancelled")

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._guard(asyncio.sleep(seconds))
        else:
            self._check_cancelled()

    async def _persist(self) -> None:
        """保存历史和浏览器会话；失败只记日志"""
        if self.store is not None:
            try:
                self.store.save_history(self._history)
                if self._task is not None:
                    self.store.save_task(self._task)
            except OSError as e:
                logger.warning(f"保存历史失败: {e}")
        try:
            await asyncio.wait_for(self.actuator.save_state(), self.persist_timeout)
        except ActuatorError as e:
            logger.warning(f"保存浏览器状态失败: {e}")
        except asyncio.TimeoutError:
            logger.warning("保存浏览器状态超时")


