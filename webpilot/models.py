"""数据模型定义"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import AgentError
from .intents import ActionIntent, ActionKind


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING_ON_USER = "waiting_user_input"


@dataclass
class Task:
    """用户提交的任务，状态只由编排器修改"""
    description: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    status: TaskStatus = TaskStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass(frozen=True)
class InteractiveElement:
    """单个可交互元素"""
    tag: str
    text: str
    selector: str
    is_visible: bool = True
    is_clickable: bool = True
    attributes: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class LinkInfo:
    text: str
    href: str
    selector: str = ""


@dataclass(frozen=True)
class InputInfo:
    type: str
    name: str = ""
    placeholder: str = ""
    label: str = ""
    value: str = ""


@dataclass(frozen=True)
class FormInfo:
    action: str
    method: str = "get"
    inputs: Tuple[InputInfo, ...] = ()
    submit_text: str = ""


@dataclass(frozen=True)
class PageSnapshot:
    """某一时刻的页面状态，只读；每轮循环生成新的快照"""
    url: str
    title: str = ""
    description: str = ""
    visible_text: str = ""
    interactive_elements: Tuple[InteractiveElement, ...] = ()
    links: Tuple[LinkInfo, ...] = ()
    forms: Tuple[FormInfo, ...] = ()
    buttons: Tuple[InteractiveElement, ...] = ()
    tab_count: int = 1
    active_tab: int = 0

    @property
    def has_forms(self) -> bool:
        return len(self.forms) > 0

    def candidate_selectors(self, limit: int = 10) -> List[str]:
        """当前可见且可点击的元素选择器，供选择器失效时参考"""
        selectors: List[str] = []
        for el in self.interactive_elements:
            if el.is_visible and el.is_clickable and el.selector and el.selector not in selectors:
                selectors.append(el.selector)
                if len(selectors) >= limit:
                    break
        return selectors


@dataclass
class ActionResult:
    """执行一个意图后的结果；成功时必须带上刷新后的快照。

    executed=True 且 success=False 表示动作已经落到浏览器上，只是之后刷新页面失败。
    """
    success: bool
    message: str
    error: Optional[AgentError] = None
    snapshot: Optional[PageSnapshot] = None
    executed: bool = False

    def __post_init__(self):
        if self.success and self.snapshot is None:
            raise ValueError("successful ActionResult requires a refreshed snapshot")

    @property
    def error_text(self) -> str:
        return str(self.error) if self.error is not None else self.message


@dataclass(frozen=True)
class HistoryEntry:
    """单条历史记录；intent 为空表示操作员备注等非动作记录"""
    step: int
    description: str
    outcome: str
    success: bool
    intent: Optional[ActionIntent] = None
    error: Optional[str] = None
    candidates: Tuple[str, ...] = ()

    @property
    def kind(self) -> Optional[ActionKind]:
        return self.intent.kind if self.intent is not None else None


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    reasons: Tuple[str, ...] = ()

    @property
    def requires_approval(self) -> bool:
        return self.level is RiskLevel.HIGH


@dataclass(frozen=True)
class PendingApproval:
    """等待操作员确认的动作；确认后执行的是 intent"""
    intent: ActionIntent
    requested: ActionIntent
    risk: RiskAssessment
    reason: str = ""
