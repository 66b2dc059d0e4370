"""动作意图：Decider 产出的下一步动作

每种动作是一个不可变的 dataclass，共同构成带标签的联合类型。
后端的工具调用（name + JSON 参数）经 pydantic 参数模型校验后才会
构造成意图，解码失败直接抛 IntentDecodeError，不会产生残缺的意图。
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, Field, ValidationError

from .errors import IntentDecodeError, IntentValidationError

MAX_WAIT_SECONDS = 60.0


class ActionKind(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE_TEXT = "type"
    SCROLL = "scroll"
    EXTRACT = "extract"
    WAIT = "wait"
    WAIT_FOR_ELEMENT = "wait_for_element"
    OPEN_TAB = "open_new_tab"
    SWITCH_TAB = "switch_to_tab"
    COMPLETE = "complete_task"
    ASK_APPROVAL = "ask_confirmation"
    # 不是工具：后端用纯文本回复时由 Planner 构造
    ASK_USER = "ask_user"


# ──────────────────────────────────────────────
# 工具参数模型（同时用于生成 function calling 的 JSON Schema）
# ──────────────────────────────────────────────

class NavigateArgs(BaseModel):
    url: str = Field(description="要打开的 URL")
    reasoning: str = Field("", description="为什么要打开这个页面")


class ClickArgs(BaseModel):
    selector: str = Field(description="目标元素的 CSS 选择器")
    reasoning: str = Field("", description="为什么点击这个元素")


class TypeTextArgs(BaseModel):
    selector: str = Field(description="输入框的 CSS 选择器")
    text: str = Field(description="要输入的文本")
    reasoning: str = Field("", description="为什么输入这段文本")


class ScrollArgs(BaseModel):
    direction: str = Field("down", description="滚动方向：up 或 down")
    amount: int = Field(500, description="滚动的像素数")
    reasoning: str = Field("", description="为什么需要滚动")


class ExtractArgs(BaseModel):
    reasoning: str = Field("", description="需要从页面提取什么信息")


class WaitArgs(BaseModel):
    seconds: float = Field(2.0, description="等待的秒数")
    reasoning: str = Field("", description="为什么需要等待")


class WaitForElementArgs(BaseModel):
    selector: str = Field(description="要等待出现的元素的 CSS 选择器")
    reasoning: str = Field("", description="为什么等待这个元素")


class OpenTabArgs(BaseModel):
    url: Optional[str] = Field(None, description="新标签页要打开的 URL，可为空")
    reasoning: str = Field("", description="为什么需要新标签页")


class SwitchTabArgs(BaseModel):
    index: int = Field(description="标签页下标（0 为第一个标签页）")
    reasoning: str = Field("", description="为什么切换到这个标签页")


class CompleteArgs(BaseModel):
    summary: str = Field("", description="已完成工作的简要总结")
    reasoning: str = ""


class AskApprovalArgs(BaseModel):
    action: str = Field(description="需要确认后才执行的动作名称")
    reasoning: str = Field(description="为什么需要执行这个动作")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="该动作的参数")


class AskUserArgs(BaseModel):
    question: str
    reasoning: str = ""


# ──────────────────────────────────────────────
# 意图类型
# ──────────────────────────────────────────────

class ActionIntent:
    """所有意图的基类；子类均为 frozen dataclass"""

    kind: ClassVar[ActionKind]
    arguments: ClassVar[Type[BaseModel]]
    tool_description: ClassVar[str] = ""

    @property
    def description(self) -> str:
        return self.describe()

    def describe(self) -> str:
        return self.kind.value

    def validate(self) -> None:
        """执行前检查必填字段，失败抛 IntentValidationError"""

    @classmethod
    def from_arguments(cls, args: BaseModel) -> "ActionIntent":
        return cls(**args.model_dump())

    def to_arguments(self) -> Dict[str, Any]:
        return asdict(self)


def _require(value: Optional[str], name: str, kind: ActionKind) -> None:
    if value is None or not str(value).strip():
        raise IntentValidationError(f"{name} parameter is required for {kind.value} action")


@dataclass(frozen=True)
class Navigate(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.NAVIGATE
    arguments: ClassVar[Type[BaseModel]] = NavigateArgs
    tool_description: ClassVar[str] = "在当前标签页打开指定 URL"

    url: str
    reasoning: str = ""

    def describe(self) -> str:
        return f"navigate to {self.url}"

    def validate(self) -> None:
        _require(self.url, "url", self.kind)


@dataclass(frozen=True)
class Click(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.CLICK
    arguments: ClassVar[Type[BaseModel]] = ClickArgs
    tool_description: ClassVar[str] = "按 CSS 选择器点击页面元素"

    selector: str
    reasoning: str = ""

    def describe(self) -> str:
        return f"click {self.selector}"

    def validate(self) -> None:
        _require(self.selector, "selector", self.kind)


@dataclass(frozen=True)
class TypeText(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.TYPE_TEXT
    arguments: ClassVar[Type[BaseModel]] = TypeTextArgs
    tool_description: ClassVar[str] = "清空输入框并输入文本"

    selector: str
    text: str
    reasoning: str = ""

    def describe(self) -> str:
        return f"type '{self.text}' into {self.selector}"

    def validate(self) -> None:
        _require(self.selector, "selector", self.kind)


@dataclass(frozen=True)
class Scroll(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.SCROLL
    arguments: ClassVar[Type[BaseModel]] = ScrollArgs
    tool_description: ClassVar[str] = "上下滚动页面"

    direction: str = "down"
    amount: int = 500
    reasoning: str = ""

    def describe(self) -> str:
        return f"scroll {self.direction} {self.amount}px"

    def validate(self) -> None:
        if self.direction not in ("up", "down"):
            raise IntentValidationError(f"scroll direction must be 'up' or 'down', got '{self.direction}'")
        if self.amount <= 0:
            raise IntentValidationError(f"scroll amount must be positive, got {self.amount}")


@dataclass(frozen=True)
class Extract(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.EXTRACT
    arguments: ClassVar[Type[BaseModel]] = ExtractArgs
    tool_description: ClassVar[str] = "提取当前页面的可见文本内容"

    reasoning: str = ""

    def describe(self) -> str:
        return "extract page content"


@dataclass(frozen=True)
class Wait(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.WAIT
    arguments: ClassVar[Type[BaseModel]] = WaitArgs
    tool_description: ClassVar[str] = "等待若干秒，让页面加载完成"

    seconds: float = 2.0
    reasoning: str = ""

    def describe(self) -> str:
        return f"wait {self.seconds:g}s"

    def validate(self) -> None:
        if not 0 <= self.seconds <= MAX_WAIT_SECONDS:
            raise IntentValidationError(
                f"wait seconds must be between 0 and {MAX_WAIT_SECONDS:g}, got {self.seconds}"
            )


@dataclass(frozen=True)
class WaitForElement(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.WAIT_FOR_ELEMENT
    arguments: ClassVar[Type[BaseModel]] = WaitForElementArgs
    tool_description: ClassVar[str] = "等待某个元素出现在页面上"

    selector: str
    reasoning: str = ""

    def describe(self) -> str:
        return f"wait for element {self.selector}"

    def validate(self) -> None:
        _require(self.selector, "selector", self.kind)


@dataclass(frozen=True)
class OpenTab(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.OPEN_TAB
    arguments: ClassVar[Type[BaseModel]] = OpenTabArgs
    tool_description: ClassVar[str] = "打开新标签页并切换过去（url 为空时只打开空白页）"

    url: Optional[str] = None
    reasoning: str = ""

    def describe(self) -> str:
        return f"open new tab {self.url}" if self.url else "open new tab"


@dataclass(frozen=True)
class SwitchTab(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.SWITCH_TAB
    arguments: ClassVar[Type[BaseModel]] = SwitchTabArgs
    tool_description: ClassVar[str] = "按下标切换标签页（0 为第一个）"

    index: int
    reasoning: str = ""

    def describe(self) -> str:
        return f"switch to tab {self.index}"

    def validate(self) -> None:
        if self.index < 0:
            raise IntentValidationError(f"tab index must be >= 0, got {self.index}")


@dataclass(frozen=True)
class Complete(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.COMPLETE
    arguments: ClassVar[Type[BaseModel]] = CompleteArgs
    tool_description: ClassVar[str] = "任务已完成"

    summary: str = ""
    reasoning: str = ""

    def describe(self) -> str:
        return f"complete: {self.summary}"


@dataclass(frozen=True)
class AskApproval(ActionIntent):
    """后端主动请求确认；确认后执行的是 params 解码出的具体意图"""

    kind: ClassVar[ActionKind] = ActionKind.ASK_APPROVAL
    arguments: ClassVar[Type[BaseModel]] = AskApprovalArgs
    tool_description: ClassVar[str] = "在执行可能有破坏性的动作（删除、支付、提交等）之前请求用户确认"

    action: str
    reason: str = ""
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def reasoning(self) -> str:
        return self.reason

    def describe(self) -> str:
        return f"ask approval for {self.action} {json.dumps(self.params, ensure_ascii=False)}"

    def proposed_intent(self) -> ActionIntent:
        if self.action in _NON_EXECUTABLE:
            raise IntentDecodeError(f"'{self.action}' cannot be proposed for approval")
        return intent_from_tool_call(self.action, self.params)

    @classmethod
    def from_arguments(cls, args: BaseModel) -> "AskApproval":
        intent = cls(action=args.action, reason=args.reasoning, params=dict(args.parameters))
        intent.proposed_intent()
        return intent

    def to_arguments(self) -> Dict[str, Any]:
        return {"action": self.action, "reasoning": self.reason, "parameters": dict(self.params)}


@dataclass(frozen=True)
class AskUser(ActionIntent):
    kind: ClassVar[ActionKind] = ActionKind.ASK_USER
    arguments: ClassVar[Type[BaseModel]] = AskUserArgs

    question: str
    reasoning: str = ""

    def describe(self) -> str:
        return f"ask user: {self.question}"


INTENT_TYPES: Dict[ActionKind, Type[ActionIntent]] = {
    cls.kind: cls
    for cls in (
        Navigate, Click, TypeText, Scroll, Extract, Wait, WaitForElement,
        OpenTab, SwitchTab, Complete, AskApproval, AskUser,
    )
}

# 可以作为工具提供给后端的动作，顺序即提示词中的顺序
TOOL_KINDS: Tuple[ActionKind, ...] = tuple(k for k in ActionKind if k is not ActionKind.ASK_USER)

_NON_EXECUTABLE = {ActionKind.ASK_APPROVAL.value, ActionKind.COMPLETE.value, ActionKind.ASK_USER.value}


def intent_from_tool_call(name: str, arguments: Any) -> ActionIntent:
    """把工具调用解码为意图；arguments 可以是 JSON 字符串或 dict"""
    try:
        kind = ActionKind(name)
    except ValueError:
        raise IntentDecodeError(f"unknown action: {name}") from None

    if isinstance(arguments, (str, bytes)):
        try:
            arguments = json.loads(arguments or "{}")
        except json.JSONDecodeError as e:
            raise IntentDecodeError(f"malformed arguments for {name}: {e}") from e
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, Mapping):
        raise IntentDecodeError(f"arguments for {name} must be an object, got {type(arguments).__name__}")

    intent_type = INTENT_TYPES[kind]
    try:
        parsed = intent_type.arguments.model_validate(dict(arguments))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise IntentDecodeError(f"invalid arguments for {name}: {problems}") from e
    return intent_type.from_arguments(parsed)


def intent_to_tool_call(intent: ActionIntent) -> Tuple[str, Dict[str, Any]]:
    return intent.kind.value, intent.to_arguments()
