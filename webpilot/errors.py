"""异常体系：区分可恢复的动作失败与终止任务的错误"""

from typing import Optional


class AgentError(Exception):
    """所有 Agent 异常的基类"""


class IntentValidationError(AgentError):
    """意图缺少必填字段（例如 click 没有 selector），只影响当前动作"""


class ActuatorError(AgentError):
    """浏览器侧执行失败（传输错误、页面崩溃等）"""


class ElementNotFound(ActuatorError):
    """选择器在页面上无法解析或不可见"""

    def __init__(self, selector: str, message: Optional[str] = None):
        self.selector = selector
        super().__init__(message or f"element '{selector}' not found or not visible")


class ActuatorTimeout(ActuatorError):
    """导航或等待超时"""


class TabIndexError(ActuatorError):
    """切换到不存在的标签页"""

    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        super().__init__(f"invalid tab index: {index} (available tabs: {count})")


class TabSessionClosed(ActuatorError):
    """所有标签页都已关闭，后续浏览器调用不可能成功"""


class DeciderError(AgentError):
    """决策后端调用失败，没有产生任何意图"""


class IntentDecodeError(DeciderError):
    """后端返回的内容无法解码为完整的意图"""


class TaskCancelled(AgentError):
    """任务被外部取消"""


class MaxIterationsExceeded(AgentError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"max iterations reached ({limit})")


class ApprovalDenied(AgentError):
    """操作员拒绝了需要确认的动作"""


class TaskStateError(AgentError):
    """在错误的任务状态下调用了编排器接口"""
