"""webpilot：浏览器任务自动执行

包含各个模块：
- models: 数据模型
- intents: 动作意图及其参数
- perception: 感知模块
- planner: 规划模块（决策后端）
- controller: 执行模块（浏览器）
- memory: 历史记录与动作抑制
- security: 风险分级
- tabs: 标签页管理
- core: 任务编排器
"""

from .config import Settings
from .controller import Actuator, PlaywrightController
from .core import LoopState, TaskOrchestrator, TaskOutcome
from .errors import AgentError
from .memory import History
from .models import PageSnapshot, Task, TaskStatus
from .planner import Decider, OpenAIPlanner
from .security import SecurityGate
from .storage import StateStore
from .tabs import TabSession

__all__ = [
    "Settings",
    "Actuator",
    "PlaywrightController",
    "LoopState",
    "TaskOrchestrator",
    "TaskOutcome",
    "AgentError",
    "History",
    "PageSnapshot",
    "Task",
    "TaskStatus",
    "Decider",
    "OpenAIPlanner",
    "SecurityGate",
    "StateStore",
    "TabSession",
]
