"""规划模块：调用 LLM 决策下一步"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from .errors import DeciderError, IntentDecodeError
from .intents import INTENT_TYPES, ActionIntent, ActionKind, AskUser, intent_from_tool_call
from .memory import History
from .models import PageSnapshot, Task
from .perception import summarize_elements


class Decider(ABC):
    """决策后端接口"""

    @abstractmethod
    async def decide(
        self,
        task: Task,
        snapshot: PageSnapshot,
        history: History,
        actions: Sequence[ActionKind],
    ) -> Optional[ActionIntent]:
        """返回下一步意图；返回 None 表示任务已完成。actions 是本轮允许的动作"""

    @abstractmethod
    async def analyze_page(self, snapshot: PageSnapshot, task: Task) -> str:
        """诊断用：让后端分析当前页面"""


SYSTEM_PROMPT = """你是一个自主的 Web 自动化智能体，通过控制浏览器完成用户的任务。

【规则】
1. 自己分析页面结构来确定元素的 CSS 选择器，每一步都重新观察页面。
2. 可能有破坏性的动作（删除、支付、提交订单、发送等），先调用 ask_confirmation。
3. 需要用户补充信息时，直接用文字提问，不要调用工具。
4. 每次动作后检查结果，参考历史步骤，不要重复失败的操作；选择器失效时换用历史里给出的可用选择器。
5. 任务完成后调用 complete_task。
6. 链接在新标签页打开时会自动切换过去；多个标签页之间用 switch_to_tab 切换。

只能通过 function calling 执行动作，每次只调用一个工具。"""


def tool_schemas(actions: Sequence[ActionKind]) -> List[Dict[str, Any]]:
    """按本轮允许的动作生成 OpenAI tools 参数"""
    tools = []
    for kind in actions:
        intent_type = INTENT_TYPES[kind]
        tools.append({
            "type": "function",
            "function": {
                "name": kind.value,
                "description": intent_type.tool_description,
                "parameters": intent_type.arguments.model_json_schema(),
            },
        })
    return tools


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class OpenAIPlanner(Decider):
    """基于 OpenAI function calling 的 Decider"""

    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0.0, max_tokens: int = 4000):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def decide(self, task, snapshot, history, actions):
        """
        根据任务 + 页面快照 + 历史，输出下一步意图。

        - 模型调用工具：解码为对应意图，解码失败抛 IntentDecodeError
        - 模型回复纯文本：构造 AskUser，由编排器判断是完成还是要问用户
        - 模型什么都没返回：None（任务完成）
        """
        user_prompt = self.build_user_prompt(task, snapshot, history, actions)
        logger.debug(f"用户提示词:\n{user_prompt}")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                tools=tool_schemas(actions),
                tool_choice="auto",
            )
        except OpenAIError as e:
            raise DeciderError(f"failed to decide next action: {e}") from e

        if not response.choices:
            raise DeciderError("no response from decision backend")

        message = response.choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            name = call.function.name
            logger.debug(f"工具调用: {name}({call.function.arguments})")
            if name not in {kind.value for kind in actions}:
                raise IntentDecodeError(f"backend called action '{name}' that was not offered")
            return intent_from_tool_call(name, call.function.arguments)

        content = (message.content or "").strip()
        if not content:
            return None
        return AskUser(question=content)

    async def analyze_page(self, snapshot, task):
        prompt = (
            f"在任务“{task.description}”的背景下分析下面的网页。\n\n"
            f"URL: {snapshot.url}\n"
            f"Title: {snapshot.title}\n"
            f"Description: {snapshot.description}\n\n"
            f"可交互元素：\n{summarize_elements(list(snapshot.interactive_elements))}\n\n"
            f"页面文本（前 2000 字符）：\n{_truncate(snapshot.visible_text, 2000)}\n\n"
            "提取有助于完成任务的关键信息，描述页面结构和可执行的操作。"
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=0.3,
                max_tokens=1000,
                messages=[
                    {"role": "system", "content": "你是网页分析专家，只提取与任务相关的信息。"},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as e:
            raise DeciderError(f"failed to analyze page: {e}") from e

        if not response.choices:
            raise DeciderError("no response from decision backend")
        return response.choices[0].message.content or ""

    def build_user_prompt(self, task: Task, snapshot: PageSnapshot, history: History,
                          actions: Sequence[ActionKind]) -> str:
        tabs_info = ""
        if snapshot.tab_count > 1:
            tabs_info = (
                f"\n打开的标签页：{snapshot.tab_count} 个，当前是第 {snapshot.active_tab} 个（0 为第一个）。"
                "用 switch_to_tab 切换。\n"
            )

        suppressed = [k.value for k in (ActionKind.EXTRACT, ActionKind.SCROLL) if k not in actions]
        suppressed_info = ""
        if suppressed:
            suppressed_info = f"\n本轮不可用的动作：{', '.join(suppressed)}（最近用得太多，请直接操作页面元素）。\n"

        return (
            f"任务：{task.description}\n\n"
            f"当前页面：\n"
            f"- URL: {snapshot.url}\n"
            f"- Title: {snapshot.title}\n"
            f"- Description: {_truncate(snapshot.description, 500)}\n"
            f"{tabs_info}\n"
            f"可交互元素：\n{summarize_elements(list(snapshot.interactive_elements))}\n\n"
            f"页面文本（前 1500 字符）：\n{_truncate(snapshot.visible_text, 1500)}\n\n"
            f"历史步骤：\n{history.format_history()}\n"
            f"{suppressed_info}\n"
            "下一步做什么？"
        )
