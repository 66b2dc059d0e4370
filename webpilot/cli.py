"""
终端入口：启动浏览器，按行读取任务并交给编排器执行。

运行：
    pip install -e .
    playwright install chromium
    webpilot                 # 交互模式
    webpilot --task "..."    # 只执行一个任务
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger
from openai import AsyncOpenAI

from .config import Settings
from .controller import PlaywrightController
from .core import LoopState, TaskOrchestrator, TaskOutcome
from .errors import AgentError
from .planner import OpenAIPlanner
from .storage import StateStore

EXIT_WORDS = ("exit", "quit")
CONTINUE_WORDS = ("continue", "", "继续")
YES_WORDS = ("y", "yes", "да", "д", "是", "确认")
NO_WORDS = ("n", "no", "нет", "н", "否", "取消")

HELP = """命令：
  <任务描述>    执行新任务
  continue      继续上一个未完成的任务
  analyze       分析当前页面
  exit / quit   退出"""


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="1 day", encoding="utf-8")


def build_planner(settings: Settings) -> OpenAIPlanner:
    if not settings.openai_api_key:
        raise SystemExit("请设置环境变量 OPENAI_API_KEY，例如：export OPENAI_API_KEY='sk-...'")
    client = AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout_seconds,
        max_retries=settings.openai_max_retries,
    )
    return OpenAIPlanner(client, settings.openai_model, settings.temperature, settings.max_tokens)


def build_orchestrator(settings: Settings, decider, actuator, store: Optional[StateStore]) -> TaskOrchestrator:
    return TaskOrchestrator(
        decider,
        actuator,
        store=store,
        max_iterations=settings.max_iterations,
        extract_window=settings.extract_window,
        scroll_window=settings.scroll_window,
        scroll_threshold=settings.scroll_threshold,
        step_delay=settings.step_delay_seconds,
        failure_delay=settings.failure_delay_seconds,
        candidate_limit=settings.candidate_selector_limit,
        persist_timeout=settings.shutdown_grace_seconds,
    )


def print_outcome(outcome: TaskOutcome) -> None:
    if outcome.state is LoopState.COMPLETED:
        print(f"\n✅ 任务完成（{outcome.iterations} 步）：{outcome.reason}")
    elif outcome.state is LoopState.FAILED:
        print(f"\n❌ 任务失败：{outcome.reason}")
    elif outcome.state is LoopState.AWAITING_APPROVAL:
        pending = outcome.pending
        print(f"\n⚠️  需要确认：{pending.intent.description}")
        print(f"   风险：{pending.risk.level.value}（{'; '.join(pending.risk.reasons)}）")
        if pending.reason:
            print(f"   理由：{pending.reason}")
    elif outcome.state is LoopState.AWAITING_USER_INPUT:
        print(f"\n❓ {outcome.question}")


class Console:
    """按行读取标准输入；停止事件触发时立即返回 None"""

    def __init__(self, stop: asyncio.Event):
        self.stop = stop

    async def ask(self, prompt: str) -> Optional[str]:
        if self.stop.is_set():
            return None
        print(prompt, end="", flush=True)
        loop = asyncio.get_running_loop()
        line = loop.create_future()

        def _readable() -> None:
            if not line.done():
                line.set_result(sys.stdin.readline())

        fd = sys.stdin.fileno()
        loop.add_reader(fd, _readable)
        stopped = asyncio.ensure_future(self.stop.wait())
        try:
            await asyncio.wait({line, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            loop.remove_reader(fd)
            stopped.cancel()

        if not line.done():
            print()
            return None
        text = line.result()
        if text == "":
            # EOF
            self.stop.set()
            return None
        return text.strip()


class Repl:
    def __init__(self, orchestrator: TaskOrchestrator, console: Console):
        self.orchestrator = orchestrator
        self.console = console

    async def run(self) -> None:
        print(HELP)
        while True:
            line = await self.console.ask("\n任务> ")
            if line is None or line.lower() in EXIT_WORDS:
                return
            if not line:
                continue
            try:
                await self.handle(line)
            except AgentError as e:
                logger.error(f"命令执行失败: {e}")
                print(f"❌ {e}")

    async def handle(self, line: str) -> None:
        command = line.lower()
        if command == "help":
            print(HELP)
            return
        if command == "analyze":
            print(await self.orchestrator.analyze_current_page())
            return
        if command in CONTINUE_WORDS:
            task = self.orchestrator.task
            if task is None or task.is_terminal:
                print("没有可以继续的任务")
                return
            if self.orchestrator.state is LoopState.AWAITING_APPROVAL:
                await self.follow(None)
                return
            await self.follow(await self.orchestrator.resume())
            return
        await self.follow(await self.orchestrator.run(line))

    async def follow(self, outcome: Optional[TaskOutcome]) -> None:
        """处理挂起：确认 / 补充信息，直到任务结束或操作员离开"""
        while True:
            if outcome is not None:
                print_outcome(outcome)
            state = self.orchestrator.state

            if state is LoopState.AWAITING_APPROVAL:
                answer = await self.console.ask("是否执行？(yes/no): ")
                if answer is None:
                    return
                answer = answer.lower()
                if answer in YES_WORDS:
                    outcome = await self.orchestrator.resolve_approval(True)
                elif answer in NO_WORDS:
                    outcome = await self.orchestrator.resolve_approval(False)
                else:
                    print("请输入 yes 或 no")
                    outcome = None
            elif state is LoopState.AWAITING_USER_INPUT:
                answer = await self.console.ask("回答（continue 继续）> ")
                if answer is None:
                    return
                if answer.lower() in EXIT_WORDS:
                    return
                if answer.lower() in CONTINUE_WORDS:
                    outcome = await self.orchestrator.resume()
                else:
                    outcome = await self.orchestrator.provide_input(answer)
            else:
                return


def restore_unfinished(orchestrator: TaskOrchestrator, store: StateStore) -> bool:
    """把上次没做完的任务和历史接回编排器"""
    task = store.load_task()
    if task is None or task.is_terminal:
        return False
    try:
        history = store.load_history()
    except (ValueError, KeyError, AgentError) as e:
        logger.warning(f"历史记录无法解析，不恢复任务 [{task.id}]: {e}")
        return False
    orchestrator.restore(task, history)
    print(f"发现未完成的任务 [{task.id}]：{task.description}（输入 continue 继续）")
    return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="webpilot", description="浏览器任务自动执行")
    parser.add_argument("--task", help="执行一个任务后退出")
    parser.add_argument("--headless", action="store_true", default=None, help="无头模式运行浏览器")
    parser.add_argument("--model", help="覆盖 OPENAI_MODEL")
    return parser.parse_args(argv)


def install_signal_handlers(orchestrator: TaskOrchestrator, stop: asyncio.Event) -> None:
    """运行任务时中断 = 取消任务；空闲时中断 = 退出"""
    loop = asyncio.get_running_loop()

    def _interrupt() -> None:
        if orchestrator.running:
            orchestrator.cancel()
        else:
            stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _interrupt)
        except NotImplementedError:
            logger.debug(f"当前平台不支持为 {sig.name} 注册处理器")


async def amain(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    settings = Settings()
    if args.headless is not None:
        settings.headless = args.headless
    if args.model:
        settings.openai_model = args.model
    configure_logging(settings)

    planner = build_planner(settings)
    store = StateStore(settings.state_dir)
    controller = PlaywrightController(settings, store)
    await controller.start()
    orchestrator = build_orchestrator(settings, planner, controller, store)
    restore_unfinished(orchestrator, store)

    stop = asyncio.Event()
    install_signal_handlers(orchestrator, stop)
    repl = Repl(orchestrator, Console(stop))

    exit_code = 0
    try:
        if args.task:
            await repl.follow(await orchestrator.run(args.task))
            if orchestrator.state is not LoopState.COMPLETED:
                exit_code = 1
        else:
            await repl.run()
    finally:
        try:
            await asyncio.wait_for(controller.close(), settings.shutdown_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"浏览器未能在 {settings.shutdown_grace_seconds:g}s 内关闭，强制退出")
    print("\n再见")
    return exit_code


def main() -> None:
    try:
        sys.exit(asyncio.run(amain()))
    except KeyboardInterrupt:
        sys.exit(130)
