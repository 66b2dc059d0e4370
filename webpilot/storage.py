"""状态存储：浏览器会话（cookies / localStorage）与历史记录落盘"""

import json
import os
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .memory import History
from .models import Task, TaskStatus

STATE_FILE = "state.json"
HISTORY_FILE = "history.json"
TASK_FILE = "task.json"


class StateStore:
    """固定目录下的几个文件；浏览器状态对本模块来说是不透明的字节"""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir).expanduser()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.state_dir / STATE_FILE
        self.history_path = self.state_dir / HISTORY_FILE
        self.task_path = self.state_dir / TASK_FILE

    def has_browser_state(self) -> bool:
        return self.state_path.is_file()

    def load_browser_state(self) -> Optional[bytes]:
        if not self.has_browser_state():
            return None
        return self.state_path.read_bytes()

    def save_browser_state(self, blob: bytes) -> None:
        self._write_atomic(self.state_path, blob)
        logger.debug(f"浏览器状态已保存到 {self.state_path}")

    def save_history(self, history: History) -> None:
        data = json.dumps(history.to_dicts(), ensure_ascii=False, indent=2).encode("utf-8")
        self._write_atomic(self.history_path, data)

    def load_history(self) -> History:
        if not self.history_path.is_file():
            return History()
        records = json.loads(self.history_path.read_text(encoding="utf-8"))
        return History.from_dicts(records)

    def save_task(self, task: Task) -> None:
        data = {"id": task.id, "description": task.description, "status": task.status.value}
        self._write_atomic(self.task_path, json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8"))

    def load_task(self) -> Optional[Task]:
        """上次保存的任务；没有或内容损坏时返回 None"""
        if not self.task_path.is_file():
            return None
        try:
            data = json.loads(self.task_path.read_text(encoding="utf-8"))
            return Task(description=data["description"], id=data["id"], status=TaskStatus(data["status"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"任务记录无法解析，忽略: {e}")
            return None

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
