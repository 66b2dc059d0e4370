"""运行配置：从环境变量（以及 .env）读取，构造时显式传给各模块"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True, extra="ignore"
    )

    # 决策后端
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, validation_alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o", validation_alias="OPENAI_MODEL")
    openai_timeout_seconds: float = 60.0
    openai_max_retries: int = 2
    temperature: float = 0.0
    max_tokens: int = 4000

    # 浏览器
    headless: bool = False
    slow_mo_ms: float = 100
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: str = DEFAULT_USER_AGENT
    state_dir: Path = Path.home() / ".webpilot"
    navigation_timeout_ms: float = 30000
    action_timeout_ms: float = 5000
    element_wait_timeout_ms: float = 20000
    load_state_timeout_ms: float = 3000

    # 主循环
    max_iterations: int = 50
    extract_window: int = 3
    scroll_window: int = 5
    scroll_threshold: int = 3
    step_delay_seconds: float = 0.5
    failure_delay_seconds: float = 1.0
    candidate_selector_limit: int = 10
    shutdown_grace_seconds: float = 5.0

    # 日志
    log_level: str = "INFO"
    log_file: Optional[str] = None
