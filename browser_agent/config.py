"""配置：从 .env 与环境变量读取"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.browserbase.com/v1"
DEFAULT_MODEL = "gpt-4o"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("⚠ 环境变量 %s=%r 不是整数，使用默认值 %s", name, raw, default)
        return default


@dataclass
class Settings:
    browserbase_project_id: Optional[str] = None
    browserbase_api_key: Optional[str] = None
    browserbase_api_base: str = DEFAULT_API_BASE
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    session_timeout_s: int = 3600
    session_start_timeout_s: int = 30
    session_poll_interval_s: float = 1.0
    http_timeout_s: float = 30.0
    action_settle_ms: int = 500
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """加载 .env 文件后读取环境变量"""
        if dotenv:
            load_dotenv()
        return cls(
            browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID") or None,
            browserbase_api_key=os.getenv("BROWSERBASE_API_KEY") or None,
            browserbase_api_base=os.getenv("BROWSERBASE_API_BASE", DEFAULT_API_BASE),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            session_timeout_s=_int_env("BROWSER_SESSION_TIMEOUT", 3600),
            session_start_timeout_s=_int_env("BROWSER_SESSION_START_TIMEOUT", 30),
            action_settle_ms=_int_env("BROWSER_ACTION_SETTLE_MS", 500),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "127.0.0.1"),
            port=_int_env("PORT", 8000),
        )

    @property
    def has_browserbase(self) -> bool:
        return bool(self.browserbase_project_id and self.browserbase_api_key)

    @property
    def has_llm(self) -> bool:
        return bool(self.openai_api_key)

    def log_missing(self):
        """启动时提示缺失的凭证，不抛异常"""
        if not self.has_browserbase:
            logger.error(
                "❌ 缺少 Browserbase 凭证 (has_project_id=%s, has_api_key=%s)，浏览器命令将逐个请求失败",
                bool(self.browserbase_project_id),
                bool(self.browserbase_api_key),
            )
        if not self.has_llm:
            logger.warning("⚠ 未设置 OPENAI_API_KEY，命令解析将始终使用规则匹配 (fallback)")

    def require_browserbase(self):
        if not self.has_browserbase:
            raise ConfigurationError(
                "Browserbase credentials are not configured (BROWSERBASE_PROJECT_ID / BROWSERBASE_API_KEY)"
            )
