import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        locale: str,
        category_type_fallback: bool,
        openai_api_key: Optional[str],
        openai_base_url: Optional[str],
        openai_model: str,
        openai_timeout_secs: float,
        chat_daily_limit: int,
        chat_max_tool_rounds: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.locale = locale
        self.category_type_fallback = category_type_fallback
        self.openai_api_key = openai_api_key
        self.openai_base_url = openai_base_url
        self.openai_model = openai_model
        self.openai_timeout_secs = openai_timeout_secs
        self.chat_daily_limit = chat_daily_limit
        self.chat_max_tool_rounds = chat_max_tool_rounds


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/Madrid")
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "5d0b8e1f3c2a47f9b6e4d7a1c9f2e8b03a6d5c4b7e1f9a2d8c3b6e0f4a7d1c95",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "720"))
    locale = os.getenv("FINANCE_LOCALE", "en").strip().lower()
    category_type_fallback = _env_flag("FINANCE_CATEGORY_TYPE_FALLBACK", "1")
    openai_api_key = os.getenv("OPENAI_API_KEY")
    openai_base_url = os.getenv("FINANCE_OPENAI_BASE_URL") or None
    openai_model = os.getenv("FINANCE_OPENAI_MODEL", "gpt-4o-mini")
    openai_timeout_secs = float(os.getenv("FINANCE_OPENAI_TIMEOUT_SECS", "20"))
    chat_daily_limit = int(os.getenv("FINANCE_CHAT_DAILY_LIMIT", "10"))
    chat_max_tool_rounds = int(os.getenv("FINANCE_CHAT_MAX_TOOL_ROUNDS", "4"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        locale=locale,
        category_type_fallback=category_type_fallback,
        openai_api_key=openai_api_key,
        openai_base_url=openai_base_url,
        openai_model=openai_model,
        openai_timeout_secs=openai_timeout_secs,
        chat_daily_limit=chat_daily_limit,
        chat_max_tool_rounds=chat_max_tool_rounds,
    )
