import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        session_secret: str,
        session_max_age_hours: int,
        admin_username: str,
        admin_password: str,
        seed_defaults: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.admin_username = admin_username
        self.admin_password = admin_password
        self.seed_defaults = seed_defaults
        self.log_level = log_level


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
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "3f1c9a0d6b7e48a2b5d4c3e2f1a09b8c7d6e5f4a3b2c1d0e9f8a7b6c5d4e3f2a",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "24"))
    admin_username = os.getenv("FINANCE_ADMIN_USERNAME", "admin")
    admin_password = os.getenv("FINANCE_ADMIN_PASSWORD", "admin123")
    seed_defaults = _env_flag("FINANCE_SEED_DEFAULTS", "1")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        admin_username=admin_username,
        admin_password=admin_password,
        seed_defaults=seed_defaults,
        log_level=log_level,
    )
