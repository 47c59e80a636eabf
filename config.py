import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        log_level: str,
        csrf_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.log_level = log_level
        self.csrf_enabled = csrf_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "FINANCE_CSRF_SECRET",
        "5c0f6f0e4b7a9d2e8c1b3a6f9d4e7c2b0a8f5e3d1c9b7a6e4f2d0c8b6a4e2f01",
    )
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    csrf_enabled = os.getenv("FINANCE_CSRF_ENABLED", "1").lower() not in {
        "0",
        "false",
        "no",
        "off",
    }
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        log_level=log_level,
        csrf_enabled=csrf_enabled,
    )
