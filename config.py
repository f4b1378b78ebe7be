import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cache_ttl_secs: float,
        log_level: str,
        default_user_id: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cache_ttl_secs = cache_ttl_secs
        self.log_level = log_level
        self.default_user_id = default_user_id


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Santiago")
    cache_ttl_secs = float(os.getenv("LEDGER_CACHE_TTL_SECS", "30"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    default_user_id = int(os.getenv("LEDGER_DEFAULT_USER_ID", "1"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cache_ttl_secs=cache_ttl_secs,
        log_level=log_level,
        default_user_id=default_user_id,
    )
