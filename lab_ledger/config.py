from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./lab_ledger.db"

    secret_key: str = "dev_secret"
    access_token_expire_minutes: int = 120

    log_level: str = "INFO"

    # seconds a transaction may wait on a locked item row before giving up
    store_busy_timeout: float = 5.0
    store_max_attempts: int = 3
    store_retry_backoff: float = 0.05

    bootstrap_admin_username: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
