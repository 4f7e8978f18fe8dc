from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./fieldsync.db"

    # Queue processor
    queue_batch_size: int = 20
    queue_max_execution_seconds: float = 30.0
    queue_process_interval_seconds: int = 60
    scheduler_max_instances: int = 2  # overlapping ticks are safe: claims are atomic
    default_priority: int = 5
    manual_sync_priority: int = 10
    default_max_attempts: int = 3
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 240
    error_message_max_length: int = 500
    stale_processing_grace_seconds: int = 300
    adapter_timeout_seconds: float = 30.0

    # Health buckets
    health_window_hours: int = 24
    health_warning_failures: int = 3
    health_critical_failures: int = 10
    health_warning_pending: int = 50

    # service name -> "package.module:ClassName"
    adapters: Dict[str, str] = {}

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
