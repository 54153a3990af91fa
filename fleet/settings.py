import socket

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    return socket.gethostname().split(".")[0]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    PROJECT_NAME: str = "Fleet Lease Coordinator"
    LOG_LEVEL: str = "INFO"

    # Lease Store
    STORE_URL: str = "redis://localhost:6379/0"
    STORE_CONNECT_TIMEOUT_SECONDS: PositiveFloat = 20.0
    STAGE: str = "app"

    # Leases & heartbeats
    WORKER_ID: str = Field(default_factory=_default_worker_id)
    LEASE_TTL_SECONDS: PositiveInt = 3600
    HEARTBEAT_TTL_SECONDS: PositiveInt = 120
    HEARTBEAT_INTERVAL_SECONDS: PositiveFloat = 30.0

    # Worker loop
    MAX_RETRIES: int = Field(default=3, ge=0)
    RETRY_BASE_DELAY_SECONDS: PositiveFloat = 3.0
    RETRY_MAX_DELAY_SECONDS: PositiveFloat = 60.0
    ITEM_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    LOCAL_CACHE_DIR: str = "lock"

    # Monitor
    MONITOR_REFRESH_SECONDS: PositiveFloat = 5.0
    INACTIVE_THRESHOLD_SECONDS: PositiveFloat = 90.0


settings = Settings()
