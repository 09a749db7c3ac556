# checkin_service/core/config.py

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Values come from the process environment (Docker Compose injects the root .env).
    model_config = SettingsConfigDict(extra="ignore")

    # The environment mode: 'local', 'test' or 'prod'
    ENV: str = "local"

    # --- Production URLs (for inside Docker) ---
    DATABASE_URL_PROD: str = "postgresql://postgres:postgres@db:5432/checkin_db"
    REDIS_URL_PROD: str = "redis://redis:6379/0"

    # --- Local Development URLs (for running locally) ---
    DATABASE_URL_LOCAL: str = "sqlite:///./checkin.db"
    REDIS_URL_LOCAL: str = "redis://localhost:6379/0"

    # Other secrets
    JWT_SECRET: str = "change-me"

    LOG_LEVEL: str = "INFO"

    # --- Cache ---
    REDIS_KEY_PREFIX: str = "checkin"
    CACHE_ENABLED: bool = True
    CACHE_SOCKET_TIMEOUT_SECONDS: float = 0.5
    CACHE_FAILURE_THRESHOLD: int = 5
    CACHE_RESET_TIMEOUT_SECONDS: int = 30

    # TTL tiers in seconds. Capacity data changes fastest, entities slowest.
    CAPACITY_CACHE_TTL_SECONDS: int = 5
    STATS_CACHE_TTL_SECONDS: int = 30
    SESSION_CACHE_TTL_SECONDS: int = 60
    PARTICIPANT_CACHE_TTL_SECONDS: int = 600
    RESERVATION_MARKER_TTL_SECONDS: int = 120

    # --- Session lifecycle ---
    SCHEDULER_ENABLED: bool = True
    AUTO_OPEN_MINUTES_BEFORE: int = 10
    AUTO_END_ENABLED: bool = True
    AUTO_END_GRACE_MINUTES: int = 0
    SESSION_CHECK_INTERVAL_SECONDS: int = 30
    CHECKIN_LATE_THRESHOLD_MINUTES: int = 10

    # --- Capacity ---
    NEAR_CAPACITY_PERCENT: int = 80
    RECONCILE_INTERVAL_SECONDS: int = 30
    RECONCILE_BATCH_SIZE: int = 100

    # --- Events ---
    LIFECYCLE_EVENTS_CHANNEL: str = "platform.events.checkin.v1"
    # 'redis' publishes to LIFECYCLE_EVENTS_CHANNEL, 'memory' keeps events in process
    EVENT_SINK_BACKEND: str = "redis"
    # Events kept by the in-process sink for inspection; older ones are dropped
    EVENT_HISTORY_SIZE: int = 1000

    @model_validator(mode="after")
    def check_cache_ttl_tiers(self) -> "Settings":
        entity_ttl = min(
            self.SESSION_CACHE_TTL_SECONDS, self.PARTICIPANT_CACHE_TTL_SECONDS
        )
        if not (
            0 < self.CAPACITY_CACHE_TTL_SECONDS
            < self.STATS_CACHE_TTL_SECONDS
            < entity_ttl
        ):
            raise ValueError(
                "Cache TTLs must satisfy capacity < stats < session/participant "
                f"(got {self.CAPACITY_CACHE_TTL_SECONDS}, "
                f"{self.STATS_CACHE_TTL_SECONDS}, {entity_ttl})"
            )
        if self.EVENT_SINK_BACKEND not in ("redis", "memory"):
            raise ValueError(
                f"EVENT_SINK_BACKEND must be 'redis' or 'memory', got {self.EVENT_SINK_BACKEND!r}"
            )
        return self

    # --- Dynamic Properties ---
    # These properties return the correct URL based on the ENV
    @property
    def DATABASE_URL(self) -> str:
        return self.DATABASE_URL_PROD if self.ENV == "prod" else self.DATABASE_URL_LOCAL

    @property
    def REDIS_URL(self) -> str:
        return self.REDIS_URL_PROD if self.ENV == "prod" else self.REDIS_URL_LOCAL


# Create a single instance of the settings
settings = Settings()
