"""Settings via pydantic-settings with SWITCHBOARD_ env prefix.

DB connection fields use validation_alias to read from the same unprefixed
env vars (DB_PASSWORD, DB_PORT, etc.) that docker-compose uses, so a single
.env file drives both the container and the Python app.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SWITCHBOARD_", env_file=".env")

    # DB connection: unprefixed aliases match docker-compose env vars
    db_host: str = Field("localhost", validation_alias="DB_HOST")
    db_port: int = Field(5432, validation_alias="DB_PORT")
    db_user: str = Field("switchboard", validation_alias="DB_USER")
    db_password: str = Field("switchboard_dev_password", validation_alias="DB_PASSWORD")
    db_name: str = Field("switchboard", validation_alias="DB_NAME")
    # Full URL override (sqlite+aiosqlite:// for local runs and tests)
    database_url: str = Field("", validation_alias="DATABASE_URL")

    db_pool_size: int = 10
    db_max_overflow: int = 5
    log_level: str = "info"

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000

    # Signal thresholds
    safety_threshold: float = 0.75
    intent_threshold: float = 0.6
    interrupt_threshold: float = 0.65
    topic_depth_threshold: float = 0.6
    tool_intent_threshold: float = 0.7
    deep_reasons_threshold: float = 0.65
    pending_resolution_threshold: float = 0.55
    safety_resolution_threshold: float = 0.6

    # Safety anti-repetition window
    sentry_repeat_window_minutes: int = 10

    # Per-kind TTL overrides in minutes, keyed by session kind value
    session_ttl_overrides: dict[str, int] = Field(default_factory=dict)
    paused_slot_ttl_minutes: int = 240

    # Pending confirmation lifetime (whichever comes first)
    confirmation_ttl_minutes: int = 5
    confirmation_ttl_turns: int = 2

    # Debounce / burst merge
    debounce_enabled: bool = True
    debounce_wait_ms: int = 3500
    burst_window_ms: int = 10000

    # Audit
    audit_enabled: bool = True
    event_bus_enabled: bool = True

    # External classifier collaborator (empty = signals must come with the request)
    classifier_url: str = ""
    classifier_timeout: int = 15  # seconds

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "Settings":
        for name in (
            "safety_threshold",
            "intent_threshold",
            "interrupt_threshold",
            "topic_depth_threshold",
            "tool_intent_threshold",
            "deep_reasons_threshold",
            "pending_resolution_threshold",
            "safety_resolution_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1 (got {value})")
        return self

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
