"""Runtime settings for the messaging service and its clients."""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tunables, read from ``PET_MESSAGING_*`` variables. Intervals and timeouts are in seconds."""

    poll_interval: float = 10.0
    conversation_list_poll_interval: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "PET_MESSAGING_LIST_POLL_INTERVAL", "conversation_list_poll_interval"
        ),
    )
    request_timeout: float = 10.0
    write_queue_timeout: float = 30.0
    write_queue_idle_timeout: float = 60.0
    unread_reconcile_interval: float = 300.0
    rate_limit: int = 50
    rate_window: int = 60
    page_size: int = 50
    max_page_size: int = 200
    directory_cache_ttl: float = 300.0
    json_logs: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PET_MESSAGING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()
