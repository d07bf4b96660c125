from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from chatbridge.models.chat.enums import SessionLifetime, StreamTextMode, TransportMode
from chatbridge.services.retry_manager import RetryPolicy


class BridgeSettings(BaseSettings):
    """Configuration for one chat instance, validated once on construction"""

    app_name: str = "Chat Bridge"
    app_version: str = "0.1.0"

    # Backend
    endpoint_url: str
    auth_headers: dict[str, str] = Field(default_factory=dict)
    chat_input_key: str = "chatInput"
    session_key: str = "sessionId"
    mode: TransportMode = TransportMode.STANDARD
    stream_text_mode: StreamTextMode = StreamTextMode.CUMULATIVE
    stream_end_sentinel: str = "[DONE]"
    request_timeout_seconds: float = Field(30.0, gt=0)
    include_message_history: bool = False

    # Retry
    retry_max_attempts: int = Field(3, ge=1)
    retry_base_delay_ms: int = Field(1000, ge=0)
    retry_max_delay_ms: int = Field(30000, ge=0)
    retry_backoff_multiplier: float = Field(2.0, ge=1.0)
    retry_jitter_ratio: float = Field(0.2, ge=0.0, le=1.0)

    # Local storage
    session_lifetime: SessionLifetime = SessionLifetime.PERSISTENT
    storage_path: str = "data/chatbridge.db"
    offline_queue_max_size: int = Field(10, ge=1)
    offline_queue_max_age_seconds: int = Field(86400, gt=0)
    offline_queue_max_attempts: int = Field(5, ge=1)

    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "CHATBRIDGE_",
        "extra": "ignore",
    }

    @field_validator("endpoint_url")
    @classmethod
    def _validate_endpoint_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint_url must be an http(s) URL")
        return value

    @field_validator("chat_input_key", "session_key", "stream_end_sentinel")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level '{value}'")
        return level

    @model_validator(mode="after")
    def _validate_combinations(self) -> 'BridgeSettings':
        if self.chat_input_key == self.session_key:
            raise ValueError("chat_input_key and session_key must differ")
        if self.retry_base_delay_ms > self.retry_max_delay_ms:
            raise ValueError("retry_base_delay_ms must not exceed retry_max_delay_ms")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
            jitter_ratio=self.retry_jitter_ratio,
        )
