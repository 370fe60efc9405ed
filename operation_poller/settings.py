"""Poll parameters read from the environment.

Recognized variables (all optional):
    POLL_INTERVAL               seconds between attempts
    POLL_TOTAL_TIMEOUT          overall budget in seconds
    POLL_MAX_ATTEMPTS           attempt bound used by BoundedRetrier
    POLL_PER_ATTEMPT_TIMEOUT    deadline of a single status fetch
"""

from typing import Optional

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict
from operation_poller.models import PollConfig


class PollSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POLL_", env_file=".env", extra="ignore")

    interval: PositiveFloat = Field(default=30.0, description="Polling cadence in seconds")
    total_timeout: PositiveFloat = Field(default=1800.0, description="Overall budget in seconds")
    max_attempts: Optional[PositiveInt] = Field(
        default=None, description="Alternative bound for the retrier"
    )
    per_attempt_timeout: Optional[PositiveFloat] = Field(
        default=None, description="Optional per-call deadline in seconds"
    )

    def to_config(self) -> PollConfig:
        return PollConfig(
            interval=self.interval,
            total_timeout=self.total_timeout,
            max_attempts=self.max_attempts,
            per_attempt_timeout=self.per_attempt_timeout,
        )


def load_poll_config(defaults: Optional[PollConfig] = None) -> PollConfig:
    """Build a PollConfig from POLL_* environment variables over the given defaults"""
    settings = PollSettings()
    if defaults is None:
        return settings.to_config()
    values = defaults.model_dump()
    values.update(settings.model_dump(include=settings.model_fields_set))
    return PollConfig(**values)
