"""
Job model and retry policy.

Jobs are serialized as JSON into the broker, so everything here is a pydantic
model with a stable wire shape.
"""

from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class JobPriority(IntEnum):
    """Lower values run first."""

    INBOUND = 1
    CHATBOT = 2
    TRANSCRIPTION = 2
    SUGGESTION = 3
    SENTIMENT = 4
    DEFAULT = 5


class RetryPolicy(BaseModel):
    """How many times a job runs and how long to wait between runs."""

    attempts: int = Field(1, ge=1, description="Total runs including the first")
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    delay_ms: int = Field(1000, ge=0, description="Base backoff delay")

    def backoff_delay(self, attempts_made: int) -> float:
        """
        Seconds to wait before the next run.

        Args:
            attempts_made: Runs already performed (1 after the first failure)

        Returns:
            Fixed delay, or delay * 2^(attempts_made - 1) for exponential
        """
        base = self.delay_ms / 1000
        if self.backoff == BackoffStrategy.FIXED:
            return base
        return base * (2 ** max(attempts_made - 1, 0))

    def can_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.attempts


class Job(BaseModel):
    """A unit of work on a named queue."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    queue: str
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    priority: int = JobPriority.DEFAULT
    attempts_made: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_error: str | None = None
    finished_at: datetime | None = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Job":
        return cls.model_validate_json(raw)
