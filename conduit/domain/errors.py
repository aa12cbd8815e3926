"""
Domain exceptions.

The worker pool decides retry behaviour from the exception class, so every
failure that crosses a job boundary should be one of these.
"""

from typing import Any


class ConduitError(Exception):
    """Base exception for all Conduit errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DuplicateEntityError(ConduitError):
    """Raised by a store when an insert hits a uniqueness constraint."""

    def __init__(self, entity: str, key: dict[str, Any]):
        super().__init__(f"{entity} already exists for {key}", {"key": key})
        self.entity = entity
        self.key = key


class EntityNotFoundError(ConduitError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ConduitError):
    """Raised when a state machine transition is not allowed."""


class ProviderSendError(ConduitError):
    """
    Transient provider or network failure.

    Retried according to the job's retry policy.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider: str | None = None,
    ):
        super().__init__(message, {"status_code": status_code, "provider": provider})
        self.status_code = status_code
        self.provider = provider


class PermanentDeliveryError(ConduitError):
    """
    Delivery that can never succeed (missing config, address or body).

    The message is marked failed at once and the job is not retried.
    """


class UnrecoverableJobError(ConduitError):
    """A job failure that must not be retried."""


class JobStalledError(UnrecoverableJobError):
    """A job whose lease expired after its last allowed attempt."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(f"Job {job_id} stalled after {attempts} attempt(s)")
        self.job_id = job_id


class UnknownJobError(UnrecoverableJobError):
    """Raised when no handler is registered for a job name."""

    def __init__(self, queue: str, name: str):
        super().__init__(f"Unknown job '{name}' on queue '{queue}'")
        self.queue = queue
        self.name = name


class ParseError(ConduitError):
    """Raised by a provider adapter when a payload cannot be parsed."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, {"provider": provider})
        self.provider = provider
