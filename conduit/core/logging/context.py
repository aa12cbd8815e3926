"""
Job context management using contextvars.

The worker sets the job context once per job and the inbound pipeline adds the
tenant as soon as the channel is resolved. Every logger created through
``get_logger`` picks both up without parameter passing.
"""

from contextvars import ContextVar

_tenant_context: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_job_context: ContextVar[str | None] = ContextVar("job_id", default=None)


def set_job_context(job_id: str | None = None, tenant_id: str | None = None) -> None:
    """
    Set the processing context for the current async task.

    Args:
        job_id: Identifier of the job being processed
        tenant_id: Tenant that owns the entities touched by the job
    """
    if job_id is not None:
        _job_context.set(job_id)
    if tenant_id is not None:
        _tenant_context.set(tenant_id)


def get_current_tenant_context() -> str | None:
    """Current tenant ID, or None if not set."""
    return _tenant_context.get()


def get_current_job_context() -> str | None:
    """Current job ID, or None if not set."""
    return _job_context.get()


def clear_job_context() -> None:
    """Reset both context variables (used between jobs and in tests)."""
    _tenant_context.set(None)
    _job_context.set(None)


def get_context_info() -> dict[str, str | None]:
    return {
        "tenant_id": get_current_tenant_context(),
        "job_id": get_current_job_context(),
    }
