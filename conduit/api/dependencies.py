"""FastAPI dependencies for the webhook receiver."""

from fastapi import HTTPException, Request

from conduit.domain.interfaces.queue_interface import IJobQueue


def get_job_queue(request: Request) -> IJobQueue:
    """Job queue created by the app lifespan (or injected by tests)."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Job queue not available")
    return queue
