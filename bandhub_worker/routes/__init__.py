"""HTTP routes for health checks and metrics."""

from fastapi import HTTPException, Request

from bandhub_worker.queue.worker import WorkerStack


def get_stack(request: Request) -> WorkerStack:
    """The worker stack the app's lifespan started."""
    stack = getattr(request.app.state, "stack", None)
    if stack is None:
        raise HTTPException(status_code=503, detail="Worker not started")
    return stack
