"""Error taxonomy for the job priority and scheduling layer."""

from typing import Optional


class WorkerError(Exception):
    """Base worker error."""


class ConfigurationError(WorkerError):
    """Raised when a queue name or job options are invalid at submission time."""


class JobNotFoundError(WorkerError):
    """Raised when a job id does not exist in the given queue."""


class InvalidStateError(WorkerError):
    """Raised when an operation is not legal for the job's current state."""

    def __init__(self, job_id: str, state: str, operation: str = "reprioritize"):
        super().__init__(f"Cannot {operation} job {job_id} in state: {state}")
        self.job_id = job_id
        self.state = state


class TransientExternalError(WorkerError):
    """External call failed; the job's retry/backoff policy applies."""


class CircuitOpenError(TransientExternalError):
    """Raised while a circuit breaker is open and rejecting calls."""

    def __init__(self, name: str):
        super().__init__(f"circuit_open: {name}")
        self.name = name


class YouTubeQuotaExceededError(TransientExternalError):
    """The daily YouTube Data API quota is exhausted."""


class YouTubeRateLimitError(TransientExternalError):
    """YouTube asked us to slow down."""

    def __init__(self, message: str, retry_after: float = 60.0):
        super().__init__(message)
        self.retry_after = retry_after


class PartialBatchError(WorkerError):
    """A single record inside a batch failed; siblings keep going."""

    def __init__(self, record_key: str, cause: Optional[BaseException] = None):
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Error processing {record_key}: {detail}")
        self.record_key = record_key
        self.cause = cause


class TerminalError(WorkerError):
    """Job cannot succeed by retrying; fail it immediately."""
