from typing import Any


class JobSystemError(Exception):
    """Base exception for the background job subsystem."""

    error_code = "JOB_SYSTEM_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class StoreConnectionError(JobSystemError):
    """Raised when the job store cannot be reached. Transient."""

    error_code = "STORE_UNAVAILABLE"


class SerializationError(JobSystemError):
    """Raised when a job payload cannot be serialized or deserialized."""

    error_code = "SERIALIZATION_ERROR"


class UnknownJobKind(JobSystemError):
    """Raised when a task name matches no registered job kind."""

    error_code = "UNKNOWN_JOB_KIND"

    def __init__(self, task_name: str):
        self.task_name = task_name
        super().__init__(
            f"Unknown job type: {task_name}", details={"task_name": task_name}
        )


class ExecutionError(JobSystemError):
    """Raised by a job routine to report a failed execution."""

    error_code = "EXECUTION_ERROR"


class EnqueueError(JobSystemError):
    """Base for failures returned synchronously from enqueue."""

    error_code = "ENQUEUE_ERROR"


class EnqueueFailed(EnqueueError):
    """Raised when the record could not be inserted into the store."""

    error_code = "ENQUEUE_FAILED"


class SerializationFailed(EnqueueError, SerializationError):
    """Raised when a job could not be serialized at enqueue time."""

    error_code = "SERIALIZATION_FAILED"
