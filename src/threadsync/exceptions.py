"""Custom exceptions for threadsync.

Every failure the conversation core reports derives from ThreadSyncError.
The API layer maps ``status_code`` and ``code`` straight onto the response.
"""


class ThreadSyncError(Exception):
    """Base class for conversation core errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ThreadSyncError):
    """Raised when a thread, message or share link does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource.capitalize()} not found: {identifier}")


class ForbiddenError(ThreadSyncError):
    """Raised when the requester may not read or modify a resource."""

    code = "forbidden"
    status_code = 403


class ConflictError(ThreadSyncError):
    """Raised on concurrent generation, id/token collisions and stale writes."""

    code = "conflict"
    status_code = 409


class ValidationError(ThreadSyncError):
    """Raised for malformed input, e.g. an anchor or cutoff in another thread."""

    code = "validation_error"
    status_code = 422


class UpstreamTimeoutError(ThreadSyncError):
    """Raised when an external collaborator exceeds its time budget."""

    code = "upstream_timeout"
    status_code = 504

    def __init__(self, message: str, timeout: float | None = None):
        self.timeout = timeout
        super().__init__(message)


class GenerationFailedError(ThreadSyncError):
    """Raised when a model or title generation call fails."""

    code = "generation_failed"
    status_code = 502

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class StorageUnavailableError(ThreadSyncError):
    """Raised when the persistence store cannot be reached."""

    code = "storage_unavailable"
    status_code = 503
