"""Exception classes for the document converter."""


class DocConverterError(Exception):
    """Base exception for all application errors."""

    pass


class UploadRejected(DocConverterError):
    """Upload failed validation; no job was created."""

    pass


class UploadTooLarge(UploadRejected):
    """Upload exceeded the configured size limit."""

    def __init__(self, limit_mb: int) -> None:
        self.limit_mb = limit_mb
        super().__init__(f"upload exceeds {limit_mb} MB")


class JobNotFound(DocConverterError):
    """No job record exists for the identifier."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"job {job_id} not found")


class JobNotDeletable(DocConverterError):
    """Job is still in progress and cannot be deleted."""

    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"job {job_id} is {status}; only finished jobs can be deleted")


class InvalidTransition(DocConverterError):
    """Write attempted against a job that already reached a terminal state."""

    pass


class JobStoreError(DocConverterError):
    """Job store I/O failed."""

    pass


class ServiceUnavailable(DocConverterError):
    """Service is shutting down and no longer accepts work."""

    pass
