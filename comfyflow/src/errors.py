"""
Error taxonomy for the generation pipeline.

Every fatal condition raised out of ``generate()`` is one of the
``ComfyFlowError`` subclasses below. ``PartialOutputFailure`` is a warning,
not an exception: the degraded result is still returned to the caller.
"""


class ComfyFlowError(Exception):
    """Base class for all comfyflow failures."""

    ...


class ValidationError(ComfyFlowError):
    """Bad configuration or workflow template. Never retried."""

    ...


class SubmissionError(ComfyFlowError):
    """The server (or the transport) rejected the job submission.

    Not retried: resubmitting would create a duplicate job.
    """

    ...


class FetchError(ComfyFlowError):
    """A GET against the server failed for good."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """A GET failed with a status worth retrying (404 / 500)."""

    ...


class ExecutionFailure(ComfyFlowError):
    """The server reports that the job itself failed."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(f"Job {job_id} failed on server: {reason}")
        self.job_id = job_id
        self.reason = reason


class Timeout(ComfyFlowError, TimeoutError):
    """The absolute wall-clock budget for a job was exceeded."""

    ...


class NoOutputsError(ComfyFlowError):
    """Collection finished without a single saved artifact."""

    ...


class PartialOutputFailure(UserWarning):
    """Some artifacts could not be downloaded, but at least one was saved."""

    def __init__(self, saved_count: int, failed_count: int):
        super().__init__(
            f"{failed_count} artifact(s) failed to download, {saved_count} saved"
        )
        self.saved_count = saved_count
        self.failed_count = failed_count
