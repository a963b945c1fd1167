"""Error taxonomy shared by the pipeline, the retry policy and the collaborators."""


class MigrationError(Exception):
    """Base class for every error raised by legacylink."""


class BackendError(MigrationError):
    """A remote call to the generative backend failed."""


class TransientBackendError(BackendError):
    """Rate-limit / overload signal. Safe to retry."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class FatalBackendError(BackendError):
    """Non-retryable backend failure, e.g. a response that does not fit the expected payload."""


class RetriesExhaustedError(FatalBackendError):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f'gave up after {attempts} attempts: {last_error}')
        self.attempts = attempts
        self.last_error = last_error


class SessionBootstrapError(MigrationError):
    """Analysis or decomposition could not produce a unit list. Fatal to the session."""


class SessionAbandonedError(MigrationError):
    """A result arrived for a session that has since been discarded."""
