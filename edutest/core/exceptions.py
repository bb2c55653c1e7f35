# edutest/core/exceptions.py
"""
Error taxonomy shared by the session controller and the services.

Recoverable errors (TransientLoadError, UploadError) are handled where they
occur; PreconditionError and PersistenceError abort the current action and
are turned into HTTP errors by the endpoints.
"""


class EduTestError(Exception):
    pass


class TransientLoadError(EduTestError):
    """A document failed to load; may succeed on retry."""


class MissingResourceError(EduTestError):
    """The requested resource does not exist or has no document attached."""


class UploadError(EduTestError):
    def __init__(self, message: str, *, question_number: int | None = None):
        super().__init__(message)
        self.question_number = question_number


class PreconditionError(EduTestError):
    """Rejected before any mutation happened."""


class DuplicateSubmissionError(PreconditionError):
    pass


class PersistenceError(EduTestError):
    """A record could not be written; nothing else was attempted."""
