# edutest/api/errors.py
from fastapi import HTTPException, status

from edutest.core.exceptions import (
    DuplicateSubmissionError,
    EduTestError,
    MissingResourceError,
    PersistenceError,
    PreconditionError,
    TransientLoadError,
    UploadError,
)


def to_http_exception(e: EduTestError) -> HTTPException:
    """Map a service error onto the HTTP error the client sees."""
    if isinstance(e, DuplicateSubmissionError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, PreconditionError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, MissingResourceError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, PersistenceError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(e, (TransientLoadError, UploadError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(e))
