"""Translation of service errors to HTTP errors."""

from fastapi import HTTPException, status

from backend.app.errors import (
    AlreadyProcessedError,
    AnswerGenerationError,
    DocQAError,
    DocumentNotFoundError,
    InProgressError,
    InvalidTransitionError,
    InvalidUploadError,
    SessionNotFoundError,
    StoreUnavailableError,
)

_STATUS_BY_ERROR: list[tuple[type[DocQAError], int]] = [
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyProcessedError, status.HTTP_409_CONFLICT),
    (InProgressError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (InvalidUploadError, status.HTTP_400_BAD_REQUEST),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AnswerGenerationError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(error: DocQAError) -> HTTPException:
    """Build the HTTPException for a service error (message passed verbatim)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="internal error",
    )
