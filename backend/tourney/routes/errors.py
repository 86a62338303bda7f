from fastapi import HTTPException

from tourney.services.errors import (
    MaterializationError,
    NotFoundError,
    PreconditionError,
    ScoreValidationError,
    TourneyError,
)


def http_error(exc: TourneyError) -> HTTPException:
    """Map a service error onto the HTTP status the API reports for it."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, PreconditionError):
        status = 409
    elif isinstance(exc, ScoreValidationError):
        status = 400
    elif isinstance(exc, MaterializationError):
        status = 500
    else:  # FormatConfigError and any other TourneyError
        status = 422
    return HTTPException(status_code=status, detail=str(exc))
