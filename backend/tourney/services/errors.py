"""
Service-level error taxonomy.

Everything derives from ValueError so callers that already guard service
calls with ``except ValueError`` keep working. Routes map the concrete
classes onto HTTP status codes (see routes/errors.py).
"""


class TourneyError(ValueError):
    """Base class for progression engine failures."""


class FormatConfigError(TourneyError):
    """Unsupported pool size, unknown bracket shape or malformed format metadata."""


class PreconditionError(TourneyError):
    """Operation rejected; no state was changed."""


class ScoreValidationError(TourneyError):
    """Score history does not describe a completed best-of-3 match."""


class NotFoundError(TourneyError):
    """Referenced tournament, pool, team or match does not exist."""


class MaterializationError(TourneyError):
    """A materialization batch failed and every row it created was removed."""

    def __init__(self, message: str, created_match_ids=None):
        super().__init__(message)
        self.created_match_ids = list(created_match_ids or [])
