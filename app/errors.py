"""
Error taxonomy for the article engine.

``NotFoundError`` and ``ValidationFailure`` are raised deliberately at
well-known checkpoints; ``ConflictError`` is raised when a unique key still
collides after the single automatic retry.  Any other store error is a
``sqlalchemy.exc.SQLAlchemyError`` and is propagated untouched.

``conflict_kind`` is the only place that knows how each database driver
reports a constraint violation.
"""
import enum
from collections.abc import Iterable

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError

# PostgreSQL SQLSTATE codes (asyncpg / psycopg)
_PG_UNIQUE_VIOLATION = "23505"
_PG_FOREIGN_KEY_VIOLATION = "23503"

# SQLite result codes: primary SQLITE_CONSTRAINT plus the extended codes
_SQLITE_CONSTRAINT = 19
_SQLITE_CONSTRAINT_PRIMARYKEY = 1555
_SQLITE_CONSTRAINT_UNIQUE = 2067
_SQLITE_CONSTRAINT_FOREIGNKEY = 787


class ConflictKind(enum.Enum):
    UNIQUE_VIOLATION = "unique_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"


def conflict_kind(exc: IntegrityError) -> ConflictKind | None:
    """
    Classify an ``IntegrityError`` raised by any supported driver.

    Returns None when the violation is of a kind the coordinator does not
    recover from (NOT NULL, CHECK, ...).
    """
    orig = exc.orig

    sqlstate = (
        getattr(orig, "sqlstate", None)
        or getattr(orig, "pgcode", None)
        or getattr(orig.__cause__, "sqlstate", None)
    )
    if sqlstate is not None:
        if str(sqlstate) == _PG_UNIQUE_VIOLATION:
            return ConflictKind.UNIQUE_VIOLATION
        if str(sqlstate) == _PG_FOREIGN_KEY_VIOLATION:
            return ConflictKind.FOREIGN_KEY_VIOLATION
        return None

    errorcode = getattr(orig, "sqlite_errorcode", None)
    if errorcode in (_SQLITE_CONSTRAINT_UNIQUE, _SQLITE_CONSTRAINT_PRIMARYKEY):
        return ConflictKind.UNIQUE_VIOLATION
    if errorcode == _SQLITE_CONSTRAINT_FOREIGNKEY:
        return ConflictKind.FOREIGN_KEY_VIOLATION

    # Older sqlite3 modules only expose the message text.
    if errorcode is None or errorcode & 0xFF == _SQLITE_CONSTRAINT:
        message = str(orig)
        if message.startswith("UNIQUE constraint failed"):
            return ConflictKind.UNIQUE_VIOLATION
        if message.startswith("FOREIGN KEY constraint failed"):
            return ConflictKind.FOREIGN_KEY_VIOLATION
    return None


def is_unique_violation(exc: IntegrityError) -> bool:
    return conflict_kind(exc) is ConflictKind.UNIQUE_VIOLATION


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class ArticleEngineError(Exception):
    """Base class for errors the HTTP layer turns into client responses."""

    status_code = 500

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(errors)
        self.errors = errors


class NotFoundError(ArticleEngineError):
    status_code = 404

    def __init__(self, resource: str) -> None:
        super().__init__({resource: ["not found"]})
        self.resource = resource


class ValidationFailure(ArticleEngineError):
    """Schema violation or ownership mismatch; lists every offending field."""

    status_code = 422

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationFailure":
        errors: dict[str, list[str]] = {}
        for error in exc.errors():
            loc = error["loc"]
            field = to_camel(str(loc[0])) if loc else "body"
            errors.setdefault(field, []).append(error["msg"])
        return cls(errors)

    @classmethod
    def from_request(cls, request_errors: Iterable[dict]) -> "ValidationFailure":
        """
        Build from FastAPI's request validation errors, whose ``loc`` is
        ``(source, [envelope,] field, [index, ...])`` and already uses the
        camelCase aliases.  The field is the first named location below
        the envelope; a missing envelope or query value reports its own name.
        """
        errors: dict[str, list[str]] = {}
        for error in request_errors:
            names = [part for part in error.get("loc", ())[1:] if isinstance(part, str)]
            field = names[1] if len(names) > 1 else (names[0] if names else "body")
            errors.setdefault(field, []).append(error["msg"])
        return cls(errors)


class ConflictError(ArticleEngineError):
    status_code = 409

    def __init__(self, field: str, value: str) -> None:
        super().__init__({field: [f"{value!r} is already taken"]})
        self.field = field
        self.value = value
