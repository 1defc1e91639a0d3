"""Translate report engine errors into HTTP responses."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

from fastapi import HTTPException

from fiscal_report.errors import (
    ConfigurationMissingError,
    ModelInvocationError,
    ReportNotFoundError,
    SessionStateError,
    StageFailedError,
    StagePreconditionError,
    VersionConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ReportNotFoundError, 404),
    (LookupError, 404),
    (StagePreconditionError, 409),
    (VersionConflictError, 409),
    (SessionStateError, 409),
    (ConfigurationMissingError, 422),
    (ValueError, 422),
    (StageFailedError, 502),
    (ModelInvocationError, 502),
)


def http_error(exc: Exception) -> HTTPException | None:
    """Return the HTTPException for a known engine error, or None."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            detail: dict[str, object] = {"error": type(exc).__name__, "message": str(exc)}
            if isinstance(exc, ConfigurationMissingError):
                detail["missing_fields"] = exc.missing_fields
            if isinstance(exc, StagePreconditionError):
                detail["missing"] = exc.missing
            if isinstance(exc, StageFailedError):
                detail["stage_id"] = exc.stage_id
                detail["prompt"] = exc.prompt
            return HTTPException(status_code=code, detail=detail)
    return None


@contextlib.contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise known engine errors as HTTPException; anything else propagates."""
    try:
        yield
    except HTTPException:
        raise
    except Exception as exc:
        error = http_error(exc)
        if error is None:
            raise
        logger.info("Request failed — status=%d error=%s", error.status_code, exc)
        raise error from exc
