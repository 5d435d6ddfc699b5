"""
Internal helpers shared by the route handlers.

Engines raise the `sync_wubook.errors` taxonomy; these helpers translate it
into HTTP responses so each handler stays a thin wrapper.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import HTTPException, status

from sync_wubook.config import DRY_RUN
from sync_wubook.errors import ConflictError, NotFoundError, SyncError, ValidationError

logger = structlog.get_logger(__name__)


def resolve_dry_run(requested: Optional[bool]) -> bool:
    """Use the request's dry_run when given, else the DRY_RUN setting."""
    return DRY_RUN if requested is None else requested


def to_http_exception(error: Exception) -> HTTPException:
    """
    Map an engine error to the HTTP status callers rely on.

    Args:
        error: Exception raised by an engine

    Returns:
        HTTPException: 400 for invalid input, 404 for unknown ids, 423 for a
        held lock, 500 otherwise (logged with traceback).
    """
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_423_LOCKED, detail=str(error))

    logger.error(
        "request_failed",
        error=str(error),
        error_type=type(error).__name__,
        sync_error=isinstance(error, SyncError),
        exc_info=error,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )
