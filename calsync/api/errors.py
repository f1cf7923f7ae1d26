"""Translate orchestrator failures into HTTP responses.

Routers call ``raise http_error(exc) from exc`` in an ``except SyncError``
block.  The response detail always carries the error's stable ``code``
so callers can branch on it without parsing messages:

  {"detail": {"code": "duplicate_slug", "message": "..."}}

  DuplicateSlug                       409
  OrganizationNotFound, StaffNotFound 404
  *NotSchedulable                     409
  TransientSyncError subclasses       503  (safe to retry)
  ConfigurationError,
  CompensationFailed, anything else   500
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from calsync.core.errors import (
    CompensationFailed,
    DuplicateSlug,
    ExpertNotSchedulable,
    OrganizationNotFound,
    OrganizationNotSchedulable,
    StaffNotFound,
    SyncError,
    TransientSyncError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_TYPE: list[tuple[type[SyncError], int]] = [
    (DuplicateSlug, status.HTTP_409_CONFLICT),
    (OrganizationNotFound, status.HTTP_404_NOT_FOUND),
    (StaffNotFound, status.HTTP_404_NOT_FOUND),
    (OrganizationNotSchedulable, status.HTTP_409_CONFLICT),
    (ExpertNotSchedulable, status.HTTP_409_CONFLICT),
    (TransientSyncError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: SyncError) -> int:
    for error_type, code in _STATUS_BY_TYPE:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: SyncError) -> HTTPException:
    status_code = status_for(exc)
    if status_code >= 500:
        if isinstance(exc, CompensationFailed):
            logger.error("Orphaned resources need manual cleanup: %s", exc)
        else:
            logger.error("Request failed code=%s: %s", exc.code, exc)

    headers = None
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {"Retry-After": "5"}
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": str(exc)},
        headers=headers,
    )


def validation_error(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"code": "invalid_request", "message": str(exc)},
    )
