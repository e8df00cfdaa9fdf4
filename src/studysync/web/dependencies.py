"""Shared dependencies and error mapping for route handlers."""

from fastapi import HTTPException, status

from studysync.core.errors import (
    DuplicateSourceError,
    FetchError,
    FormatError,
    ListingError,
    SourceNotFoundError,
    SyncCooldownError,
    SyncError,
    SyncInProgressError,
)
from studysync.core.sync_orchestrator import SyncOrchestrator, get_orchestrator


def orchestrator_dependency() -> SyncOrchestrator:
    """Process-wide orchestrator (overridden in tests)."""
    return get_orchestrator()


def http_error(error: SyncError) -> HTTPException:
    """Map a sync exception to the HTTP error clients should see."""
    if isinstance(error, SourceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (DuplicateSourceError, SyncInProgressError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, SyncCooldownError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(error),
            headers={"Retry-After": str(int(error.remaining_seconds) + 1)},
        )
    if isinstance(error, FormatError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, (FetchError, ListingError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
