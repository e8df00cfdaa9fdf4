"""Source (subscription) endpoints."""

from fastapi import APIRouter, Depends, status

from studysync.core.errors import SyncError
from studysync.core.sync_orchestrator import SyncOrchestrator
from studysync.db.banks_repository import count_questions
from studysync.db.sources_repository import SourceRecord
from studysync.web.dependencies import http_error, orchestrator_dependency
from studysync.web.schemas import (
    BankResponse,
    ReconcileStatsResponse,
    SourceCreate,
    SourceDetailResponse,
    SourceListResponse,
    SourceResponse,
    SourceSyncResponse,
    SourceUpdate,
)

router = APIRouter(prefix="/api/sources", tags=["sources"])


def _sync_response(orchestrator: SyncOrchestrator, source: SourceRecord) -> SourceSyncResponse:
    stats = orchestrator.last_stats.get(source.id)
    return SourceSyncResponse(
        source=SourceResponse(**source.to_dict()),
        stats=ReconcileStatsResponse(**stats.to_dict()) if stats else None,
    )


@router.get("", response_model=SourceListResponse)
def list_sources(
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SourceListResponse:
    """List all subscriptions, newest first."""
    sources = [SourceResponse(**s.to_dict()) for s in orchestrator.list_sources()]
    return SourceListResponse(sources=sources, count=len(sources))


@router.post("", response_model=SourceSyncResponse, status_code=status.HTTP_201_CREATED)
def create_source(
    body: SourceCreate,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SourceSyncResponse:
    """Subscribe to a URL and run its first sync."""
    try:
        source_id = orchestrator.add_source(body.url, body.name)
        source = orchestrator.get_source(source_id)
    except SyncError as e:
        raise http_error(e) from e
    return _sync_response(orchestrator, source)


@router.get("/{source_id}", response_model=SourceDetailResponse)
def get_source(
    source_id: int,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SourceDetailResponse:
    """Get a subscription with its banks."""
    try:
        source = orchestrator.get_source(source_id)
        banks = orchestrator.list_banks(source_id)
    except SyncError as e:
        raise http_error(e) from e

    return SourceDetailResponse(
        **source.to_dict(),
        banks=[
            BankResponse(**bank.to_dict(), question_count=count_questions(bank.id))
            for bank in banks
        ],
    )


@router.patch("/{source_id}", response_model=SourceResponse)
def update_source(
    source_id: int,
    body: SourceUpdate,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SourceResponse:
    """Toggle auto-update for a subscription."""
    try:
        orchestrator.set_auto_update(source_id, body.auto_update)
        source = orchestrator.get_source(source_id)
    except SyncError as e:
        raise http_error(e) from e
    return SourceResponse(**source.to_dict())


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_source(
    source_id: int,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> None:
    """Delete a subscription and all its banks."""
    try:
        orchestrator.remove_source(source_id)
    except SyncError as e:
        raise http_error(e) from e


@router.post("/{source_id}/sync", response_model=SourceSyncResponse)
def sync_source(
    source_id: int,
    force: bool = False,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SourceSyncResponse:
    """Sync one subscription now."""
    try:
        orchestrator.sync_one(source_id, force=force)
        source = orchestrator.get_source(source_id)
    except SyncError as e:
        raise http_error(e) from e
    return _sync_response(orchestrator, source)
