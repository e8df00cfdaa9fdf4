"""Sync trigger and status endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, status

from studysync.core.errors import SyncError
from studysync.core.sync_orchestrator import SyncOrchestrator
from studysync.web.dependencies import http_error, orchestrator_dependency
from studysync.web.schemas import (
    ManifestSyncResponse,
    SyncAllResponse,
    SyncStatusResponse,
)

router = APIRouter(prefix="/api", tags=["sync"])


@router.post("/sync", response_model=SyncAllResponse)
def sync_all(
    background_tasks: BackgroundTasks,
    force: bool = False,
    background: bool = False,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SyncAllResponse:
    """Sync every auto-update subscription.

    With background=true the full cycle (manifest, then content) is
    scheduled after the response and policy rejections are silent.
    """
    total = sum(1 for s in orchestrator.list_sources() if s.auto_update)

    if background:
        background_tasks.add_task(orchestrator.run_background_sync, force=force)
        return SyncAllResponse(scheduled=True, synced=0, total=total)

    try:
        synced = orchestrator.sync_all_auto_update(force=force)
    except SyncError as e:
        raise http_error(e) from e
    return SyncAllResponse(scheduled=False, synced=synced, total=total)


@router.post("/manifest/sync", response_model=ManifestSyncResponse)
def sync_manifest(
    force: bool = False,
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> ManifestSyncResponse:
    """Refresh the curated list of official sources."""
    try:
        result = orchestrator.sync_manifest(force=force)
    except SyncError as e:
        raise http_error(e) from e

    return ManifestSyncResponse(
        via=result.via,
        entries=len(result.entries),
        added=result.added,
        marked_official=result.marked_official,
    )


@router.get("/sync/status", response_model=SyncStatusResponse, status_code=status.HTTP_200_OK)
def sync_status(
    orchestrator: SyncOrchestrator = Depends(orchestrator_dependency),
) -> SyncStatusResponse:
    """Whether a sync is running and how long the cooldown lasts."""
    return SyncStatusResponse(
        is_syncing=orchestrator.is_syncing(),
        last_manifest_sync=orchestrator.last_manifest_sync(),
        cooldown_remaining=orchestrator.cooldown_remaining(),
    )
