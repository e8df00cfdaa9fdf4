"""Sync orchestrator.

Owns sync policy for the whole process:
- Single-flight: at most one sync (manifest or content) runs at a time; a
  trigger arriving while one runs is dropped, not queued
- Cooldown: background cycles run at most once per cooldown window after
  the last successful manifest sync; forced syncs reset it
- Mirror blacklist: cleared at the start of every sync cycle
- Status observers: notified when the in-progress flag flips

Background triggers turn policy rejections and per-source failures into
logged no-ops; user-initiated triggers raise them.
"""

from __future__ import annotations

import base64
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar
from urllib.parse import urlsplit

import requests
import structlog

from studysync.config.sync_config import SyncConfig, load_sync_config
from studysync.core.errors import (
    DuplicateSourceError,
    FetchError,
    FormatError,
    SourceNotFoundError,
    SyncCooldownError,
    SyncError,
    SyncInProgressError,
)
from studysync.core.format_normalizer import default_bank_name
from studysync.core.mirror_fetcher import MirrorBlacklist, MirrorFetcher, to_raw_url
from studysync.core.reconciler import ReconcileStats, reconcile_source
from studysync.core.source_resolver import SourceResolver
from studysync.db import sources_repository as sources
from studysync.db.banks_repository import BankRecord, list_banks_for_source
from studysync.db.database import init_db
from studysync.db.progress_repository import get_state, set_state
from studysync.db.sources_repository import SourceRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LAST_MANIFEST_SYNC_KEY = "last_manifest_sync"
DEFAULT_SOURCE_NAME = "Nueva suscripción"

StatusObserver = Callable[[bool], None]


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class ManifestEntry:
    """One curated source listed by the manifest."""

    url: str
    name: str


@dataclass
class ManifestResult:
    """Outcome of a manifest sync."""

    entries: list[ManifestEntry] = field(default_factory=list)
    added: list[int] = field(default_factory=list)
    marked_official: list[int] = field(default_factory=list)
    via: str = "api"


def infer_default_name(url: str) -> str:
    """Default bank name for a URL: its filename without extension."""
    filename = urlsplit(to_raw_url(url)).path.rsplit("/", 1)[-1]
    if "." not in filename:
        return DEFAULT_SOURCE_NAME
    return default_bank_name(filename) or DEFAULT_SOURCE_NAME


def parse_manifest(text: str) -> list[ManifestEntry]:
    """Parse manifest JSON: a list of {url, name} or {"sources": [...]}.

    Raises:
        FormatError: If the document is not valid JSON or has no list
    """
    try:
        data = json.loads(text.lstrip("\ufeff"))
    except json.JSONDecodeError as e:
        raise FormatError(f"Manifiesto inválido: {e}") from e

    if isinstance(data, dict):
        data = data.get("sources")
    if not isinstance(data, list):
        raise FormatError("El manifiesto no contiene una lista de fuentes")

    entries: list[ManifestEntry] = []
    seen: set[str] = set()
    for item in data:
        if not isinstance(item, dict) or not str(item.get("url") or "").strip():
            logger.info("manifest.entry_skipped", entry=str(item)[:80])
            continue
        url = str(item["url"]).strip()
        if url in seen:
            continue
        seen.add(url)
        entries.append(ManifestEntry(url=url, name=str(item.get("name") or url).strip()))
    return entries


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class SyncOrchestrator:
    """Process-wide coordinator for manifest and content syncs."""

    def __init__(
        self,
        config: SyncConfig | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or load_sync_config()
        self.blacklist = MirrorBlacklist()
        self.fetcher = MirrorFetcher(self.config, session=session, blacklist=self.blacklist)
        self.resolver = SourceResolver(self.fetcher, self.config, sleep=sleep)
        self.last_stats: dict[int, ReconcileStats] = {}
        self._clock = clock
        self._flight = threading.Lock()
        self._syncing = False
        self._observers: list[StatusObserver] = []
        self._observers_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Status & observers
    # -------------------------------------------------------------------------

    def is_syncing(self) -> bool:
        return self._syncing

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """Register a status observer. Returns a function that unsubscribes it."""
        with self._observers_lock:
            self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: StatusObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _set_syncing(self, value: bool) -> None:
        self._syncing = value
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(value)
            except Exception:
                logger.exception("sync.observer_failed")

    # -------------------------------------------------------------------------
    # Single-flight & cooldown
    # -------------------------------------------------------------------------

    def _exclusive(
        self,
        work: Callable[[], T],
        background: bool,
        default: T,
        operation: str,
    ) -> T:
        """Run work as one sync cycle, or reject it if a cycle is running."""
        if not self._flight.acquire(blocking=False):
            logger.info("sync.skipped_busy", operation=operation, background=background)
            if background:
                return default
            raise SyncInProgressError()

        try:
            self.blacklist.clear()
            self._set_syncing(True)
            logger.debug("sync.cycle_start", operation=operation)
            return work()
        finally:
            self._set_syncing(False)
            self._flight.release()

    def last_manifest_sync(self) -> float | None:
        """Epoch seconds of the last successful manifest sync."""
        value = get_state(LAST_MANIFEST_SYNC_KEY)
        return float(value) if value else None

    def cooldown_remaining(self) -> float:
        """Seconds left in the cooldown window (0 when elapsed)."""
        last = self.last_manifest_sync()
        if last is None:
            return 0.0
        return max(0.0, last + self.config.cooldown_seconds - self._clock())

    def reset_cooldown(self) -> None:
        """Forget the last manifest sync so the next cycle runs immediately."""
        set_state(LAST_MANIFEST_SYNC_KEY, None)

    def _cooldown_allows(self, background: bool, force: bool) -> bool:
        """Apply the cooldown policy.

        Raises:
            SyncCooldownError: For user-initiated, non-forced requests
                inside the window
        """
        if force:
            self.reset_cooldown()
            self.blacklist.clear()
            return True
        remaining = self.cooldown_remaining()
        if remaining <= 0:
            return True
        logger.info("sync.skipped_cooldown", remaining=int(remaining), background=background)
        if background:
            return False
        raise SyncCooldownError(remaining)

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def list_sources(self) -> list[SourceRecord]:
        return sources.list_sources()

    def get_source(self, source_id: int) -> SourceRecord:
        source = sources.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def list_banks(self, source_id: int) -> list[BankRecord]:
        self.get_source(source_id)
        return list_banks_for_source(source_id)

    def set_auto_update(self, source_id: int, enabled: bool) -> None:
        if not sources.set_auto_update(source_id, enabled):
            raise SourceNotFoundError(source_id)
        logger.info("sources.auto_update_set", source_id=source_id, enabled=enabled)

    def add_source(self, url: str, name: str | None = None) -> int:
        """Subscribe to a URL and run its first content sync.

        Nothing is stored if the first fetch or parse fails.

        Returns:
            The new source id

        Raises:
            DuplicateSourceError: If the URL is already subscribed
            SyncInProgressError: If another sync is running
            FetchError, FormatError: If the content cannot be retrieved
        """
        url = url.strip()

        def work() -> int:
            existing = sources.get_source_by_url(url)
            if existing is not None:
                raise DuplicateSourceError(url, existing.id)

            resolved = self.resolver.resolve(url, name or infer_default_name(url))
            if name:
                final_name = name
            elif len(resolved.banks) == 1:
                final_name = resolved.banks[0].name
            else:
                final_name = infer_default_name(url)

            source_id = sources.insert_source(url, final_name)
            stats = reconcile_source(
                source_id,
                resolved.banks,
                partial=resolved.partial,
                protect_shrink=self.config.protect_bank_shrink,
            )
            sources.mark_synced(source_id)
            self.last_stats[source_id] = stats
            logger.info(
                "sources.added",
                source_id=source_id,
                banks=len(resolved.banks),
                questions=resolved.question_count,
                via=resolved.via,
            )
            return source_id

        return self._exclusive(work, background=False, default=0, operation="add_source")

    def remove_source(self, source_id: int) -> None:
        """Delete a source and every bank it owns.

        Raises:
            SourceNotFoundError: If the source does not exist
            SyncInProgressError: If a sync is running
        """
        def work() -> None:
            if not sources.delete_source(source_id):
                raise SourceNotFoundError(source_id)
            self.last_stats.pop(source_id, None)
            logger.info("sources.removed", source_id=source_id)

        self._exclusive(work, background=False, default=None, operation="remove_source")

    # -------------------------------------------------------------------------
    # Content sync
    # -------------------------------------------------------------------------

    def _sync_source(self, source: SourceRecord) -> ReconcileStats:
        logger.info("sync.source_start", source_id=source.id, url=source.url)
        resolved = self.resolver.resolve(source.url, source.name or infer_default_name(source.url))
        stats = reconcile_source(
            source.id,
            resolved.banks,
            partial=resolved.partial,
            protect_shrink=self.config.protect_bank_shrink,
        )
        sources.mark_synced(source.id)
        self.last_stats[source.id] = stats
        logger.info("sync.source_done", source_id=source.id, via=resolved.via, writes=stats.writes)
        return stats

    def sync_one(self, source_id: int, force: bool = False, background: bool = False) -> bool:
        """Sync one source's content.

        Args:
            source_id: Source to sync
            force: Give blacklisted mirrors another chance
            background: Unattended trigger; failures become False

        Returns:
            True on success, False if a background sync was skipped or failed

        Raises:
            SourceNotFoundError, SyncInProgressError, FetchError, FormatError:
                For user-initiated triggers
        """
        def work() -> bool:
            if force:
                self.blacklist.clear()
            try:
                self._sync_source(self.get_source(source_id))
            except SyncError as e:
                logger.warning("sync.source_failed", source_id=source_id, error=str(e))
                if background:
                    return False
                raise
            return True

        return self._exclusive(work, background=background, default=False, operation="sync_one")

    def _sync_all_auto_update(self) -> int:
        count = 0
        auto_sources = sources.list_auto_update_sources()
        logger.info("sync.all_start", sources=len(auto_sources))
        for source in auto_sources:
            try:
                self._sync_source(source)
                count += 1
            except SyncError as e:
                logger.warning("sync.source_failed", source_id=source.id, error=str(e))
        return count

    def sync_all_auto_update(self, force: bool = False, background: bool = False) -> int:
        """Sync every auto-update source; one failure does not stop the rest.

        Returns:
            Number of sources synced successfully
        """
        def work() -> int:
            if background and not self._cooldown_allows(background=True, force=force):
                return 0
            if force:
                self.blacklist.clear()
            return self._sync_all_auto_update()

        return self._exclusive(work, background=background, default=0, operation="sync_all")

    # -------------------------------------------------------------------------
    # Manifest sync
    # -------------------------------------------------------------------------

    def _fetch_manifest_via_api(self) -> str:
        """Read the manifest through the contents API (base64 payload)."""
        response = self.fetcher.session.get(
            self.config.manifest.api_url, timeout=self.config.fetch_timeout
        )
        if not response.ok:
            raise FetchError(
                self.config.manifest.api_url,
                tried=[self.config.manifest.api_url],
                last_status=response.status_code,
            )
        try:
            payload: dict[str, Any] = response.json()
            return base64.b64decode(payload["content"]).decode("utf-8")
        except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
            raise FormatError(f"Respuesta de API de manifiesto ilegible: {e}") from e

    def _fetch_manifest(self) -> tuple[str, str]:
        """Manifest text, API first then raw URL through the mirrors."""
        try:
            return self._fetch_manifest_via_api(), "api"
        except (requests.RequestException, FetchError, FormatError) as e:
            logger.info("manifest.api_failed", error=str(e))
        return self.fetcher.fetch_text(self.config.manifest.raw_url), "raw"

    def _sync_manifest(self) -> ManifestResult:
        text, via = self._fetch_manifest()
        result = ManifestResult(entries=parse_manifest(text), via=via)

        for entry in result.entries:
            existing = sources.get_source_by_url(entry.url)
            if existing is None:
                source_id = sources.insert_source(
                    entry.url, entry.name, auto_update=True, is_official=True
                )
                result.added.append(source_id)
            elif not existing.is_official:
                sources.mark_official(existing.id)
                result.marked_official.append(existing.id)

        set_state(LAST_MANIFEST_SYNC_KEY, str(self._clock()))
        logger.info(
            "manifest.synced",
            via=via,
            entries=len(result.entries),
            added=len(result.added),
            marked_official=len(result.marked_official),
        )
        return result

    def sync_manifest(self, force: bool = False, background: bool = False) -> ManifestResult | None:
        """Refresh the curated source list (content is not synced here).

        Returns:
            ManifestResult, or None if a background trigger was skipped or
            failed

        Raises:
            SyncInProgressError, SyncCooldownError, FetchError, FormatError:
                For user-initiated triggers
        """
        def work() -> ManifestResult | None:
            if not self._cooldown_allows(background=background, force=force):
                return None
            try:
                return self._sync_manifest()
            except SyncError as e:
                logger.warning("manifest.failed", error=str(e))
                if background:
                    return None
                raise

        return self._exclusive(work, background=background, default=None, operation="sync_manifest")

    # -------------------------------------------------------------------------
    # Background cycle
    # -------------------------------------------------------------------------

    def run_background_sync(self, force: bool = False) -> int | None:
        """Manifest sync followed by all auto-update sources.

        Returns:
            Number of sources synced, or None if the cycle was skipped
        """
        def work() -> int | None:
            if not self._cooldown_allows(background=True, force=force):
                return None
            try:
                self._sync_manifest()
            except SyncError as e:
                logger.warning("manifest.failed", error=str(e))
            return self._sync_all_auto_update()

        return self._exclusive(work, background=True, default=None, operation="background")

    def start_background_sync(self, force: bool = False) -> threading.Thread:
        """Run run_background_sync on a daemon worker thread."""
        thread = threading.Thread(
            target=self.run_background_sync,
            kwargs={"force": force},
            name="studysync-background-sync",
            daemon=True,
        )
        thread.start()
        return thread


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_orchestrator: SyncOrchestrator | None = None


def get_orchestrator() -> SyncOrchestrator:
    """Get the global orchestrator, initializing the database on first use."""
    global _orchestrator
    if _orchestrator is None:
        config = load_sync_config()
        init_db(config.db_path)
        _orchestrator = SyncOrchestrator(config)
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset the global orchestrator (for testing)."""
    global _orchestrator
    _orchestrator = None
