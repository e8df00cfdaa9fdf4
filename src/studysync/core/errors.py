"""Exception hierarchy for the sync engine.

Transport, format and policy failures are separate classes because the
orchestrator reacts to each differently: transport errors fall back to
other retrieval paths, format errors fail one source, policy rejections
are silent for background triggers.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync errors."""

    pass


class FetchError(SyncError):
    """Raised when every candidate URL failed for a fetch."""

    def __init__(
        self,
        url: str,
        last_error: Exception | None = None,
        tried: list[str] | None = None,
        last_status: int | None = None,
    ):
        self.url = url
        self.last_error = last_error
        self.tried = tried or []
        self.last_status = last_status
        if last_error is not None:
            detail = f"{type(last_error).__name__}: {last_error}"
        elif last_status is not None:
            detail = f"HTTP {last_status}"
        else:
            detail = "sin candidatos disponibles"
        super().__init__(
            f"No se pudo descargar {url} ({len(self.tried)} intentos, {detail})"
        )


class ListingError(SyncError):
    """Raised when a multi-file source cannot list its files."""

    pass


class FormatError(SyncError):
    """Raised when content cannot be parsed into any question bank."""

    pass


class SourceNotFoundError(SyncError):
    """Raised when a source id does not exist."""

    def __init__(self, source_id: int):
        self.source_id = source_id
        super().__init__(f"Suscripción no encontrada: {source_id}")


class DuplicateSourceError(SyncError):
    """Raised when adding a URL that is already subscribed."""

    def __init__(self, url: str, existing_id: int):
        self.url = url
        self.existing_id = existing_id
        super().__init__(f"La URL ya está suscrita con ID {existing_id}: {url}")


class SyncInProgressError(SyncError):
    """Raised for user-initiated syncs while another sync is running."""

    def __init__(self):
        super().__init__("Ya hay una sincronización en curso")


class SyncCooldownError(SyncError):
    """Raised for user-initiated, non-forced syncs inside the cooldown window."""

    def __init__(self, remaining_seconds: float):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Sincronización reciente; reintenta en {int(remaining_seconds)} s "
            f"o fuerza la sincronización"
        )
