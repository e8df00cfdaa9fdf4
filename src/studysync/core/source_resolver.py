"""Multi-file source resolver.

Responsibilities:
- List the files of a multi-file source (gist) with one bounded-retry
  metadata call
- Fetch each file through the mirror fetcher and normalize it, using the
  filename without extension as the default bank name
- Namespace remote keys by file index so files cannot collide
- Fall back to a single-blob fetch when listing fails, flagging the
  result as partial so reconciliation skips bank deletion
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import requests
import structlog

from studysync.config.sync_config import SyncConfig
from studysync.core.errors import FetchError, ListingError
from studysync.core.format_normalizer import (
    NormalizedBank,
    default_bank_name,
    ensure_unique_keys,
    normalize_payload,
)
from studysync.core.mirror_fetcher import MirrorFetcher, parse_gist_url

logger = structlog.get_logger(__name__)

GIST_API_BASE = "https://api.github.com/gists/"

TABLE_EXTENSIONS = (".csv", ".tsv", ".txt")
STRUCTURED_EXTENSIONS = (".json",)


@dataclass
class RemoteFile:
    """One named file of a multi-file source."""

    filename: str
    raw_url: str


@dataclass
class ResolvedSource:
    """Normalized banks for a source plus how they were retrieved."""

    banks: list[NormalizedBank]
    partial: bool = False
    via: str = "single"

    @property
    def question_count(self) -> int:
        return sum(len(b.questions) for b in self.banks)


class SourceResolver:
    """Resolve a source URL into normalized banks."""

    def __init__(
        self,
        fetcher: MirrorFetcher,
        config: SyncConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.config = config
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Multi-file
    # -------------------------------------------------------------------------

    def list_files(self, gist_id: str) -> list[RemoteFile]:
        """List files of a gist through its API.

        Raises:
            ListingError: If no attempt returned a usable listing
        """
        api_url = f"{GIST_API_BASE}{gist_id}"
        attempts = max(self.config.listing_attempts, 1)
        problem = "sin respuesta"

        for attempt in range(1, attempts + 1):
            logger.debug("resolver.listing_attempt", url=api_url, attempt=attempt)
            try:
                response = self.fetcher.session.get(
                    api_url, timeout=self.config.fetch_timeout
                )
            except requests.RequestException as e:
                problem = f"{type(e).__name__}: {e}"
                logger.info("resolver.listing_transport_error", attempt=attempt, error=type(e).__name__)
                if attempt < attempts:
                    self._sleep(self.config.listing_retry_delay)
                continue

            if not response.ok:
                problem = f"HTTP {response.status_code}"
                logger.info("resolver.listing_http_error", attempt=attempt, status=response.status_code)
                if response.status_code == 404:
                    break
                continue

            try:
                files = response.json().get("files") or {}
            except ValueError as e:
                raise ListingError(f"Listado de archivos ilegible: {e}") from e

            return [
                RemoteFile(filename=name, raw_url=meta["raw_url"])
                for name, meta in files.items()
                if isinstance(meta, dict) and meta.get("raw_url")
            ]

        raise ListingError(f"No se pudo listar los archivos de {gist_id} ({problem})")

    def resolve_multi_file(self, url: str) -> list[NormalizedBank]:
        """Fetch and normalize every supported file of a gist.

        Any file fetch failure fails the whole call: a multi-file sync is
        never partial.

        Raises:
            ListingError: If listing fails or the URL is not a gist
            FetchError: If a file could not be downloaded
            FormatError: If a file cannot be parsed
        """
        gist = parse_gist_url(url)
        if gist is None:
            raise ListingError(f"No es una fuente multi-archivo: {url}")

        files = self.list_files(gist[1])
        banks: list[NormalizedBank] = []

        for index, remote_file in enumerate(files, start=1):
            lowered = remote_file.filename.lower()
            if lowered.endswith(STRUCTURED_EXTENSIONS):
                kind = "structured"
            elif lowered.endswith(TABLE_EXTENSIONS):
                kind = "table"
            else:
                logger.info("resolver.file_skipped", filename=remote_file.filename)
                continue

            text = self.fetcher.fetch_text(remote_file.raw_url)
            file_banks = normalize_payload(
                text, default_bank_name(remote_file.filename), kind=kind
            )
            for bank in file_banks:
                bank.remote_key = f"file{index}_{bank.remote_key}"
            banks.extend(file_banks)
            logger.debug(
                "resolver.file_parsed",
                filename=remote_file.filename,
                banks=len(file_banks),
            )

        return ensure_unique_keys(banks)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def resolve(self, url: str, default_name: str) -> ResolvedSource:
        """Resolve a source URL into banks.

        Gist URLs go through the multi-file path first. If listing or a file
        download fails, the raw blob is fetched instead and the result is
        marked partial. Other URLs are fetched as a single blob, which is a
        complete view of the source.

        Raises:
            FetchError: If the single-blob fetch fails
            FormatError: If content cannot be parsed
        """
        if parse_gist_url(url) is not None:
            try:
                banks = self.resolve_multi_file(url)
                if banks:
                    return ResolvedSource(banks=banks, partial=False, via="multi_file")
                logger.info("resolver.multi_file_empty", url=url)
            except (ListingError, FetchError) as e:
                logger.warning("resolver.degraded", url=url, error=str(e))

            text = self.fetcher.fetch_text(url)
            banks = normalize_payload(text, default_name)
            return ResolvedSource(banks=banks, partial=True, via="single_fallback")

        text = self.fetcher.fetch_text(url)
        banks = normalize_payload(text, default_name)
        return ResolvedSource(banks=banks, partial=False, via="single")
