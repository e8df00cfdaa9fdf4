"""Sync configuration loader.

Loads settings from data/config/sync_config_v1.yaml, falling back to
built-in defaults when the file is missing.

Usage:
    from studysync.config.sync_config import load_sync_config

    config = load_sync_config()
    timeout = config.fetch_timeout
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/sync_config_v1.yaml")

DB_PATH_ENV = "STUDYSYNC_DB_PATH"

MirrorStyle = Literal["prefix", "host"]


@dataclass
class MirrorConfig:
    """A proxy/mirror origin able to serve some upstream hosts.

    style="prefix": candidate is base + full upstream URL.
    style="host": the upstream host is replaced by the mirror host.
    """

    base: str
    style: MirrorStyle = "prefix"
    hosts: list[str] = field(default_factory=list)

    def serves(self, host: str) -> bool:
        """Check whether this mirror can rewrite URLs of the given host."""
        return "*" in self.hosts or host in self.hosts


@dataclass
class ManifestConfig:
    """Location of the curated source manifest."""

    repo: str = "studysync/question-banks"
    branch: str = "main"
    path: str = "manifest.json"

    @property
    def api_url(self) -> str:
        return f"https://api.github.com/repos/{self.repo}/contents/{self.path}?ref={self.branch}"

    @property
    def raw_url(self) -> str:
        return f"https://raw.githubusercontent.com/{self.repo}/{self.branch}/{self.path}"


@dataclass
class SyncConfig:
    """Settings for fetching, scheduling and storing synced banks."""

    fetch_timeout: float = 10.0
    max_candidates: int = 6
    listing_attempts: int = 2
    listing_retry_delay: float = 1.0
    cooldown_seconds: int = 3600
    protect_bank_shrink: bool = False
    user_agent: str = "studysync/0.1"
    db_path: Path = Path("db/studysync.db")
    mirrors: list[MirrorConfig] = field(default_factory=list)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)


# Module-level cache
_cached_config: SyncConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    github_hosts = [
        "raw.githubusercontent.com",
        "gist.githubusercontent.com",
        "github.com",
    ]
    return {
        "sync": {
            "fetch_timeout": 10,
            "max_candidates": 6,
            "listing_attempts": 2,
            "listing_retry_delay": 1.0,
            "cooldown_seconds": 3600,
            "protect_bank_shrink": False,
            "user_agent": "studysync/0.1",
        },
        "mirrors": [
            {"base": "https://ghproxy.net/", "style": "prefix", "hosts": ["*"]},
            {"base": "https://mirror.ghproxy.com/", "style": "prefix", "hosts": github_hosts},
            {
                "base": "https://raw.gitmirror.com",
                "style": "host",
                "hosts": ["raw.githubusercontent.com", "gist.githubusercontent.com"],
            },
        ],
        "manifest": {
            "repo": "studysync/question-banks",
            "branch": "main",
            "path": "manifest.json",
        },
        "paths": {
            "db_path": "db/studysync.db",
        },
    }


def _parse_config(data: dict[str, Any]) -> SyncConfig:
    """Parse configuration dictionary into SyncConfig object."""
    defaults = _get_defaults()
    sync_data = {**defaults["sync"], **(data.get("sync") or {})}

    mirrors = [
        MirrorConfig(
            base=m["base"],
            style=m.get("style", "prefix"),
            hosts=list(m.get("hosts", ["*"])),
        )
        for m in data.get("mirrors", defaults["mirrors"]) or []
    ]

    manifest_data = {**defaults["manifest"], **(data.get("manifest") or {})}
    manifest = ManifestConfig(
        repo=manifest_data["repo"],
        branch=manifest_data["branch"],
        path=manifest_data["path"],
    )

    paths = {**defaults["paths"], **(data.get("paths") or {})}
    db_path = Path(os.environ.get(DB_PATH_ENV) or paths["db_path"])

    return SyncConfig(
        fetch_timeout=float(sync_data["fetch_timeout"]),
        max_candidates=int(sync_data["max_candidates"]),
        listing_attempts=int(sync_data["listing_attempts"]),
        listing_retry_delay=float(sync_data["listing_retry_delay"]),
        cooldown_seconds=int(sync_data["cooldown_seconds"]),
        protect_bank_shrink=bool(sync_data["protect_bank_shrink"]),
        user_agent=str(sync_data["user_agent"]),
        db_path=db_path,
        mirrors=mirrors,
        manifest=manifest,
    )


def load_sync_config(
    config_path: Path | None = None,
    force_reload: bool = False,
) -> SyncConfig:
    """Load sync config, using defaults when no file exists.

    Args:
        config_path: Override config file location.
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        SyncConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_path is None:
        return _cached_config

    path = config_path or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_sync_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_sync_config")
        data = _get_defaults()

    config = _parse_config(data)
    if config_path is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
