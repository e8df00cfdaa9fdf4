"""Configuration package for studysync."""

from studysync.config.sync_config import (
    ManifestConfig,
    MirrorConfig,
    SyncConfig,
    clear_config_cache,
    load_sync_config,
)

__all__ = [
    "ManifestConfig",
    "MirrorConfig",
    "SyncConfig",
    "clear_config_cache",
    "load_sync_config",
]
