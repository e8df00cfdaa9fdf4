"""Core sync engine.

Modules (leaf to root):
- mirror_fetcher: Candidate URLs, mirror fallback, per-cycle blacklist
- format_normalizer: Tables and structured lists -> normalized banks
- source_resolver: Multi-file (gist) sources with single-blob fallback
- reconciler: Content-addressed merge into the local store
- sync_orchestrator: Single-flight, cooldown, manifest and content syncs
"""

__all__ = [
    "mirror_fetcher",
    "format_normalizer",
    "source_resolver",
    "reconciler",
    "sync_orchestrator",
]
