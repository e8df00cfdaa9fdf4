"""Source lookup helpers for the CLI.

A source reference is either its numeric id or a unique prefix of its
name (case-insensitive).

Functions:
- resolve_source_id(ref, sources) -> int: Resolve a reference to one source id
"""

from studysync.db.sources_repository import SourceRecord


class AmbiguousSourceError(Exception):
    """Raised when a name prefix matches multiple sources."""

    def __init__(self, ref: str, candidates: list[SourceRecord]):
        self.ref = ref
        self.candidates = candidates
        super().__init__(
            f"Referencia '{ref}' es ambigua. Candidatos:\n"
            + "\n".join(f"  - [{c.id}] {c.name}" for c in candidates)
        )


class UnknownSourceError(Exception):
    """Raised when no source matches the given reference."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"No se encontró ninguna suscripción para '{ref}'")


def resolve_source_id(ref: str, sources: list[SourceRecord]) -> int:
    """Resolve an id or name prefix to a unique source id.

    Args:
        ref: Numeric id, full name or name prefix
        sources: All known sources

    Returns:
        The matching source id

    Raises:
        UnknownSourceError: If nothing matches
        AmbiguousSourceError: If the prefix matches several sources
    """
    ref = ref.strip()
    if ref.isdigit():
        source_id = int(ref)
        if any(s.id == source_id for s in sources):
            return source_id
        raise UnknownSourceError(ref)

    lowered = ref.lower()
    exact = [s for s in sources if s.name.lower() == lowered]
    if len(exact) == 1:
        return exact[0].id

    matches = [s for s in sources if s.name.lower().startswith(lowered)]
    if not matches:
        raise UnknownSourceError(ref)
    if len(matches) > 1:
        raise AmbiguousSourceError(ref, matches)
    return matches[0].id
