"""In-memory reference resolver for development and testing.

Every reference resolves unless it has been explicitly marked unknown, or the
resolver runs in strict mode and the reference was never registered.
"""

from delivery.references.port import ReferenceResolver


class InMemoryReferenceResolver(ReferenceResolver):
    def __init__(self, strict: bool = False):
        self.strict = strict
        self._known: set[tuple[str, str]] = set()
        self._unknown: set[tuple[str, str]] = set()

    def register(self, kind: str, reference: str) -> None:
        self._known.add((kind, reference))
        self._unknown.discard((kind, reference))

    def mark_unknown(self, kind: str, reference: str) -> None:
        self._unknown.add((kind, reference))
        self._known.discard((kind, reference))

    def exists(self, kind: str, reference: str) -> bool:
        key = (kind, reference)
        if key in self._unknown:
            return False
        if self.strict:
            return key in self._known
        return True
