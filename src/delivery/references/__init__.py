"""Reference resolution: pluggable lookup of identifiers owned by other contexts."""

import os

from protean.exceptions import ValidationError

_resolver_instance = None


def get_resolver():
    """Return the configured reference resolver (singleton).

    Uses the in-memory resolver by default. In production, configure via
    REFERENCE_RESOLVER environment variable.
    """
    global _resolver_instance
    if _resolver_instance is None:
        adapter = os.environ.get("REFERENCE_RESOLVER", "memory")
        if adapter == "memory":
            from delivery.references.memory_adapter import InMemoryReferenceResolver

            _resolver_instance = InMemoryReferenceResolver()
        else:
            raise ValueError(f"Unknown reference resolver: {adapter}")
    return _resolver_instance


def reset_resolver():
    """Reset the resolver singleton (useful for testing)."""
    global _resolver_instance
    _resolver_instance = None


def ensure_references(**references) -> None:
    """Raise ValidationError for every supplied reference that does not resolve.

    Keyword names are reference kinds; empty values are skipped.
    """
    resolver = get_resolver()
    errors = {}
    for kind, reference in references.items():
        if not reference:
            continue
        for ref in reference if isinstance(reference, (list, tuple, set)) else [reference]:
            if not resolver.exists(kind, str(ref)):
                errors.setdefault(kind, []).append(f"Unknown {kind.replace('_', ' ')}: {ref}")
    if errors:
        raise ValidationError(errors)
