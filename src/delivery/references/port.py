"""Reference resolver port: checks identifiers owned by other contexts.

Branches, vehicles, employees and shipment orders live outside the delivery
context. The domain only needs to know whether a reference exists.
"""

from abc import ABC, abstractmethod


class ReferenceResolver(ABC):
    """Abstract interface for reference resolution adapters."""

    @abstractmethod
    def exists(self, kind: str, reference: str) -> bool:
        """Return True when ``reference`` identifies a known record of ``kind``.

        ``kind`` is one of: branch, vehicle, driver, helper, shipment_order.
        """
        ...
