"""Delivery bounded context: Last-Mile Delivery Orders.

Handles the lifecycle of a delivery order: one vehicle/driver crew carrying a
batch of shipment items, from assignment through route sequencing, proof of
delivery, cash-on-delivery reconciliation and live location tracking. Uses
CQRS because the order is mutated through explicit commands and read through
projections.
"""

import structlog
from protean.domain import Domain

from delivery.utils.logging import configure_logging

# Configure logging for the application
configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
delivery = Domain(name="delivery")
