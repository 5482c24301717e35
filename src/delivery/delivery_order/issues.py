"""Delivery issues: commands and handler for reporting and resolving problems."""

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.delivery_order.creation import location_from
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery

logger = structlog.get_logger(__name__)


@delivery.command(part_of="DeliveryOrder")
class ReportDeliveryIssue:
    """Report a vehicle, traffic, weather, customer or other problem."""

    order_id = Identifier(required=True)
    kind = String(required=True, max_length=20)
    description = Text(required=True)
    severity = String(max_length=20)
    longitude = Float()
    latitude = Float()
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class ResolveDeliveryIssue:
    """Mark a reported issue as resolved."""

    order_id = Identifier(required=True)
    issue_id = Identifier(required=True)
    resolution = Text(required=True)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class DeliveryIssueHandler:
    @handle(ReportDeliveryIssue)
    def report_issue(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        issue = order.report_issue(
            kind=command.kind,
            description=command.description,
            severity=command.severity,
            location=location_from(command.longitude, command.latitude),
            performed_by=command.performed_by,
        )
        repo.add(order)
        logger.info(
            "Delivery issue reported",
            order_id=str(order.id),
            issue_id=str(issue.id),
            kind=issue.kind,
            severity=issue.severity,
        )
        return order

    @handle(ResolveDeliveryIssue)
    def resolve_issue(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.resolve_issue(command.issue_id, resolution=command.resolution, performed_by=command.performed_by)
        repo.add(order)
        return order
