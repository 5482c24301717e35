"""Application tests for reporting and resolving delivery issues."""

import json
from datetime import date

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError

from delivery.delivery_order.creation import CreateDeliveryOrder
from delivery.delivery_order.delivery_order import DeliveryOrder, IssueStatus
from delivery.delivery_order.issues import ReportDeliveryIssue, ResolveDeliveryIssue


def _create_order():
    command = CreateDeliveryOrder(
        branch_id="branch-br",
        branch_code="BR",
        scheduled_date=date(2025, 1, 15),
        start_longitude=0.0,
        start_latitude=0.0,
        items=json.dumps(
            [
                {
                    "shipment_order_ref": "so-1",
                    "waybill_number": "WB-001",
                    "receiver_name": "Budi",
                    "receiver_address": "Jl. Merdeka 1",
                    "receiver_phone": "0811000001",
                }
            ]
        ),
        performed_by="dispatcher",
    )
    return current_domain.process(command, asynchronous=False)


def _report(order_id, **overrides):
    fields = {
        "order_id": order_id,
        "kind": "traffic",
        "description": "Road closed near the toll gate",
        "performed_by": "driver-1",
    }
    fields.update(overrides)
    current_domain.process(ReportDeliveryIssue(**fields), asynchronous=False)
    return current_domain.repository_for(DeliveryOrder).get(order_id)


class TestIssueCommands:
    def test_report_and_resolve(self):
        order_id = _create_order()
        order = _report(order_id, severity="high", longitude=106.8, latitude=-6.2)
        issue = order.issues[0]
        assert issue.severity == "high"
        assert issue.location.latitude == -6.2

        current_domain.process(
            ResolveDeliveryIssue(
                order_id=order_id,
                issue_id=str(issue.id),
                resolution="Took the detour",
                performed_by="dispatcher",
            ),
            asynchronous=False,
        )

        resolved = current_domain.repository_for(DeliveryOrder).get(order_id).issues[0]
        assert resolved.status == IssueStatus.RESOLVED.value
        assert resolved.resolution == "Took the detour"

    def test_resolve_unknown_issue(self):
        order_id = _create_order()
        with pytest.raises(ObjectNotFoundError):
            current_domain.process(
                ResolveDeliveryIssue(
                    order_id=order_id, issue_id="missing", resolution="Done", performed_by="dispatcher"
                ),
                asynchronous=False,
            )
