"""Delivery order numbers: ``SM`` + YYMMDD + branch code + 4-digit daily sequence.

Example: ``SM250115JK0001`` is the first order of branch JK on 15 Jan 2025.
Sequences restart every day per branch.
"""

import re
from datetime import date

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.errors import PreconditionFailedError

ORDER_NUMBER_PREFIX = "SM"
MAX_DAILY_SEQUENCE = 9999

_BRANCH_CODE = re.compile(r"^[A-Z]{2}$")


def normalize_branch_code(branch_code: str | None) -> str:
    code = (branch_code or "").strip().upper()
    if not _BRANCH_CODE.match(code):
        raise ValidationError({"branch_code": ["Branch code must be exactly two letters"]})
    return code


def number_date(day: date) -> str:
    return day.strftime("%y%m%d")


def format_order_number(day: date, branch_code: str, sequence: int) -> str:
    if not 1 <= sequence <= MAX_DAILY_SEQUENCE:
        raise PreconditionFailedError(
            {"order_number": [f"Daily sequence for branch {branch_code} is exhausted ({MAX_DAILY_SEQUENCE} orders)"]}
        )
    return f"{ORDER_NUMBER_PREFIX}{number_date(day)}{branch_code}{sequence:04d}"


def next_sequence(branch_code: str, day: date) -> int:
    """Highest sequence already issued for the branch and day, plus one."""
    existing = (
        current_domain.repository_for(DeliveryOrder)
        ._dao.query.filter(branch_code=branch_code, number_date=number_date(day))
        .all()
        .items
    )
    return max((o.number_sequence for o in existing), default=0) + 1


def find_by_order_number(order_number: str) -> DeliveryOrder:
    results = (
        current_domain.repository_for(DeliveryOrder)._dao.query.filter(order_number=order_number).all().items
    )
    if not results:
        raise ObjectNotFoundError({"order_number": [f"Delivery order {order_number} does not exist"]})
    return results[0]
