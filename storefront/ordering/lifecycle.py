# storefront/ordering/lifecycle.py
from __future__ import annotations

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import OrderNotFoundError, ValidationError
from ..models import Order, OrderStatus, utcnow

logger = structlog.get_logger(__name__)


def parse_status(raw: str | None) -> OrderStatus:
    try:
        return OrderStatus(raw)
    except ValueError:
        raise ValidationError(
            f"Invalid status value. Must be one of: {', '.join(OrderStatus.values())}"
        )


class OrderLifecycle:
    """Admin status changes.

    Any status may follow any other: only membership in ``OrderStatus`` is
    checked, and ownership is not.
    """

    def __init__(self, db: Session):
        self.db = db

    def set_status(self, order_id: int, new_status: str) -> Order:
        status = parse_status(new_status)

        with transaction(self.db):
            order = self.db.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            previous = order.status
            order.status = status.value
            order.updated_at = utcnow()

        logger.info("order.status_changed", order_id=order_id, previous=previous, status=status.value)
        return order
