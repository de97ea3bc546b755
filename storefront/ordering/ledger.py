# storefront/ordering/ledger.py
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import is_foreign_key_violation, is_unique_violation, transaction
from ..errors import (
    DuplicatePaymentError,
    MissingProductError,
    OrderNotFoundError,
    ReferentialError,
    ValidationError,
)
from ..models import Address, Order, OrderItem, OrderStatus, Product
from ..schemas import CartLineIn, ShippingDetails
from .addresses import AddressResolver, validate_shipping
from .cart import CartStore

logger = structlog.get_logger(__name__)

PAYMENT_STATUSES = {"succeeded", "processing"}
TOTAL_TOLERANCE = 0.01


def snapshot_total(items: Sequence[CartLineIn]) -> float:
    return round(sum(line.product.price * line.quantity for line in items), 2)


def validate_order_input(
    shipping: Optional[ShippingDetails],
    items: Optional[Sequence[CartLineIn]],
    total: Any,
    payment_intent_id: Optional[str],
    payment_status: str,
) -> float:
    """Check every precondition of order placement. Returns the numeric total."""
    validate_shipping(shipping)

    if not items:
        raise ValidationError("Order must contain at least one item.")
    for line in items:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(f"Invalid quantity for product {line.product.id}.")
        if line.product.price is None or line.product.price < 0 or not math.isfinite(line.product.price):
            raise ValidationError(f"Invalid price for product {line.product.id}.")

    try:
        numeric_total = float(total)
    except (TypeError, ValueError):
        raise ValidationError("Invalid total amount.")
    if not math.isfinite(numeric_total) or numeric_total < 0:
        raise ValidationError("Invalid total amount.")

    if not (payment_intent_id or "").strip():
        raise ValidationError("A payment confirmation id is required.")
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Payment not confirmed (status: {payment_status}).")

    return round(numeric_total, 2)


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_date": order.order_date,
        "status": order.status,
        "total_amount": float(order.total_amount),
        "shipping_address_id": order.shipping_address_id,
        "billing_address_id": order.billing_address_id,
    }


def address_to_dict(addr: Optional[Address]) -> Optional[Dict[str, Any]]:
    if addr is None:
        return None
    return {
        "id": addr.id,
        "full_name": addr.full_name,
        "address_line1": addr.address_line1,
        "address_line2": addr.address_line2,
        "city": addr.city,
        "region": addr.state_province_region,
        "postal_code": addr.postal_code,
        "country": addr.country,
        "address_type": addr.address_type,
    }


class OrderLedger:
    """Turns a cart snapshot plus a confirmed payment into an order.

    Everything in :meth:`place_order` happens in one transaction: the
    address, the order row, its lines and the cart wipe are committed
    together or not at all.
    """

    def __init__(self, db: Session):
        self.db = db
        self.addresses = AddressResolver(db)
        self.cart = CartStore(db)

    def _check_declared_total(self, user_id: int, items: Sequence[CartLineIn], total: float) -> None:
        # The charged amount is authoritative; mismatches are logged, not rejected.
        expected = snapshot_total(items)
        if abs(expected - total) > TOTAL_TOLERANCE:
            logger.warning("order.total_mismatch", user_id=user_id, declared=total, snapshot=expected)

        live = self.cart.read(user_id)["total"]
        if live and abs(live - total) > TOTAL_TOLERANCE:
            logger.warning("order.cart_total_mismatch", user_id=user_id, declared=total, cart=live)

    def place_order(
        self,
        user_id: int,
        shipping: ShippingDetails,
        items: List[CartLineIn],
        total: Any,
        payment_intent_id: str,
        payment_status: str = "succeeded",
    ) -> Order:
        numeric_total = validate_order_input(shipping, items, total, payment_intent_id, payment_status)
        payment_intent_id = payment_intent_id.strip()

        logger.info(
            "order.placing",
            user_id=user_id,
            payment_intent_id=payment_intent_id,
            item_count=len(items),
        )
        self._check_declared_total(user_id, items, numeric_total)

        with transaction(self.db):
            if self.db.query(Order.id).filter(Order.payment_intent_id == payment_intent_id).first():
                raise DuplicatePaymentError(payment_intent_id)

            address_id = self.addresses.resolve_shipping_address(user_id, shipping)

            order = Order(
                user_id=user_id,
                total_amount=numeric_total,
                status=OrderStatus.PENDING.value,
                shipping_address_id=address_id,
                billing_address_id=address_id,
                payment_intent_id=payment_intent_id,
            )
            self.db.add(order)
            self._flush(payment_intent_id)

            product_ids = {line.product.id for line in items}
            found = {pid for (pid,) in self.db.query(Product.id).filter(Product.id.in_(product_ids))}
            missing = sorted(product_ids - found)
            if missing:
                raise MissingProductError(missing)

            for line in items:
                self.db.add(
                    OrderItem(
                        order_id=order.id,
                        product_id=line.product.id,
                        quantity=line.quantity,
                        price_per_unit=round(line.product.price, 2),
                    )
                )
            self._flush(payment_intent_id)

            cleared = self.cart.wipe(user_id)

        logger.info(
            "order.placed",
            user_id=user_id,
            order_id=order.id,
            payment_intent_id=payment_intent_id,
            total=numeric_total,
            cart_lines_cleared=cleared,
        )
        return order

    def _flush(self, payment_intent_id: str) -> None:
        try:
            self.db.flush()
        except IntegrityError as exc:
            # a concurrent request committed the same payment first
            if is_unique_violation(exc, "payment_intent_id"):
                raise DuplicatePaymentError(payment_intent_id) from exc
            if is_foreign_key_violation(exc):
                # the product ids involved are not known at this point
                raise ReferentialError("Order references a record that no longer exists.") from exc
            raise

    # -------------------
    # Order history
    # -------------------
    def list_orders(self, user_id: int) -> List[Dict[str, Any]]:
        orders = (
            self.db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.order_date.desc(), Order.id.desc())
            .all()
        )
        return [order_to_dict(o) for o in orders]

    def get_order(self, user_id: int, order_id: int) -> Dict[str, Any]:
        order = self.db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()
        if not order:
            raise OrderNotFoundError(order_id)

        rows = (
            self.db.query(OrderItem, Product)
            .join(Product, OrderItem.product_id == Product.id)
            .filter(OrderItem.order_id == order.id)
            .order_by(Product.name.asc())
            .all()
        )
        detail = order_to_dict(order)
        detail["items"] = [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "price_per_unit": float(item.price_per_unit),
                "name": product.name,
                "image_url": product.image_url,
            }
            for item, product in rows
        ]
        detail["shipping_address"] = address_to_dict(order.shipping_address)
        return detail
