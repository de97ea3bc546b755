# storefront/ordering/cart.py
from __future__ import annotations

from typing import Any, Dict, List

import structlog
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import CartItemNotFoundError, ProductNotFoundError, ReferentialError, ValidationError
from ..models import CartItem, Product, utcnow

logger = structlog.get_logger(__name__)


def line_total(line: Dict[str, Any]) -> float:
    qty = int(line.get("quantity", 0) or 0)
    price = float((line.get("product") or {}).get("price", 0.0) or 0.0)
    return round(qty * price, 2)


def cart_total(cart: List[Dict[str, Any]]) -> float:
    return round(sum(line_total(x) for x in cart), 2)


def _positive_int(quantity: Any) -> int:
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a positive integer.")
    if qty <= 0:
        raise ValidationError("Quantity must be a positive integer.")
    return qty


class CartStore:
    """The authoritative per-user cart.

    Reads always show *current* catalog prices. Order placement freezes
    prices separately, so this is never the source of historical pricing.
    """

    def __init__(self, db: Session):
        self.db = db

    def read(self, user_id: int) -> Dict[str, Any]:
        rows = (
            self.db.query(CartItem, Product)
            .join(Product, CartItem.product_id == Product.id)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.added_at.asc(), CartItem.id.asc())
            .all()
        )
        items = [
            {
                "product": {
                    "id": product.id,
                    "name": product.name,
                    "price": float(product.price),
                    "image_url": product.image_url,
                },
                "quantity": item.quantity,
            }
            for item, product in rows
        ]
        return {"items": items, "total": cart_total(items)}

    def _upsert_add(self, user_id: int, product_id: int, quantity: int):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return None

        stmt = insert(CartItem).values(user_id=user_id, product_id=product_id, quantity=quantity)
        return stmt.on_conflict_do_update(
            index_elements=[CartItem.user_id, CartItem.product_id],
            set_={
                "quantity": CartItem.quantity + stmt.excluded.quantity,
                "updated_at": utcnow(),
            },
        )

    def add(self, user_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        """Add ``quantity`` of a product, summing with any existing line."""
        qty = _positive_int(quantity)
        if self.db.get(Product, product_id) is None:
            raise ProductNotFoundError(product_id)

        try:
            with transaction(self.db):
                stmt = self._upsert_add(user_id, product_id, qty)
                if stmt is not None:
                    self.db.execute(stmt)
                else:
                    line = (
                        self.db.query(CartItem)
                        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
                        .with_for_update()
                        .first()
                    )
                    if line:
                        line.quantity += qty
                    else:
                        self.db.add(CartItem(user_id=user_id, product_id=product_id, quantity=qty))
        except ReferentialError as exc:
            # product deleted between the check and the insert
            raise ProductNotFoundError(product_id) from exc

        logger.info("cart.item_added", user_id=user_id, product_id=product_id, quantity=qty)
        return self.read(user_id)

    def set_quantity(self, user_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        """Overwrite a line's quantity. Zero or less removes the line."""
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError("Quantity must be an integer.")

        if qty <= 0:
            logger.info("cart.quantity_non_positive", user_id=user_id, product_id=product_id)
            return self.remove(user_id, product_id)

        with transaction(self.db):
            result = self.db.execute(
                update(CartItem)
                .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
                .values(quantity=qty, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise CartItemNotFoundError(product_id)

        logger.info("cart.quantity_set", user_id=user_id, product_id=product_id, quantity=qty)
        return self.read(user_id)

    def remove(self, user_id: int, product_id: int) -> Dict[str, Any]:
        with transaction(self.db):
            result = self.db.execute(
                delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            )
        logger.info("cart.item_removed", user_id=user_id, product_id=product_id, removed=result.rowcount)
        return self.read(user_id)

    def clear(self, user_id: int) -> Dict[str, Any]:
        with transaction(self.db):
            removed = self.wipe(user_id)
        logger.info("cart.cleared", user_id=user_id, removed=removed)
        return {"items": [], "total": 0.0}

    def wipe(self, user_id: int) -> int:
        """Delete every line for the user inside the caller's transaction."""
        result = self.db.execute(delete(CartItem).where(CartItem.user_id == user_id))
        return result.rowcount
