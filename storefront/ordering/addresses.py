# storefront/ordering/addresses.py
from __future__ import annotations

from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import SHIPPING, Address
from ..schemas import ShippingDetails

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("full_name", "address_line1", "city", "postal_code", "country")


def missing_shipping_fields(fields: Optional[ShippingDetails]) -> List[str]:
    if fields is None:
        return list(REQUIRED_FIELDS)
    return [name for name in REQUIRED_FIELDS if not (getattr(fields, name) or "").strip()]


def validate_shipping(fields: Optional[ShippingDetails]) -> None:
    missing = missing_shipping_fields(fields)
    if missing:
        raise ValidationError(f"Missing required shipping fields: {', '.join(missing)}.")


def _same_or_both_null(column, value: Optional[str]):
    # None only matches NULL; "" is a real value and only matches "".
    if value is None:
        return column.is_(None)
    return column == value


class AddressResolver:
    """Find-or-create for shipping addresses.

    Runs inside the caller's transaction: it flushes so the new id is known,
    but never commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def find(self, user_id: int, fields: ShippingDetails, address_type: str = SHIPPING) -> Optional[Address]:
        return (
            self.db.query(Address)
            .filter(
                Address.user_id == user_id,
                Address.address_type == address_type,
                Address.full_name == fields.full_name,
                Address.address_line1 == fields.address_line1,
                _same_or_both_null(Address.address_line2, fields.address_line2),
                Address.city == fields.city,
                _same_or_both_null(Address.state_province_region, fields.region),
                Address.postal_code == fields.postal_code,
                Address.country == fields.country,
            )
            .order_by(Address.id.asc())
            .first()
        )

    def resolve_shipping_address(self, user_id: int, fields: ShippingDetails) -> int:
        validate_shipping(fields)

        existing = self.find(user_id, fields)
        if existing:
            logger.info("address.reused", user_id=user_id, address_id=existing.id)
            return existing.id

        addr = Address(
            user_id=user_id,
            full_name=fields.full_name,
            address_line1=fields.address_line1,
            address_line2=fields.address_line2,
            city=fields.city,
            state_province_region=fields.region,
            postal_code=fields.postal_code,
            country=fields.country,
            address_type=SHIPPING,
        )
        self.db.add(addr)
        self.db.flush()
        logger.info("address.created", user_id=user_id, address_id=addr.id)
        return addr.id
