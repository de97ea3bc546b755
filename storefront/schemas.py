"""Pydantic request/response bodies for the storefront API.

Types are checked here; domain rules (required shipping fields, non-empty
carts, status vocabulary) are checked by the components so they hold for
direct callers too.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
class RegisterIn(BaseModel):
    username: str
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class TwoFactorLoginIn(BaseModel):
    user_id: int
    totp_code: str


class TwoFactorVerifyIn(BaseModel):
    secret: str
    token: str


class TwoFactorDisableIn(BaseModel):
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool
    is_2fa_enabled: bool


class RoleIn(BaseModel):
    is_admin: bool


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: float
    stock_quantity: int
    image_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class AddToCartIn(BaseModel):
    product_id: int
    quantity: int


class SetQuantityIn(BaseModel):
    quantity: int


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class ShippingDetails(BaseModel):
    full_name: str = ""
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    region: Optional[str] = None
    postal_code: str = ""
    country: str = ""


class ProductRef(BaseModel):
    id: int
    price: float
    name: Optional[str] = None


class CartLineIn(BaseModel):
    """One cart snapshot entry: the price is the one the customer saw."""

    product: ProductRef
    quantity: int


class PlaceOrderIn(BaseModel):
    shipping: ShippingDetails
    items: List[CartLineIn] = Field(default_factory=list)
    total: float
    payment_intent_id: str = ""
    payment_status: str = "succeeded"


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_date: datetime
    status: str
    total_amount: float


class StatusIn(BaseModel):
    status: str
