# storefront/main.py
from __future__ import annotations

import time
from typing import List
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .accounts import CredentialAuthority
from .auth import decode_token
from .catalog import get_product, list_products
from .config import settings
from .db import Base, engine, get_db
from .errors import StorefrontError, UnauthorizedError
from .logging import configure_logging
from .ordering.cart import CartStore
from .ordering.ledger import OrderLedger, order_to_dict
from .ordering.lifecycle import OrderLifecycle
from .schemas import (
    AddToCartIn,
    LoginIn,
    OrderOut,
    PlaceOrderIn,
    ProductOut,
    RegisterIn,
    RoleIn,
    SetQuantityIn,
    StatusIn,
    TwoFactorDisableIn,
    TwoFactorLoginIn,
    TwoFactorVerifyIn,
)
from .twofactor import TwoFactorService

configure_logging(settings.log_level, settings.log_json)
logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)


# -------------------
# Request context + errors
# -------------------
@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http.request",
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    body = {"category": "validation", "message": "; ".join(problems) or "Invalid request.", "retryable": False}
    return JSONResponse(status_code=400, content={"error": body})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("http.unhandled_error")
    body = {"category": "internal", "message": "Internal Server Error.", "retryable": False}
    return JSONResponse(status_code=500, content={"error": body})


# -------------------
# Helpers
# -------------------
def require_user_id(authorization: str | None = Header(default=None)) -> int:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Unauthorized: Access token is required.")

    token = authorization.split(" ", 1)[1].strip()
    uid = decode_token(token)
    if not uid:
        raise UnauthorizedError("Unauthorized: Invalid or expired token.")
    return uid


def require_admin_id(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)) -> int:
    # admin flag is checked against the database on every request
    CredentialAuthority(db).require_admin(user_id)
    return user_id


# -------------------
# Health
# -------------------
@app.get("/")
def root():
    return {"ok": True, "service": "storefront-api"}


# -------------------
# Auth
# -------------------
@app.post("/auth/register", status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    u = CredentialAuthority(db).register(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return {
        "message": "User registered successfully!",
        "user": {"id": u.id, "username": u.username, "email": u.email},
    }


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    return CredentialAuthority(db).login(payload.email, payload.password)


@app.post("/auth/verify-2fa")
def verify_two_factor_login(payload: TwoFactorLoginIn, db: Session = Depends(get_db)):
    return CredentialAuthority(db).complete_two_factor_login(payload.user_id, payload.totp_code)


@app.get("/auth/me")
def me(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return CredentialAuthority(db).profile(user_id)


@app.post("/auth/2fa/generate")
def generate_two_factor_secret(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return TwoFactorService(db).generate_secret(user_id)


@app.post("/auth/2fa/verify")
def enable_two_factor(
    payload: TwoFactorVerifyIn,
    user_id: int = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    TwoFactorService(db).verify_and_enable(user_id, payload.secret, payload.token)
    return {"verified": True, "message": "2FA enabled successfully!"}


@app.post("/auth/2fa/disable")
def disable_two_factor(
    payload: TwoFactorDisableIn,
    user_id: int = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    changed = TwoFactorService(db).disable(user_id, payload.password)
    if not changed:
        return {"disabled": True, "message": "Two-Factor Authentication is already disabled."}
    return {"disabled": True, "message": "Two-Factor Authentication has been disabled."}


# -------------------
# Catalog
# -------------------
@app.get("/products", response_model=List[ProductOut])
def products(db: Session = Depends(get_db)):
    return list_products(db)


@app.get("/products/{product_id}", response_model=ProductOut)
def product(product_id: int, db: Session = Depends(get_db)):
    return get_product(db, product_id)


# -------------------
# Cart
# -------------------
@app.get("/cart")
def read_cart(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return CartStore(db).read(user_id)


@app.post("/cart/items", status_code=201)
def add_to_cart(payload: AddToCartIn, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return CartStore(db).add(user_id, payload.product_id, payload.quantity)


@app.put("/cart/items/{product_id}")
def set_cart_quantity(
    product_id: int,
    payload: SetQuantityIn,
    user_id: int = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    return CartStore(db).set_quantity(user_id, product_id, payload.quantity)


@app.delete("/cart/items/{product_id}")
def remove_from_cart(product_id: int, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return CartStore(db).remove(user_id, product_id)


@app.delete("/cart")
def clear_cart(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return CartStore(db).clear(user_id)


# -------------------
# Orders
# -------------------
@app.post("/orders", status_code=201)
def place_order(payload: PlaceOrderIn, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    order = OrderLedger(db).place_order(
        user_id=user_id,
        shipping=payload.shipping,
        items=payload.items,
        total=payload.total,
        payment_intent_id=payload.payment_intent_id,
        payment_status=payload.payment_status,
    )
    return {
        "message": "Order placed successfully!",
        "order": OrderOut.model_validate(order).model_dump(),
    }


@app.get("/orders")
def order_history(user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return OrderLedger(db).list_orders(user_id)


@app.get("/orders/{order_id}")
def order_detail(order_id: int, user_id: int = Depends(require_user_id), db: Session = Depends(get_db)):
    return OrderLedger(db).get_order(user_id, order_id)


# -------------------
# Admin
# -------------------
@app.put("/admin/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: StatusIn,
    admin_id: int = Depends(require_admin_id),
    db: Session = Depends(get_db),
):
    logger.info("admin.order_status_requested", admin_id=admin_id, order_id=order_id, status=payload.status)
    order = OrderLifecycle(db).set_status(order_id, payload.status)
    return order_to_dict(order)


@app.put("/admin/users/{target_user_id}/role")
def update_user_role(
    target_user_id: int,
    payload: RoleIn,
    admin_id: int = Depends(require_admin_id),
    db: Session = Depends(get_db),
):
    return CredentialAuthority(db).set_admin_role(admin_id, target_user_id, payload.is_admin)
