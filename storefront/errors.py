"""Error taxonomy for the storefront API.

Every error carries a stable ``category`` that clients can switch on, the HTTP
status it maps to, and whether retrying the same request may succeed.
"""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    category = "internal"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or "Internal Server Error."
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(StorefrontError):
    """Raised when input is missing or malformed. Nothing has been written."""

    category = "validation"
    status_code = 400


class InvalidTwoFactorCodeError(ValidationError):
    """Raised when a one-time code does not match the secret being enrolled."""

    def __init__(self):
        super().__init__("Invalid 2FA code.")


class UnauthorizedError(StorefrontError):
    """Raised when the session token is missing, invalid or expired."""

    category = "unauthorized"
    status_code = 401


class InvalidCredentialsError(UnauthorizedError):
    """Raised for any failed factor. Deliberately does not say which one."""

    def __init__(self):
        super().__init__("Invalid credentials.")


class ForbiddenError(StorefrontError):
    """Raised when the session is valid but lacks the required privilege."""

    category = "forbidden"
    status_code = 403


class NotFoundError(StorefrontError):
    category = "not_found"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class CartItemNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Cart item not found for product: {product_id}")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ConflictError(StorefrontError):
    category = "conflict"
    status_code = 409


class DuplicatePaymentError(ConflictError):
    """Raised when an order already exists for a payment confirmation id."""

    def __init__(self, payment_intent_id: str):
        self.payment_intent_id = payment_intent_id
        super().__init__("Order potentially already created for this payment.")


class DuplicateAccountError(ConflictError):
    def __init__(self):
        super().__init__("Username or email already exists.")


class TwoFactorAlreadyEnabledError(ConflictError):
    def __init__(self):
        super().__init__("Two-Factor Authentication is already enabled. Disable it first.")


class ReferentialError(StorefrontError):
    """Raised when a write references a row that does not exist."""

    category = "referential"
    status_code = 422


class MissingProductError(ReferentialError):
    def __init__(self, product_ids: list[int]):
        self.product_ids = product_ids
        ids = ", ".join(str(p) for p in product_ids)
        super().__init__(f"Order references products that no longer exist: {ids}")


class PersistenceError(StorefrontError):
    """Raised when the datastore is unavailable. Safe to retry."""

    category = "persistence"
    status_code = 503
    retryable = True

    def __init__(self, message: str | None = None):
        super().__init__(message or "Database unavailable. Please retry.")


class QueryTimeoutError(PersistenceError):
    category = "timeout"
    status_code = 504

    def __init__(self):
        super().__init__("Database query timed out.")
