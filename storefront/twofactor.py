# storefront/twofactor.py
"""Two-factor (TOTP) enrollment and verification.

Enrollment is a small state machine per user::

    Disabled --generate--> PendingVerification (secret held by the client only)
             --verify(code)--> Enabled (secret persisted)
             --disable(password)--> Disabled (secret cleared)

Nothing is written until a code proves the authenticator app holds the
candidate secret, so abandoned enrollments need no cleanup.
"""
from __future__ import annotations

import base64
import binascii
import io
from typing import Dict

import pyotp
import qrcode
import structlog
from sqlalchemy.orm import Session

from .auth import verify_password
from .config import settings
from .db import transaction
from .errors import (
    InvalidCredentialsError,
    InvalidTwoFactorCodeError,
    TwoFactorAlreadyEnabledError,
    UserNotFoundError,
    ValidationError,
)
from .models import User

logger = structlog.get_logger(__name__)


def is_valid_secret(secret: str | None) -> bool:
    if not secret:
        return False
    try:
        pyotp.TOTP(secret).byte_secret()
    except (binascii.Error, ValueError):
        return False
    return True


def verify_code(secret: str, code: str | None, window: int | None = None) -> bool:
    """Check a TOTP code, tolerating ``window`` steps of clock drift either way."""
    code = (code or "").replace(" ", "")
    if not code.isdigit():
        return False
    if window is None:
        window = settings.totp_valid_window
    return pyotp.TOTP(secret).verify(code, valid_window=window)


def qr_data_url(payload: str) -> str:
    img = qrcode.make(payload)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TwoFactorService:
    def __init__(self, db: Session):
        self.db = db

    def _user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def generate_secret(self, user_id: int) -> Dict[str, str]:
        """Create a candidate secret and its enrollment QR code. Not persisted."""
        user = self._user(user_id)
        label = user.username or user.email

        secret = pyotp.random_base32()
        otpauth_url = pyotp.TOTP(secret).provisioning_uri(
            name=f"{settings.totp_issuer} ({label})",
            issuer_name=settings.totp_issuer,
        )
        logger.info("2fa.secret_generated", user_id=user_id)
        return {
            "secret": secret,
            "otpauth_url": otpauth_url,
            "qr_code_url": qr_data_url(otpauth_url),
        }

    def verify_and_enable(self, user_id: int, candidate_secret: str, code: str) -> bool:
        if not (code or "").strip():
            raise ValidationError("Token code and secret are required.")
        if not is_valid_secret(candidate_secret):
            raise ValidationError("Secret is not a valid base32 string.")

        with transaction(self.db):
            user = self.db.get(User, user_id, with_for_update=True)
            if user is None:
                raise UserNotFoundError(user_id)
            if user.is_2fa_enabled:
                raise TwoFactorAlreadyEnabledError()
            if not verify_code(candidate_secret, code):
                logger.info("2fa.enable_rejected", user_id=user_id)
                raise InvalidTwoFactorCodeError()

            user.totp_secret = candidate_secret
            user.is_2fa_enabled = True

        logger.info("2fa.enabled", user_id=user_id)
        return True

    def disable(self, user_id: int, password: str) -> bool:
        """Turn 2FA off after re-checking the password.

        Returns False when 2FA was already off (still a success).
        """
        if not password:
            raise ValidationError("Password is required to disable 2FA.")

        with transaction(self.db):
            user = self.db.get(User, user_id, with_for_update=True)
            if user is None:
                raise UserNotFoundError(user_id)
            if not verify_password(password, user.password_hash):
                logger.info("2fa.disable_rejected", user_id=user_id)
                raise InvalidCredentialsError()
            if not user.is_2fa_enabled:
                logger.info("2fa.already_disabled", user_id=user_id)
                return False

            user.totp_secret = None
            user.is_2fa_enabled = False

        logger.info("2fa.disabled", user_id=user_id)
        return True
