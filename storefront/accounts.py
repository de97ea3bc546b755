# storefront/accounts.py
from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .auth import create_token, hash_password, verify_password
from .db import transaction
from .errors import (
    ConflictError,
    DuplicateAccountError,
    ForbiddenError,
    InvalidCredentialsError,
    UserNotFoundError,
    ValidationError,
)
from .models import User
from .twofactor import verify_code

logger = structlog.get_logger(__name__)


def user_to_dict(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "is_admin": bool(u.is_admin),
        "is_2fa_enabled": bool(u.is_2fa_enabled),
    }


def _session(u: User) -> Dict[str, Any]:
    return {"token": create_token(u.id, u.username), "user": user_to_dict(u)}


class CredentialAuthority:
    """Passwords, second factors and session tokens."""

    def __init__(self, db: Session):
        self.db = db

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required.")

        if self.db.query(User.id).filter(or_(User.username == username, User.email == email)).first():
            raise DuplicateAccountError()

        u = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name or None,
            last_name=last_name or None,
        )
        try:
            with transaction(self.db):
                self.db.add(u)
        except ConflictError as exc:
            # lost a race on the unique username/email
            raise DuplicateAccountError() from exc

        logger.info("user.registered", user_id=u.id)
        return u

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """First factor. Returns a token, or a challenge when 2FA is on."""
        email = (email or "").strip().lower()
        u = self.db.query(User).filter(User.email == email).first()
        if not u or not verify_password(password or "", u.password_hash):
            logger.info("auth.login_failed")
            raise InvalidCredentialsError()

        if u.is_2fa_enabled:
            logger.info("auth.2fa_required", user_id=u.id)
            return {"requires_2fa": True, "user_id": u.id}

        logger.info("auth.login_succeeded", user_id=u.id)
        return _session(u)

    def complete_two_factor_login(self, user_id: int, code: str) -> Dict[str, Any]:
        u = self.db.get(User, user_id)
        if not u or not u.is_2fa_enabled or not u.totp_secret or not verify_code(u.totp_secret, code):
            logger.info("auth.2fa_failed", user_id=user_id)
            raise InvalidCredentialsError()

        logger.info("auth.login_succeeded", user_id=u.id, second_factor=True)
        return _session(u)

    def profile(self, user_id: int) -> Dict[str, Any]:
        u = self.db.get(User, user_id)
        if not u:
            raise UserNotFoundError(user_id)
        return user_to_dict(u)

    def require_admin(self, user_id: int) -> User:
        """Live admin check: the flag is read now, never trusted from the token."""
        u = self.db.get(User, user_id)
        if not u:
            raise ForbiddenError("Forbidden: User not found.")
        if not u.is_admin:
            logger.info("auth.admin_denied", user_id=user_id)
            raise ForbiddenError("Forbidden: Administrator access required.")
        return u

    def set_admin_role(self, acting_user_id: int, target_user_id: int, is_admin: bool) -> Dict[str, Any]:
        if acting_user_id == target_user_id:
            raise ForbiddenError("Cannot change own role.")

        with transaction(self.db):
            target = self.db.get(User, target_user_id)
            if not target:
                raise UserNotFoundError(target_user_id)
            target.is_admin = bool(is_admin)

        logger.info("user.role_changed", by=acting_user_id, user_id=target_user_id, is_admin=bool(is_admin))
        return user_to_dict(target)
