"""
Authentication: password hashing, JWT issuance and the account lifecycle
(register, confirm email, login, refresh, password reset), plus the
authorization predicates the services evaluate before running a command.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

import jwt
from passlib.context import CryptContext

from climblog.config import Settings
from climblog.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from climblog.records import Role, UserRecord, new_id

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Centralized password hashing policy
PWD_CONTEXT = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(pw: str) -> str:
    if not pw:
        raise ValueError("Password must not be empty")
    return PWD_CONTEXT.hash(pw)


def verify_password(pw: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return PWD_CONTEXT.verify(pw, hashed)
    except ValueError:
        logger.warning("Password verification failed due to malformed hash", exc_info=True)
        return False


def validate_password(pw: Optional[str]) -> str:
    if not pw or len(pw) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    return pw


def issue_token(
    user: UserRecord, *, secret: str, issuer: str, typ: str, ttl: timedelta
) -> str:
    issued_at = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": user.id,
        "email": user.email,
        "roles": list(user.roles),
        "typ": typ,
        "iss": issuer,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
        "jti": secrets.token_urlsafe(18),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_token(token: str, *, secret: str, issuer: str, typ: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=issuer,
            options={"require": ["exp", "iat", "sub", "typ"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")
    if claims.get("typ") != typ:
        raise UnauthorizedError("Invalid token type")
    return claims


def can_manage(actor: UserRecord, owner_id: str) -> bool:
    """Owners manage their own resources; admins manage everything."""
    return actor.is_admin or actor.id == owner_id


def ensure_can_manage(actor: UserRecord, owner_id: str) -> None:
    if not can_manage(actor, owner_id):
        raise ForbiddenError("You are not allowed to modify this resource")


def ensure_roles(user: UserRecord, roles: Iterable[Role | str]) -> None:
    # Admins pass every role check.
    wanted = {str(r) for r in roles}
    if not user.is_admin and not wanted.intersection(user.roles):
        raise ForbiddenError("Forbidden")


def generate_verification_code() -> str:
    return str(1000 + secrets.randbelow(9000))


class AuthService:
    def __init__(self, db, settings: Settings, outbox):
        self.db = db
        self.settings = settings
        self.outbox = outbox

    def _issue_pair(self, user: UserRecord) -> dict:
        return {
            "access_token": issue_token(
                user,
                secret=self.settings.jwt_secret,
                issuer=self.settings.jwt_issuer,
                typ=ACCESS_TOKEN,
                ttl=timedelta(minutes=self.settings.access_token_ttl_minutes),
            ),
            "refresh_token": issue_token(
                user,
                secret=self.settings.jwt_refresh_secret,
                issuer=self.settings.jwt_issuer,
                typ=REFRESH_TOKEN,
                ttl=timedelta(days=self.settings.refresh_token_ttl_days),
            ),
        }

    def register(
        self,
        email: str,
        password: str,
        username: str,
        given_name: Optional[str] = None,
        family_name: Optional[str] = None,
    ) -> UserRecord:
        email = email.strip().lower()
        validate_password(password)
        if self.db.find_user(email=email):
            raise ConflictError("User already exists")
        if self.db.find_user(username=username):
            raise ConflictError(f"Username {username} is already taken")

        code = generate_verification_code()
        user = UserRecord(
            id=new_id(),
            email=email,
            username=username,
            password_hash=hash_password(password),
            roles=[Role.USER.value],
            given_name=given_name,
            family_name=family_name,
            is_verified=False,
            verification_code=code,
        )
        with self.db.transaction() as tx:
            tx.add(user)
        logger.info("Registered user %s", user.id)

        self.outbox.send_confirmation(user, code)
        return user

    def confirm(self, code: str) -> UserRecord:
        if not code:
            raise InvalidInputError("verification code is required")
        user = self.db.find_user(verification_code=code)
        if user is None:
            raise InvalidInputError("invalid or expired verification code")
        with self.db.transaction() as tx:
            confirmed = tx.update_user(
                user.id, is_verified=True, verification_code=None
            )
        logger.info("User %s confirmed their email", user.id)
        return confirmed

    def resend_code(self, email: str) -> None:
        user = self.db.find_user(email=email.strip().lower())
        if user is None:
            raise NotFoundError("User", email)
        if user.is_verified:
            raise InvalidInputError("email is already verified")
        code = generate_verification_code()
        with self.db.transaction() as tx:
            tx.update_user(user.id, verification_code=code)
        self.outbox.send_confirmation(user, code)

    def login(self, email: str, password: str) -> dict:
        user = self.db.find_user(email=email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid credentials")
        if not user.is_verified:
            raise UnauthorizedError(
                "Your email is not confirmed yet. Please verify your email."
            )
        logger.info("User %s logged in", user.id)
        return self._issue_pair(user)

    def refresh(self, refresh_token: str) -> dict:
        claims = decode_token(
            refresh_token,
            secret=self.settings.jwt_refresh_secret,
            issuer=self.settings.jwt_issuer,
            typ=REFRESH_TOKEN,
        )
        user = self.db.get_user(claims["sub"])
        if user is None:
            raise UnauthorizedError("Invalid or expired refresh token")
        return {"access_token": self._issue_pair(user)["access_token"]}

    def authenticate(self, access_token: str) -> UserRecord:
        claims = decode_token(
            access_token,
            secret=self.settings.jwt_secret,
            issuer=self.settings.jwt_issuer,
            typ=ACCESS_TOKEN,
        )
        user = self.db.get_user(claims["sub"])
        if user is None:
            raise UnauthorizedError("User not found")
        return user

    def me(self, user: UserRecord) -> UserRecord:
        current = self.db.get_user(user.id)
        if current is None:
            raise UnauthorizedError("User not found")
        return current

    def forgot_password(self, email: str) -> None:
        user = self.db.find_user(email=email.strip().lower())
        if user is None:
            # Unknown addresses get the same answer as known ones.
            logger.info("Password reset requested for unknown email")
            return
        token = secrets.token_urlsafe(32)
        expires_at = time.time() + self.settings.password_reset_ttl_minutes * 60
        with self.db.transaction() as tx:
            tx.update_user(
                user.id, reset_token=token, reset_token_expires_at=expires_at
            )
        self.outbox.send_password_reset(user, token)

    def reset_password(self, token: str, new_password: str) -> None:
        validate_password(new_password)
        user = self.db.find_user(reset_token=token) if token else None
        if user is None or (user.reset_token_expires_at or 0) < time.time():
            raise InvalidInputError("invalid or expired reset token")
        with self.db.transaction() as tx:
            tx.update_user(
                user.id,
                password_hash=hash_password(new_password),
                reset_token=None,
                reset_token_expires_at=None,
            )
        logger.info("Password reset for user %s", user.id)
