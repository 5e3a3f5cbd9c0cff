"""
User administration: listing, lookup, admin-side creation, profile updates
and account deletion.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from climblog.auth import ensure_can_manage, hash_password, validate_password
from climblog.climbs import parse_filters
from climblog.db import DbClient
from climblog.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from climblog.interactions import InteractionService
from climblog.records import Page, Role, UserRecord, new_id, validate_identifier

logger = logging.getLogger(__name__)

FILTERABLE_FIELDS = {"email", "username", "is_verified"}
PROFILE_FIELDS = {"username", "given_name", "family_name"}


class UserService:
    def __init__(self, db: DbClient, interactions: InteractionService):
        self.db = db
        self.interactions = interactions

    def require(self, user_id: str) -> UserRecord:
        validate_identifier(user_id, "user_id")
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def list(self, page: int = 1, page_size: int = 10, filters: Optional[str] = None) -> Page:
        where = parse_filters(filters, FILTERABLE_FIELDS)
        users, total = self.db.list_users(
            where, offset=(page - 1) * page_size, limit=page_size
        )
        return Page(items=users, total=total, page=page, page_size=page_size)

    def get(self, user_id: str) -> UserRecord:
        return self.require(user_id)

    def create(
        self,
        email: str,
        password: str,
        username: str,
        roles: Optional[list[str]] = None,
        given_name: Optional[str] = None,
        family_name: Optional[str] = None,
    ) -> UserRecord:
        """Admin-side creation; the account is verified straight away."""
        email = email.strip().lower()
        validate_password(password)
        roles = self._validate_roles(roles or [Role.USER.value])
        if self.db.find_user(email=email) or self.db.find_user(username=username):
            raise ConflictError("User already exists")

        user = UserRecord(
            id=new_id(),
            email=email,
            username=username,
            password_hash=hash_password(password),
            roles=roles,
            given_name=given_name,
            family_name=family_name,
            is_verified=True,
        )
        with self.db.transaction() as tx:
            tx.add(user)
        logger.info("Created user %s with roles %s", user.id, roles)
        return user

    @staticmethod
    def _validate_roles(roles: list[str]) -> list[str]:
        try:
            return sorted({Role(r).value for r in roles})
        except ValueError:
            raise InvalidInputError(f"unknown role in {roles!r}")

    def update(self, user_id: str, changes: dict[str, Any], actor: UserRecord) -> UserRecord:
        user = self.require(user_id)
        ensure_can_manage(actor, user.id)

        fields: dict[str, Any] = {}
        for key, value in changes.items():
            if value is None:
                continue
            if key in PROFILE_FIELDS:
                fields[key] = value
            elif key == "password":
                fields["password_hash"] = hash_password(validate_password(value))
            elif key == "roles":
                if not actor.is_admin:
                    raise ForbiddenError("Only administrators can change roles")
                fields["roles"] = self._validate_roles(value)
            else:
                raise InvalidInputError(f"cannot update {key}")

        username = fields.get("username")
        if username and username != user.username:
            if self.db.find_user(username=username):
                raise ConflictError(f"Username {username} is already taken")

        if not fields:
            return user
        with self.db.transaction() as tx:
            updated = tx.update_user(user_id, **fields)
        logger.info("User %s updated by %s", user_id, actor.id)
        return updated

    def delete(self, user_id: str, actor: UserRecord) -> UserRecord:
        """
        Delete a user together with their interactions and climbs. The
        summaries of every climb and user they touched are recounted in the
        same transaction.
        """
        user = self.require(user_id)
        ensure_can_manage(actor, user.id)
        with self.db.transaction() as tx:
            self.interactions.purge_user(tx, user_id)
            climbs, _ = tx.list_climbs({"created_by": user_id})
            for climb in climbs:
                tx.delete_climb(climb.id)
            if not tx.delete_user(user_id):
                raise NotFoundError("User", user_id)
        logger.info("User %s deleted by %s", user_id, actor.id)
        return user
