"""
Climb catalogue: listing with pagination and filters, creation, updates and
deletion. The denormalized like/comment summaries are owned by
``climblog.interactions`` and cannot be written from here.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from climblog.auth import ensure_can_manage
from climblog.db import DbClient
from climblog.errors import InvalidInputError, NotFoundError
from climblog.records import (
    ClimbRecord,
    ClimbStatus,
    InteractionKind,
    Page,
    UserRecord,
    new_id,
    validate_identifier,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "title",
    "description",
    "grade",
    "rating_average",
    "grade_average",
    "tags",
    "status",
}
FILTERABLE_FIELDS = {"created_by", "grade", "status", "title"}


def parse_filters(filters: Optional[str], allowed: set[str]) -> dict:
    """Parse a JSON object of equality filters, restricted to ``allowed`` keys."""
    if not filters:
        return {}
    try:
        parsed = json.loads(filters)
    except json.JSONDecodeError:
        raise InvalidInputError("Invalid JSON format for filters")
    if not isinstance(parsed, dict):
        raise InvalidInputError("filters must be a JSON object")
    unknown = set(parsed) - allowed
    if unknown:
        raise InvalidInputError(f"cannot filter on {', '.join(sorted(unknown))}")
    for key, value in parsed.items():
        if isinstance(value, (dict, list)):
            raise InvalidInputError(f"filter {key} must be a plain value")
    return parsed


class ClimbService:
    def __init__(self, db: DbClient):
        self.db = db

    def _ascended_ids(self, user_id: Optional[str]) -> set[str]:
        if not user_id:
            return set()
        return {
            a.climb_id
            for a in self.db.list_interactions(InteractionKind.ASCENSION, user_id=user_id)
        }

    def require(self, climb_id: str) -> ClimbRecord:
        validate_identifier(climb_id, "climb_id")
        climb = self.db.get_climb(climb_id)
        if climb is None:
            raise NotFoundError("Climb", climb_id)
        return climb

    def list(
        self,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[str] = None,
        current_user_id: Optional[str] = None,
    ) -> Page:
        where = parse_filters(filters, FILTERABLE_FIELDS)
        climbs, total = self.db.list_climbs(
            where, offset=(page - 1) * page_size, limit=page_size
        )
        ascended = self._ascended_ids(current_user_id)
        items = [
            {**climb.as_dict(), "is_ascended": climb.id in ascended} for climb in climbs
        ]
        return Page(items=items, total=total, page=page, page_size=page_size)

    def get(self, climb_id: str, current_user_id: Optional[str] = None) -> dict:
        climb = self.require(climb_id)
        return {**climb.as_dict(), "is_ascended": climb.id in self._ascended_ids(current_user_id)}

    def create(self, data: dict[str, Any], created_by: str) -> ClimbRecord:
        validate_identifier(created_by, "created_by")
        if self.db.get_user(created_by) is None:
            raise NotFoundError("User", created_by)
        fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
        fields.setdefault("status", ClimbStatus.OPEN.value)
        climb = ClimbRecord(id=new_id(), created_by=created_by, **fields)
        with self.db.transaction() as tx:
            tx.add(climb)
        logger.info("User %s created climb %s", created_by, climb.id)
        return climb

    def update(
        self, climb_id: str, changes: dict[str, Any], actor: UserRecord
    ) -> ClimbRecord:
        climb = self.require(climb_id)
        ensure_can_manage(actor, climb.created_by)
        rejected = set(changes) - EDITABLE_FIELDS
        if rejected:
            raise InvalidInputError(f"cannot update {', '.join(sorted(rejected))}")
        with self.db.transaction() as tx:
            updated = tx.update_climb(climb_id, **changes)
        logger.info("Climb %s updated by %s", climb_id, actor.id)
        return updated

    def delete(self, climb_id: str, actor: UserRecord) -> ClimbRecord:
        climb = self.require(climb_id)
        ensure_can_manage(actor, climb.created_by)
        with self.db.transaction() as tx:
            if not tx.delete_climb(climb_id):
                raise NotFoundError("Climb", climb_id)
        logger.info("Climb %s deleted by %s", climb_id, actor.id)
        return climb
