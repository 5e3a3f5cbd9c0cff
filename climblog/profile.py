"""Public profile view of a user, as seen by the current user."""

from __future__ import annotations

from typing import Optional

from climblog.db import DbClient
from climblog.errors import NotFoundError
from climblog.interactions import InteractionService
from climblog.records import validate_identifier

PROFILE_CLIMBS_LIMIT = 10


class ProfileService:
    def __init__(self, db: DbClient, interactions: InteractionService):
        self.db = db
        self.interactions = interactions

    def find_profile(self, current_user_id: Optional[str], profile_user_id: str) -> dict:
        validate_identifier(profile_user_id, "user_id")
        user = self.db.get_user(profile_user_id)
        if user is None:
            raise NotFoundError("User", profile_user_id)

        climbs, climbs_total = self.db.list_climbs(
            {"created_by": profile_user_id}, limit=PROFILE_CLIMBS_LIMIT
        )
        followers = self.interactions.list_followers(profile_user_id)
        following = self.interactions.list_following(profile_user_id)
        ascensions = self.interactions.list_ascensions(profile_user_id)
        is_following = bool(
            current_user_id
            and current_user_id != profile_user_id
            and self.interactions.is_following(current_user_id, profile_user_id)
        )
        return {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "given_name": user.given_name,
            "family_name": user.family_name,
            "followers_count": user.followers_count,
            "following_count": user.following_count,
            "followers": [f.follower_id for f in followers],
            "following": [f.following_id for f in following],
            "ascensions": [a.as_dict() for a in ascensions],
            "climbs": [c.as_dict() for c in climbs],
            "climbs_count": climbs_total,
            "is_following": is_following,
        }
