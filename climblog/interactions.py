"""
Likes, comments, ascensions and follows.

Creating or removing an interaction also maintains the denormalized summary
kept on its parent: a running count and, for likes and comments on a climb, a
most-recent-first list of identifiers. The record write, the count and the
recent list are always written in one store transaction.
"""

from __future__ import annotations

import logging
from typing import Optional

from climblog.auth import ensure_can_manage
from climblog.db import DbClient, StoreTransaction
from climblog.errors import ConflictError, InvalidInputError, NotFoundError
from climblog.records import (
    RECENT_INTERACTIONS_LIMIT,
    AscensionRecord,
    AscensionType,
    ClimbRecord,
    CommentRecord,
    FollowRecord,
    InteractionKind,
    InteractionRecord,
    LikeRecord,
    Page,
    UserRecord,
    new_id,
    validate_identifier,
)

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000

# Counter fields maintained on the parent, per kind.
CLIMB_COUNTERS = {
    InteractionKind.LIKE: "likes_count",
    InteractionKind.COMMENT: "comments_count",
}
CLIMB_RECENT_FIELDS = {
    InteractionKind.LIKE: "recent_likes",
    InteractionKind.COMMENT: "recent_comments",
}


class RecencyTracker:
    """Re-derives a parent's most-recent-N list from the stored records."""

    def __init__(self, limit: int = RECENT_INTERACTIONS_LIMIT):
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit

    def refresh(
        self, tx: StoreTransaction, kind: InteractionKind, parent_id: str
    ) -> list[str]:
        return tx.recent_interaction_ids(kind, parent_id, self.limit)


class CounterMaintainer:
    """Computes the next value of a running count; never below zero."""

    def apply(self, current: int, delta: int) -> int:
        return max(0, (current or 0) + delta)


class InteractionService:
    def __init__(
        self,
        db: DbClient,
        recency: Optional[RecencyTracker] = None,
        counters: Optional[CounterMaintainer] = None,
    ):
        self.db = db
        self.recency = recency or RecencyTracker()
        self.counters = counters or CounterMaintainer()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_climb(self, climb_id: str) -> None:
        if self.db.get_climb(climb_id) is None:
            raise NotFoundError("Climb", climb_id)

    def _require_user(self, user_id: str) -> None:
        if self.db.get_user(user_id) is None:
            raise NotFoundError("User", user_id)

    # ------------------------------------------------------------------
    # Summary maintenance (always called inside an open transaction)
    # ------------------------------------------------------------------

    def _lock_parents(self, tx: StoreTransaction, record: InteractionRecord) -> dict:
        """
        Lock the rows whose summaries this record changes, before the record
        itself is written. Users are locked in id order.
        """
        if record.kind in CLIMB_COUNTERS:
            climb = tx.get_climb(record.climb_id, lock=True)
            if climb is None:
                raise NotFoundError("Climb", record.climb_id)
            return {record.climb_id: climb}
        if record.kind == InteractionKind.FOLLOW:
            users = {}
            for user_id in sorted({record.follower_id, record.following_id}):
                user = tx.get_user(user_id, lock=True)
                if user is None:
                    raise NotFoundError("User", user_id)
                users[user_id] = user
            return users
        return {}

    def _sync_climb(
        self, tx: StoreTransaction, kind: InteractionKind, climb: ClimbRecord, delta: int
    ) -> None:
        counter = CLIMB_COUNTERS[kind]
        recent_field = CLIMB_RECENT_FIELDS[kind]
        tx.update_climb(
            climb.id,
            **{
                counter: self.counters.apply(getattr(climb, counter), delta),
                recent_field: self.recency.refresh(tx, kind, climb.id),
            },
        )

    def _sync_follow_counts(
        self, tx: StoreTransaction, follower: UserRecord, following: UserRecord, delta: int
    ) -> None:
        tx.update_user(
            follower.id,
            following_count=self.counters.apply(follower.following_count, delta),
        )
        tx.update_user(
            following.id,
            followers_count=self.counters.apply(following.followers_count, delta),
        )

    def _apply(
        self, tx: StoreTransaction, record: InteractionRecord, parents: dict, delta: int
    ) -> None:
        if record.kind in CLIMB_COUNTERS:
            self._sync_climb(tx, record.kind, parents[record.climb_id], delta)
        elif record.kind == InteractionKind.FOLLOW:
            self._sync_follow_counts(
                tx, parents[record.follower_id], parents[record.following_id], delta
            )

    def reconcile_climb(self, tx: StoreTransaction, climb_id: str) -> None:
        """Recount a climb's summaries from the stored records."""
        climb = tx.get_climb(climb_id, lock=True)
        if climb is None:
            return
        fields = {}
        for kind, counter in CLIMB_COUNTERS.items():
            fields[counter] = tx.count_interactions(kind, climb_id=climb_id)
            fields[CLIMB_RECENT_FIELDS[kind]] = self.recency.refresh(tx, kind, climb_id)
        tx.update_climb(climb_id, **fields)

    def reconcile_user(self, tx: StoreTransaction, user_id: str) -> None:
        user = tx.get_user(user_id, lock=True)
        if user is None:
            return
        tx.update_user(
            user_id,
            followers_count=tx.count_interactions(
                InteractionKind.FOLLOW, following_id=user_id
            ),
            following_count=tx.count_interactions(
                InteractionKind.FOLLOW, follower_id=user_id
            ),
        )

    def purge_user(self, tx: StoreTransaction, user_id: str) -> None:
        """
        Remove every interaction made by or pointing at ``user_id`` and
        recount the parents that lost one. Runs inside the caller's
        transaction, before the user row itself is deleted.
        """
        climbs: set[str] = set()
        users: set[str] = set()
        for kind in (InteractionKind.LIKE, InteractionKind.COMMENT, InteractionKind.ASCENSION):
            for record in tx.list_interactions(kind, user_id=user_id):
                tx.delete(record)
                climbs.add(record.climb_id)
        for record in tx.list_interactions(InteractionKind.FOLLOW, follower_id=user_id):
            tx.delete(record)
            users.add(record.following_id)
        for record in tx.list_interactions(InteractionKind.FOLLOW, following_id=user_id):
            tx.delete(record)
            users.add(record.follower_id)
        for climb_id in climbs:
            self.reconcile_climb(tx, climb_id)
        users.discard(user_id)
        for other_id in users:
            self.reconcile_user(tx, other_id)

    def _insert(self, record: InteractionRecord, conflict_message: str) -> None:
        try:
            with self.db.transaction() as tx:
                parents = self._lock_parents(tx, record)
                tx.add(record)
                self._apply(tx, record, parents, +1)
        except ConflictError as exc:
            # Lost a race against a concurrent identical create.
            raise ConflictError(conflict_message) from exc

    def _remove(self, record: InteractionRecord, resource: str) -> None:
        with self.db.transaction() as tx:
            parents = self._lock_parents(tx, record)
            if not tx.delete(record):
                raise NotFoundError(resource, record.id)
            self._apply(tx, record, parents, -1)

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    def like(self, climb_id: str, user_id: str) -> LikeRecord:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(user_id, "user_id")
        self._require_climb(climb_id)
        self._require_user(user_id)
        if self.db.find_interaction(
            InteractionKind.LIKE, climb_id=climb_id, user_id=user_id
        ):
            raise ConflictError("User already liked this climb")

        like = LikeRecord(id=new_id(), climb_id=climb_id, user_id=user_id)
        self._insert(like, "User already liked this climb")
        logger.info("User %s liked climb %s", user_id, climb_id)
        return like

    def unlike(self, climb_id: str, user_id: str) -> LikeRecord:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(user_id, "user_id")
        self._require_climb(climb_id)
        like = self.db.find_interaction(
            InteractionKind.LIKE, climb_id=climb_id, user_id=user_id
        )
        if like is None:
            raise NotFoundError("Like", f"{climb_id}/{user_id}")

        self._remove(like, "Like")
        logger.info("User %s unliked climb %s", user_id, climb_id)
        return like

    def is_liked(self, climb_id: str, user_id: str) -> bool:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(user_id, "user_id")
        return (
            self.db.find_interaction(
                InteractionKind.LIKE, climb_id=climb_id, user_id=user_id
            )
            is not None
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def comment(self, climb_id: str, user_id: str, content: str) -> CommentRecord:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(user_id, "user_id")
        content = (content or "").strip()
        if not content:
            raise InvalidInputError("comment content is required")
        if len(content) > MAX_COMMENT_LENGTH:
            raise InvalidInputError(
                f"comment content exceeds {MAX_COMMENT_LENGTH} characters"
            )
        self._require_climb(climb_id)
        self._require_user(user_id)

        comment = CommentRecord(
            id=new_id(), climb_id=climb_id, user_id=user_id, content=content
        )
        self._insert(comment, "Comment already exists")
        logger.info("User %s commented on climb %s", user_id, climb_id)
        return comment

    def uncomment(
        self, comment_id: str, actor: Optional[UserRecord] = None
    ) -> CommentRecord:
        """Delete a comment; the owning climb is looked up from the comment."""
        validate_identifier(comment_id, "comment_id")
        comment = self.db.get_interaction(InteractionKind.COMMENT, comment_id)
        if comment is None:
            raise NotFoundError("Comment", comment_id)
        if actor is not None:
            ensure_can_manage(actor, comment.user_id)

        self._remove(comment, "Comment")
        logger.info("Comment %s removed from climb %s", comment_id, comment.climb_id)
        return comment

    def remove_comment(
        self, climb_id: str, comment_id: str, actor: Optional[UserRecord] = None
    ) -> CommentRecord:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(comment_id, "comment_id")
        self._require_climb(climb_id)
        comment = self.db.get_interaction(InteractionKind.COMMENT, comment_id)
        if comment is None or comment.climb_id != climb_id:
            raise NotFoundError("Comment", comment_id)
        return self.uncomment(comment_id, actor=actor)

    def list_comments(self, climb_id: str, page: int = 1, page_size: int = 20) -> Page:
        validate_identifier(climb_id, "climb_id")
        self._require_climb(climb_id)
        offset = (page - 1) * page_size
        comments = self.db.list_interactions(
            InteractionKind.COMMENT, offset=offset, limit=page_size, climb_id=climb_id
        )
        total = self.db.count_interactions(InteractionKind.COMMENT, climb_id=climb_id)
        return Page(items=comments, total=total, page=page, page_size=page_size)

    # ------------------------------------------------------------------
    # Ascensions
    # ------------------------------------------------------------------

    def ascend(
        self,
        climb_id: str,
        user_id: str,
        ascension_type: str = AscensionType.REDPOINT.value,
    ) -> AscensionRecord:
        validate_identifier(climb_id, "climb_id")
        validate_identifier(user_id, "user_id")
        try:
            ascension_type = AscensionType(ascension_type).value
        except ValueError:
            raise InvalidInputError(f"unknown ascension type {ascension_type!r}")
        self._require_climb(climb_id)
        self._require_user(user_id)
        if self.db.find_interaction(
            InteractionKind.ASCENSION, climb_id=climb_id, user_id=user_id
        ):
            raise ConflictError("User already ascended this climb")

        ascension = AscensionRecord(
            id=new_id(),
            climb_id=climb_id,
            user_id=user_id,
            ascension_type=ascension_type,
        )
        self._insert(ascension, "User already ascended this climb")
        logger.info("User %s ascended climb %s (%s)", user_id, climb_id, ascension_type)
        return ascension

    def has_ascended(self, climb_id: str, user_id: str) -> bool:
        return (
            self.db.find_interaction(
                InteractionKind.ASCENSION, climb_id=climb_id, user_id=user_id
            )
            is not None
        )

    def list_ascensions(self, user_id: str) -> list[AscensionRecord]:
        validate_identifier(user_id, "user_id")
        return self.db.list_interactions(InteractionKind.ASCENSION, user_id=user_id)

    # ------------------------------------------------------------------
    # Follows
    # ------------------------------------------------------------------

    def follow(self, follower_id: str, following_id: str) -> FollowRecord:
        validate_identifier(follower_id, "follower_id")
        validate_identifier(following_id, "following_id")
        if follower_id == following_id:
            raise ConflictError("Users cannot follow themselves")
        self._require_user(follower_id)
        self._require_user(following_id)
        if self.is_following(follower_id, following_id):
            raise ConflictError("Already following this user")

        follow = FollowRecord(
            id=new_id(), follower_id=follower_id, following_id=following_id
        )
        self._insert(follow, "Already following this user")
        logger.info("User %s now follows %s", follower_id, following_id)
        return follow

    def unfollow(self, follower_id: str, following_id: str) -> FollowRecord:
        validate_identifier(follower_id, "follower_id")
        validate_identifier(following_id, "following_id")
        follow = self.db.find_interaction(
            InteractionKind.FOLLOW, follower_id=follower_id, following_id=following_id
        )
        if follow is None:
            raise NotFoundError("Follow", f"{follower_id}/{following_id}")

        self._remove(follow, "Follow")
        logger.info("User %s unfollowed %s", follower_id, following_id)
        return follow

    def is_following(self, follower_id: str, following_id: str) -> bool:
        return (
            self.db.find_interaction(
                InteractionKind.FOLLOW,
                follower_id=follower_id,
                following_id=following_id,
            )
            is not None
        )

    def list_followers(self, user_id: str) -> list[FollowRecord]:
        validate_identifier(user_id, "user_id")
        return self.db.list_interactions(InteractionKind.FOLLOW, following_id=user_id)

    def list_following(self, user_id: str) -> list[FollowRecord]:
        validate_identifier(user_id, "user_id")
        return self.db.list_interactions(InteractionKind.FOLLOW, follower_id=user_id)
