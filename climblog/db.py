"""
Database abstraction for Postgres and an in-memory test implementation.

Both clients expose the same read helpers plus ``transaction()``, a context
manager yielding a ``StoreTransaction``. Every write goes through a
transaction: it either commits as a whole or is rolled back as a whole.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from climblog.errors import ConflictError, StoreFailure
from climblog.records import (
    PARENT_FIELDS,
    RECORD_TYPES,
    AscensionRecord,
    ClimbRecord,
    CommentRecord,
    FollowRecord,
    InteractionKind,
    InteractionRecord,
    LikeRecord,
    MailJobRecord,
    MailStatus,
    MailTemplate,
    UserRecord,
)

logger = logging.getLogger(__name__)

# Interactions that hang off a climb and go away with it.
CLIMB_INTERACTIONS = (
    InteractionKind.LIKE,
    InteractionKind.COMMENT,
    InteractionKind.ASCENSION,
)


class StoreTransaction(Protocol):
    """Operations available inside an open transaction."""

    def get_user(self, user_id: str, *, lock: bool = False) -> Optional[UserRecord]:
        ...

    def find_user(self, **matcher: Any) -> Optional[UserRecord]:
        ...

    def list_users(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[UserRecord], int]:
        ...

    def get_climb(self, climb_id: str, *, lock: bool = False) -> Optional[ClimbRecord]:
        ...

    def list_climbs(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[ClimbRecord], int]:
        ...

    def get_interaction(
        self, kind: InteractionKind, record_id: str
    ) -> Optional[InteractionRecord]:
        ...

    def find_interaction(
        self, kind: InteractionKind, **matcher: Any
    ) -> Optional[InteractionRecord]:
        ...

    def list_interactions(
        self,
        kind: InteractionKind,
        *,
        offset: int = 0,
        limit: int | None = None,
        **matcher: Any,
    ) -> list[InteractionRecord]:
        ...

    def count_interactions(self, kind: InteractionKind, **matcher: Any) -> int:
        ...

    def recent_interaction_ids(
        self, kind: InteractionKind, parent_id: str, limit: int
    ) -> list[str]:
        ...

    def add(self, record: Any) -> None:
        ...

    def delete(self, record: Any) -> bool:
        ...

    def update_user(self, user_id: str, **fields: Any) -> UserRecord:
        ...

    def update_climb(self, climb_id: str, **fields: Any) -> ClimbRecord:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def delete_climb(self, climb_id: str) -> bool:
        ...


class DbClient(Protocol):
    """Interface for database access."""

    def transaction(self) -> Any:
        ...

    def ping(self) -> bool:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def find_user(self, **matcher: Any) -> Optional[UserRecord]:
        ...

    def list_users(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[UserRecord], int]:
        ...

    def get_climb(self, climb_id: str) -> Optional[ClimbRecord]:
        ...

    def list_climbs(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[ClimbRecord], int]:
        ...

    def get_interaction(
        self, kind: InteractionKind, record_id: str
    ) -> Optional[InteractionRecord]:
        ...

    def find_interaction(
        self, kind: InteractionKind, **matcher: Any
    ) -> Optional[InteractionRecord]:
        ...

    def list_interactions(
        self,
        kind: InteractionKind,
        *,
        offset: int = 0,
        limit: int | None = None,
        **matcher: Any,
    ) -> list[InteractionRecord]:
        ...

    def count_interactions(self, kind: InteractionKind, **matcher: Any) -> int:
        ...

    def create_mail_job(
        self, template: MailTemplate, recipient: str, context: dict
    ) -> MailJobRecord:
        ...

    def get_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        ...

    def claim_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        ...

    def claim_next_pending_mail_job(self) -> Optional[MailJobRecord]:
        ...

    def update_mail_job(
        self, job_id: str, status: MailStatus, *, last_error: Optional[str] = None
    ) -> None:
        ...

    def requeue_stale_locks(self, lock_timeout_seconds: float = 600) -> int:
        ...


class _StoreReads:
    """Read helpers shared by both clients, each served by a short read scope."""

    def _reader(self):
        raise NotImplementedError

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._reader() as tx:
            return tx.get_user(user_id)

    def find_user(self, **matcher: Any) -> Optional[UserRecord]:
        with self._reader() as tx:
            return tx.find_user(**matcher)

    def list_users(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[UserRecord], int]:
        with self._reader() as tx:
            return tx.list_users(filters, offset, limit)

    def get_climb(self, climb_id: str) -> Optional[ClimbRecord]:
        with self._reader() as tx:
            return tx.get_climb(climb_id)

    def list_climbs(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[ClimbRecord], int]:
        with self._reader() as tx:
            return tx.list_climbs(filters, offset, limit)

    def get_interaction(
        self, kind: InteractionKind, record_id: str
    ) -> Optional[InteractionRecord]:
        with self._reader() as tx:
            return tx.get_interaction(kind, record_id)

    def find_interaction(
        self, kind: InteractionKind, **matcher: Any
    ) -> Optional[InteractionRecord]:
        with self._reader() as tx:
            return tx.find_interaction(kind, **matcher)

    def list_interactions(
        self,
        kind: InteractionKind,
        *,
        offset: int = 0,
        limit: int | None = None,
        **matcher: Any,
    ) -> list[InteractionRecord]:
        with self._reader() as tx:
            return tx.list_interactions(kind, offset=offset, limit=limit, **matcher)

    def count_interactions(self, kind: InteractionKind, **matcher: Any) -> int:
        with self._reader() as tx:
            return tx.count_interactions(kind, **matcher)


def _matches(record: Any, matcher: dict) -> bool:
    return all(getattr(record, key) == value for key, value in matcher.items())


def _page(records: list, offset: int, limit: int | None) -> list:
    if limit is None:
        return records[offset:]
    return records[offset : offset + limit]


class _InMemoryTransaction:
    def __init__(self, store: "InMemoryDbClient"):
        self.store = store

    def _table(self, record_type: type) -> dict:
        if record_type is UserRecord:
            return self.store.users
        if record_type is ClimbRecord:
            return self.store.climbs
        return self.store.interactions[record_type.kind]

    def get_user(self, user_id: str, *, lock: bool = False) -> Optional[UserRecord]:
        return copy.deepcopy(self.store.users.get(user_id))

    def find_user(self, **matcher: Any) -> Optional[UserRecord]:
        for user in self.store.users.values():
            if _matches(user, matcher):
                return copy.deepcopy(user)
        return None

    def list_users(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[UserRecord], int]:
        users = [u for u in self.store.users.values() if _matches(u, filters or {})]
        users.sort(key=lambda u: (u.created_at, u.id), reverse=True)
        return copy.deepcopy(_page(users, offset, limit)), len(users)

    def get_climb(self, climb_id: str, *, lock: bool = False) -> Optional[ClimbRecord]:
        return copy.deepcopy(self.store.climbs.get(climb_id))

    def list_climbs(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[ClimbRecord], int]:
        climbs = [c for c in self.store.climbs.values() if _matches(c, filters or {})]
        climbs.sort(key=lambda c: (c.created_at, c.id), reverse=True)
        return copy.deepcopy(_page(climbs, offset, limit)), len(climbs)

    def get_interaction(
        self, kind: InteractionKind, record_id: str
    ) -> Optional[InteractionRecord]:
        return copy.deepcopy(self.store.interactions[kind].get(record_id))

    def find_interaction(
        self, kind: InteractionKind, **matcher: Any
    ) -> Optional[InteractionRecord]:
        found = self.list_interactions(kind, limit=1, **matcher)
        return found[0] if found else None

    def list_interactions(
        self,
        kind: InteractionKind,
        *,
        offset: int = 0,
        limit: int | None = None,
        **matcher: Any,
    ) -> list[InteractionRecord]:
        records = [
            r for r in self.store.interactions[kind].values() if _matches(r, matcher)
        ]
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return copy.deepcopy(_page(records, offset, limit))

    def count_interactions(self, kind: InteractionKind, **matcher: Any) -> int:
        return sum(
            1 for r in self.store.interactions[kind].values() if _matches(r, matcher)
        )

    def recent_interaction_ids(
        self, kind: InteractionKind, parent_id: str, limit: int
    ) -> list[str]:
        records = self.list_interactions(
            kind, limit=limit, **{PARENT_FIELDS[kind]: parent_id}
        )
        return [r.recent_key for r in records]

    def _check_unique(self, record: Any) -> None:
        # Mirrors the unique/check constraints declared on the SQL tables.
        if isinstance(record, UserRecord):
            for user in self.store.users.values():
                if user.email == record.email or user.username == record.username:
                    raise ConflictError("User already exists")
        elif isinstance(record, (LikeRecord, AscensionRecord)):
            if self.count_interactions(
                record.kind, climb_id=record.climb_id, user_id=record.user_id
            ):
                raise ConflictError(f"{record.kind.value} already exists")
        elif isinstance(record, FollowRecord):
            if record.follower_id == record.following_id:
                raise ConflictError("Users cannot follow themselves")
            if self.count_interactions(
                InteractionKind.FOLLOW,
                follower_id=record.follower_id,
                following_id=record.following_id,
            ):
                raise ConflictError("follow already exists")

    def add(self, record: Any) -> None:
        table = self._table(type(record))
        if record.id in table:
            raise ConflictError("Record already exists")
        self._check_unique(record)
        table[record.id] = copy.deepcopy(record)

    def delete(self, record: Any) -> bool:
        return self._table(type(record)).pop(record.id, None) is not None

    def update_user(self, user_id: str, **fields: Any) -> UserRecord:
        user = self.store.users[user_id]
        for key, value in fields.items():
            setattr(user, key, value)
        user.updated_at = time.time()
        return copy.deepcopy(user)

    def update_climb(self, climb_id: str, **fields: Any) -> ClimbRecord:
        climb = self.store.climbs[climb_id]
        for key, value in fields.items():
            setattr(climb, key, value)
        climb.updated_at = time.time()
        return copy.deepcopy(climb)

    def delete_user(self, user_id: str) -> bool:
        return self.store.users.pop(user_id, None) is not None

    def delete_climb(self, climb_id: str) -> bool:
        if self.store.climbs.pop(climb_id, None) is None:
            return False
        for kind in CLIMB_INTERACTIONS:
            table = self.store.interactions[kind]
            for record_id in [k for k, r in table.items() if r.climb_id == climb_id]:
                del table[record_id]
        return True


class InMemoryDbClient(_StoreReads):
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self.users: dict[str, UserRecord] = {}
        self.climbs: dict[str, ClimbRecord] = {}
        self.interactions: dict[InteractionKind, dict[str, Any]] = {
            kind: {} for kind in InteractionKind
        }
        self.mail_jobs: dict[str, MailJobRecord] = {}

    @contextmanager
    def _reader(self) -> Iterator[_InMemoryTransaction]:
        with self._lock:
            yield _InMemoryTransaction(self)

    @contextmanager
    def transaction(self) -> Iterator[_InMemoryTransaction]:
        # The store-wide lock serializes transactions; the snapshot is the rollback.
        with self._lock:
            snapshot = copy.deepcopy((self.users, self.climbs, self.interactions))
            try:
                yield _InMemoryTransaction(self)
            except BaseException:
                self.users, self.climbs, self.interactions = snapshot
                raise

    def ping(self) -> bool:
        return True

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.climbs.clear()
            for table in self.interactions.values():
                table.clear()
            self.mail_jobs.clear()

    def create_mail_job(
        self, template: MailTemplate, recipient: str, context: dict
    ) -> MailJobRecord:
        record = MailJobRecord(
            job_id=uuid.uuid4().hex,
            template=template,
            recipient=recipient,
            context=dict(context),
        )
        with self._lock:
            self.mail_jobs[record.job_id] = record
        return copy.deepcopy(record)

    def get_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        with self._lock:
            return copy.deepcopy(self.mail_jobs.get(job_id))

    def _claim(self, job: MailJobRecord) -> MailJobRecord:
        now = time.time()
        job.status = MailStatus.SENDING
        job.attempts += 1
        job.locked_at = now
        job.updated_at = now
        return copy.deepcopy(job)

    def claim_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        with self._lock:
            job = self.mail_jobs.get(job_id)
            if not job or job.status != MailStatus.PENDING:
                return None
            return self._claim(job)

    def claim_next_pending_mail_job(self) -> Optional[MailJobRecord]:
        with self._lock:
            pending = [
                j for j in self.mail_jobs.values() if j.status == MailStatus.PENDING
            ]
            if not pending:
                return None
            return self._claim(min(pending, key=lambda j: j.created_at))

    def update_mail_job(
        self, job_id: str, status: MailStatus, *, last_error: Optional[str] = None
    ) -> None:
        with self._lock:
            job = self.mail_jobs.get(job_id)
            if not job:
                return
            job.status = status
            job.last_error = last_error
            job.locked_at = None
            job.updated_at = time.time()

    def requeue_stale_locks(self, lock_timeout_seconds: float = 600) -> int:
        now = time.time()
        requeued = 0
        with self._lock:
            for job in self.mail_jobs.values():
                if (
                    job.status == MailStatus.SENDING
                    and job.locked_at
                    and now - job.locked_at > lock_timeout_seconds
                ):
                    job.status = MailStatus.PENDING
                    job.locked_at = None
                    job.updated_at = now
                    requeued += 1
        return requeued


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    username = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    roles = Column(JSON, nullable=False)
    given_name = Column(String, nullable=True)
    family_name = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_code = Column(String, nullable=True, index=True)
    reset_token = Column(String, nullable=True, index=True)
    reset_token_expires_at = Column(Float, nullable=True)
    followers_count = Column(Integer, nullable=False, default=0)
    following_count = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ClimbRow(Base):
    __tablename__ = "climbs"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    grade = Column(String, nullable=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    rating_average = Column(Float, nullable=True)
    grade_average = Column(Float, nullable=True)
    tags = Column(JSON, nullable=False)
    status = Column(String, nullable=False)
    likes_count = Column(Integer, nullable=False, default=0)
    comments_count = Column(Integer, nullable=False, default=0)
    recent_likes = Column(JSON, nullable=False)
    recent_comments = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class LikeRow(Base):
    __tablename__ = "likes"

    id = Column(String, primary_key=True)
    climb_id = Column(String, ForeignKey("climbs.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("climb_id", "user_id", name="uq_likes_climb_user"),
        Index("idx_likes_climb_created", "climb_id", "created_at"),
    )


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True)
    climb_id = Column(String, ForeignKey("climbs.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)

    __table_args__ = (Index("idx_comments_climb_created", "climb_id", "created_at"),)


class AscensionRow(Base):
    __tablename__ = "ascensions"

    id = Column(String, primary_key=True)
    climb_id = Column(String, ForeignKey("climbs.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    ascension_type = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("climb_id", "user_id", name="uq_ascensions_climb_user"),
    )


class FollowRow(Base):
    __tablename__ = "follows"

    id = Column(String, primary_key=True)
    follower_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    following_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follower_following"),
        CheckConstraint("follower_id != following_id", name="ck_no_self_follow"),
    )


class MailJobRow(Base):
    __tablename__ = "mail_jobs"

    job_id = Column(String, primary_key=True)
    template = Column(String, nullable=False)
    recipient = Column(String, nullable=False)
    context = Column(JSON, nullable=False)
    status = Column(String, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    locked_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


ROW_TYPES: dict[type, type] = {
    UserRecord: UserRow,
    ClimbRecord: ClimbRow,
    LikeRecord: LikeRow,
    CommentRecord: CommentRow,
    AscensionRecord: AscensionRow,
    FollowRecord: FollowRow,
}

INTERACTION_ROWS: dict[InteractionKind, type] = {
    kind: ROW_TYPES[record_type] for kind, record_type in RECORD_TYPES.items()
}


def _to_record(record_type: type, row: Any) -> Any:
    values = {f.name: getattr(row, f.name) for f in dataclasses.fields(record_type)}
    # JSON columns hand back the same list object the session tracks.
    return record_type(**copy.deepcopy(values))


def _to_row(record: Any) -> Any:
    return ROW_TYPES[type(record)](**dataclasses.asdict(record))


class _SqlTransaction:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, record_type: type, record_id: str, lock: bool) -> Any:
        row_type = ROW_TYPES[record_type]
        stmt = select(row_type).where(row_type.id == record_id)
        if lock:
            stmt = stmt.with_for_update()
        row = self.session.execute(stmt).scalar_one_or_none()
        return _to_record(record_type, row) if row is not None else None

    def _list(
        self, record_type: type, filters: dict, offset: int, limit: int | None
    ) -> tuple[list, int]:
        row_type = ROW_TYPES[record_type]
        total = self.session.execute(
            select(func.count()).select_from(row_type).filter_by(**filters)
        ).scalar_one()
        stmt = (
            select(row_type)
            .filter_by(**filters)
            .order_by(row_type.created_at.desc(), row_type.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = self.session.execute(stmt).scalars().all()
        return [_to_record(record_type, row) for row in rows], total

    def get_user(self, user_id: str, *, lock: bool = False) -> Optional[UserRecord]:
        return self._get(UserRecord, user_id, lock)

    def find_user(self, **matcher: Any) -> Optional[UserRecord]:
        row = self.session.execute(
            select(UserRow).filter_by(**matcher).limit(1)
        ).scalar_one_or_none()
        return _to_record(UserRecord, row) if row is not None else None

    def list_users(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[UserRecord], int]:
        return self._list(UserRecord, filters or {}, offset, limit)

    def get_climb(self, climb_id: str, *, lock: bool = False) -> Optional[ClimbRecord]:
        return self._get(ClimbRecord, climb_id, lock)

    def list_climbs(
        self, filters: dict | None = None, offset: int = 0, limit: int | None = None
    ) -> tuple[list[ClimbRecord], int]:
        return self._list(ClimbRecord, filters or {}, offset, limit)

    def get_interaction(
        self, kind: InteractionKind, record_id: str
    ) -> Optional[InteractionRecord]:
        return self._get(RECORD_TYPES[kind], record_id, False)

    def find_interaction(
        self, kind: InteractionKind, **matcher: Any
    ) -> Optional[InteractionRecord]:
        found = self.list_interactions(kind, limit=1, **matcher)
        return found[0] if found else None

    def list_interactions(
        self,
        kind: InteractionKind,
        *,
        offset: int = 0,
        limit: int | None = None,
        **matcher: Any,
    ) -> list[InteractionRecord]:
        records, _ = self._list(RECORD_TYPES[kind], matcher, offset, limit)
        return records

    def count_interactions(self, kind: InteractionKind, **matcher: Any) -> int:
        row_type = INTERACTION_ROWS[kind]
        return self.session.execute(
            select(func.count()).select_from(row_type).filter_by(**matcher)
        ).scalar_one()

    def recent_interaction_ids(
        self, kind: InteractionKind, parent_id: str, limit: int
    ) -> list[str]:
        records = self.list_interactions(
            kind, limit=limit, **{PARENT_FIELDS[kind]: parent_id}
        )
        return [r.recent_key for r in records]

    def add(self, record: Any) -> None:
        self.session.add(_to_row(record))
        self.session.flush()

    def delete(self, record: Any) -> bool:
        row = self.session.get(ROW_TYPES[type(record)], record.id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def _update(self, record_type: type, record_id: str, fields: dict) -> Any:
        row = self.session.get(ROW_TYPES[record_type], record_id)
        for key, value in fields.items():
            setattr(row, key, copy.deepcopy(value))
        row.updated_at = time.time()
        self.session.flush()
        return _to_record(record_type, row)

    def update_user(self, user_id: str, **fields: Any) -> UserRecord:
        return self._update(UserRecord, user_id, fields)

    def update_climb(self, climb_id: str, **fields: Any) -> ClimbRecord:
        return self._update(ClimbRecord, climb_id, fields)

    def delete_user(self, user_id: str) -> bool:
        result = self.session.execute(delete(UserRow).where(UserRow.id == user_id))
        return bool(result.rowcount)

    def delete_climb(self, climb_id: str) -> bool:
        for kind in CLIMB_INTERACTIONS:
            row_type = INTERACTION_ROWS[kind]
            self.session.execute(delete(row_type).where(row_type.climb_id == climb_id))
        result = self.session.execute(delete(ClimbRow).where(ClimbRow.id == climb_id))
        return bool(result.rowcount)


class PostgresDbClient(_StoreReads):
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[_SqlTransaction]:
        session = self.Session()
        try:
            yield _SqlTransaction(session)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.warning("Transaction rejected by a constraint: %s", exc.orig)
            raise ConflictError("The record conflicts with an existing one") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Transaction failed and was rolled back")
            raise StoreFailure() from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    _reader = transaction

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    def _to_mail_job(self, row: MailJobRow) -> MailJobRecord:
        return MailJobRecord(
            job_id=row.job_id,
            template=MailTemplate(row.template),
            recipient=row.recipient,
            context=dict(row.context or {}),
            status=MailStatus(row.status),
            attempts=row.attempts,
            last_error=row.last_error,
            locked_at=row.locked_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_mail_job(
        self, template: MailTemplate, recipient: str, context: dict
    ) -> MailJobRecord:
        now = time.time()
        with self.Session() as session:
            row = MailJobRow(
                job_id=uuid.uuid4().hex,
                template=template.value,
                recipient=recipient,
                context=dict(context),
                status=MailStatus.PENDING.value,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_mail_job(row)

    def get_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        with self.Session() as session:
            row = session.get(MailJobRow, job_id)
            return self._to_mail_job(row) if row else None

    def _claim(self, session: Session, row: MailJobRow) -> MailJobRecord:
        now = time.time()
        row.status = MailStatus.SENDING.value
        row.attempts = (row.attempts or 0) + 1
        row.locked_at = now
        row.updated_at = now
        session.commit()
        session.refresh(row)
        return self._to_mail_job(row)

    def claim_mail_job(self, job_id: str) -> Optional[MailJobRecord]:
        with self.Session() as session:
            stmt = (
                select(MailJobRow)
                .where(
                    MailJobRow.job_id == job_id,
                    MailJobRow.status == MailStatus.PENDING.value,
                )
                .with_for_update(skip_locked=True)
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._claim(session, row)

    def claim_next_pending_mail_job(self) -> Optional[MailJobRecord]:
        with self.Session() as session:
            stmt = (
                select(MailJobRow)
                .where(MailJobRow.status == MailStatus.PENDING.value)
                .order_by(MailJobRow.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._claim(session, row)

    def update_mail_job(
        self, job_id: str, status: MailStatus, *, last_error: Optional[str] = None
    ) -> None:
        with self.Session() as session:
            row = session.get(MailJobRow, job_id)
            if not row:
                return
            row.status = status.value
            row.last_error = last_error
            row.locked_at = None
            row.updated_at = time.time()
            session.commit()

    def requeue_stale_locks(self, lock_timeout_seconds: float = 600) -> int:
        cutoff = time.time() - lock_timeout_seconds
        with self.Session() as session:
            updated = (
                session.query(MailJobRow)
                .filter(
                    MailJobRow.status == MailStatus.SENDING.value,
                    MailJobRow.locked_at != None,
                    MailJobRow.locked_at < cutoff,
                )
                .update(
                    {
                        MailJobRow.status: MailStatus.PENDING.value,
                        MailJobRow.locked_at: None,
                        MailJobRow.updated_at: time.time(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated or 0
