"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header

from climblog.auth import AuthService, ensure_roles
from climblog.climbs import ClimbService
from climblog.config import get_settings
from climblog.db import DbClient, InMemoryDbClient, PostgresDbClient
from climblog.errors import UnauthorizedError
from climblog.interactions import InteractionService, RecencyTracker
from climblog.mail import InMemoryMailer, Mailer, MailOutbox, SmtpMailer
from climblog.profile import ProfileService
from climblog.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from climblog.records import Role, UserRecord
from climblog.users import UserService

_db_client: DbClient | None = None
_queue_client: JobQueue | None = None
_mailer: Mailer | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client is not None:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_queue_client() -> JobQueue:
    """
    Return a singleton queue client for dispatching mail jobs to workers.
    """
    global _queue_client
    if _queue_client is not None:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisJobQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryJobQueue()
    return _queue_client


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is not None:
        return _mailer

    settings = get_settings()
    if settings.smtp_host and not settings.use_in_memory_backends:
        _mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
        )
    else:
        _mailer = InMemoryMailer()
    return _mailer


def get_outbox(
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
) -> MailOutbox:
    return MailOutbox(db, queue)


def get_auth_service(
    db: DbClient = Depends(get_db_client),
    outbox: MailOutbox = Depends(get_outbox),
) -> AuthService:
    return AuthService(db, get_settings(), outbox)


def get_interaction_service(db: DbClient = Depends(get_db_client)) -> InteractionService:
    return InteractionService(
        db, recency=RecencyTracker(get_settings().recent_interactions_limit)
    )


def get_climb_service(db: DbClient = Depends(get_db_client)) -> ClimbService:
    return ClimbService(db)


def get_user_service(
    db: DbClient = Depends(get_db_client),
    interactions: InteractionService = Depends(get_interaction_service),
) -> UserService:
    return UserService(db, interactions)


def get_profile_service(
    db: DbClient = Depends(get_db_client),
    interactions: InteractionService = Depends(get_interaction_service),
) -> ProfileService:
    return ProfileService(db, interactions)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_user(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> UserRecord:
    token = _bearer_token(authorization)
    if token is None:
        raise UnauthorizedError("Missing bearer token")
    return auth.authenticate(token)


def optional_user(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> Optional[UserRecord]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    return auth.authenticate(token)


def require_roles(*roles: Role | str) -> Callable[..., UserRecord]:
    """Dependency factory: the caller must hold one of ``roles``."""

    def dependency(user: UserRecord = Depends(require_user)) -> UserRecord:
        ensure_roles(user, roles)
        return user

    return dependency
