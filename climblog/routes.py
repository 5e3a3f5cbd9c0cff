"""
HTTP routes for the climb log API.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from climblog.auth import AuthService
from climblog.climbs import ClimbService
from climblog.db import DbClient
from climblog.dependencies import (
    get_auth_service,
    get_climb_service,
    get_db_client,
    get_interaction_service,
    get_profile_service,
    get_queue_client,
    get_user_service,
    optional_user,
    require_roles,
    require_user,
)
from climblog.interactions import InteractionService
from climblog.profile import ProfileService
from climblog.queue import JobQueue
from climblog.records import Page, Role, UserRecord
from climblog.schemas import (
    AccessTokenResponse,
    AscendRequest,
    AscensionResponse,
    ClimbCreate,
    ClimbListResponse,
    ClimbResponse,
    ClimbUpdate,
    CommentListResponse,
    CommentRequest,
    CommentResponse,
    ConfirmRequest,
    FollowResponse,
    ForgotPasswordRequest,
    HealthResponse,
    IsLikedResponse,
    LikeResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    RegisterRequest,
    ResendCodeRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from climblog.users import UserService

logger = logging.getLogger(__name__)

router = APIRouter()

_STARTED_AT = time.monotonic()


def _page_payload(page: Page) -> dict:
    return {
        "data": [item if isinstance(item, dict) else item.as_dict() for item in page.items],
        "total": page.total,
        "page": page.page,
        "pageSize": page.page_size,
    }


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    user = auth.register(
        email=payload.email,
        password=payload.password,
        username=payload.username,
        given_name=payload.given_name,
        family_name=payload.family_name,
    )
    return user.as_dict()


@router.post("/auth/login", response_model=TokenPairResponse)
def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.login(payload.email, payload.password)


@router.post("/auth/confirm", response_model=UserResponse)
def confirm(payload: ConfirmRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.confirm(payload.code).as_dict()


@router.post("/auth/resend", response_model=MessageResponse)
def resend_code(payload: ResendCodeRequest, auth: AuthService = Depends(get_auth_service)):
    auth.resend_code(payload.email)
    return {"message": "Verification code sent"}


@router.post("/auth/refresh", response_model=AccessTokenResponse)
def refresh(payload: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.refresh(payload.refresh_token)


@router.get("/auth/me", response_model=UserResponse)
def me(
    user: UserRecord = Depends(require_user),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.me(user).as_dict()


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    auth.forgot_password(payload.email)
    return {"message": "If the email exists, a reset link has been sent"}


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    auth.reset_password(payload.token, payload.new_password)
    return {"message": "Password has been reset"}


# ----------------------------------------------------------------------
# Climbs
# ----------------------------------------------------------------------


@router.get("/climbs", response_model=ClimbListResponse)
def list_climbs(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    filters: Optional[str] = Query(None),
    user: Optional[UserRecord] = Depends(optional_user),
    climbs: ClimbService = Depends(get_climb_service),
):
    result = climbs.list(
        page=page,
        page_size=page_size,
        filters=filters,
        current_user_id=user.id if user else None,
    )
    return _page_payload(result)


@router.post("/climbs", response_model=ClimbResponse, status_code=201)
def create_climb(
    payload: ClimbCreate,
    user: UserRecord = Depends(require_user),
    climbs: ClimbService = Depends(get_climb_service),
):
    return climbs.create(payload.model_dump(), created_by=user.id).as_dict()


@router.get("/climbs/{climb_id}", response_model=ClimbResponse)
def get_climb(
    climb_id: str,
    user: Optional[UserRecord] = Depends(optional_user),
    climbs: ClimbService = Depends(get_climb_service),
):
    return climbs.get(climb_id, current_user_id=user.id if user else None)


@router.put("/climbs/{climb_id}", response_model=ClimbResponse)
def update_climb(
    climb_id: str,
    payload: ClimbUpdate,
    user: UserRecord = Depends(require_user),
    climbs: ClimbService = Depends(get_climb_service),
):
    changes = payload.model_dump(exclude_unset=True)
    return climbs.update(climb_id, changes, actor=user).as_dict()


@router.delete("/climbs/{climb_id}", response_model=ClimbResponse)
def delete_climb(
    climb_id: str,
    user: UserRecord = Depends(require_user),
    climbs: ClimbService = Depends(get_climb_service),
):
    return climbs.delete(climb_id, actor=user).as_dict()


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    filters: Optional[str] = Query(None),
    _: UserRecord = Depends(require_user),
    users: UserService = Depends(get_user_service),
):
    return _page_payload(users.list(page=page, page_size=page_size, filters=filters))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    _: UserRecord = Depends(require_roles(Role.ADMIN)),
    users: UserService = Depends(get_user_service),
):
    user = users.create(
        email=payload.email,
        password=payload.password,
        username=payload.username,
        roles=list(payload.roles),
        given_name=payload.given_name,
        family_name=payload.family_name,
    )
    return user.as_dict()


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    _: UserRecord = Depends(require_roles(Role.ADMIN)),
    users: UserService = Depends(get_user_service),
):
    return users.get(user_id).as_dict()


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    payload: UserUpdate,
    user: UserRecord = Depends(require_user),
    users: UserService = Depends(get_user_service),
):
    changes = payload.model_dump(exclude_unset=True)
    return users.update(user_id, changes, actor=user).as_dict()


@router.delete("/users/{user_id}", response_model=UserResponse)
def delete_user(
    user_id: str,
    admin: UserRecord = Depends(require_roles(Role.ADMIN)),
    users: UserService = Depends(get_user_service),
):
    return users.delete(user_id, actor=admin).as_dict()


# ----------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------


@router.get("/profile/{user_id}", response_model=ProfileResponse)
def get_profile(
    user_id: str,
    user: Optional[UserRecord] = Depends(optional_user),
    profiles: ProfileService = Depends(get_profile_service),
):
    return profiles.find_profile(user.id if user else None, user_id)


# ----------------------------------------------------------------------
# Interactions
# ----------------------------------------------------------------------


@router.post("/interactions/{climb_id}/like", response_model=LikeResponse, status_code=201)
def like_climb(
    climb_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.like(climb_id, user.id).as_dict()


@router.delete("/interactions/{climb_id}/like", response_model=LikeResponse)
def unlike_climb(
    climb_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.unlike(climb_id, user.id).as_dict()


@router.get("/interactions/{climb_id}/isLiked", response_model=IsLikedResponse)
def is_liked(
    climb_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return {"isLiked": interactions.is_liked(climb_id, user.id)}


@router.post(
    "/interactions/{climb_id}/comment", response_model=CommentResponse, status_code=201
)
def comment_climb(
    climb_id: str,
    payload: CommentRequest,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.comment(climb_id, user.id, payload.content).as_dict()


@router.get("/interactions/{climb_id}/comments", response_model=CommentListResponse)
def list_comments(
    climb_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return _page_payload(interactions.list_comments(climb_id, page, page_size))


@router.delete(
    "/interactions/{climb_id}/comment/{comment_id}", response_model=CommentResponse
)
def remove_comment(
    climb_id: str,
    comment_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.remove_comment(climb_id, comment_id, actor=user).as_dict()


@router.delete("/interactions/comments/{comment_id}", response_model=CommentResponse)
def uncomment(
    comment_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.uncomment(comment_id, actor=user).as_dict()


@router.post(
    "/interactions/{climb_id}/ascend", response_model=AscensionResponse, status_code=201
)
def ascend_climb(
    climb_id: str,
    payload: Optional[AscendRequest] = None,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    payload = payload or AscendRequest()
    return interactions.ascend(climb_id, user.id, payload.ascension_type).as_dict()


@router.post(
    "/interactions/{user_id}/follow", response_model=FollowResponse, status_code=201
)
def follow_user(
    user_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.follow(user.id, user_id).as_dict()


@router.delete("/interactions/{user_id}/unfollow", response_model=FollowResponse)
def unfollow_user(
    user_id: str,
    user: UserRecord = Depends(require_user),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return interactions.unfollow(user.id, user_id).as_dict()


@router.get("/interactions/{user_id}/followers", response_model=list[FollowResponse])
def list_followers(
    user_id: str,
    interactions: InteractionService = Depends(get_interaction_service),
):
    return [f.as_dict() for f in interactions.list_followers(user_id)]


@router.get("/interactions/{user_id}/following", response_model=list[FollowResponse])
def list_following(
    user_id: str,
    interactions: InteractionService = Depends(get_interaction_service),
):
    return [f.as_dict() for f in interactions.list_following(user_id)]


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
def health(
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    database = "up" if db.ping() else "down"
    if database == "down":
        logger.warning("Health check: database is down")
    depth = queue.size()
    return {
        "status": "up",
        "database": database,
        "queue": "up" if depth is not None else "down",
        "queue_depth": depth,
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
    }
