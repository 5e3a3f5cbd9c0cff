"""
Pydantic schemas for the climb log API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    username: str = Field(..., min_length=2, max_length=50)
    given_name: Optional[str] = Field(default=None, max_length=100)
    family_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ConfirmRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=4)


class ResendCodeRequest(BaseModel):
    email: EmailStr


class RefreshRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8, max_length=128)


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str


class AccessTokenResponse(BaseModel):
    access_token: str


class MessageResponse(BaseModel):
    message: str


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------


class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    roles: list[str]
    is_verified: bool
    followers_count: int
    following_count: int
    created_at: float
    updated_at: float


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    username: str = Field(..., min_length=2, max_length=50)
    roles: list[Literal["user", "admin"]] = Field(default_factory=lambda: ["user"])
    given_name: Optional[str] = Field(default=None, max_length=100)
    family_name: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = Field(default=None, min_length=2, max_length=50)
    given_name: Optional[str] = Field(default=None, max_length=100)
    family_name: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    roles: Optional[list[Literal["user", "admin"]]] = None


class UserListResponse(BaseModel):
    data: list[UserResponse]
    total: int
    page: int
    pageSize: int


# ----------------------------------------------------------------------
# Climbs
# ----------------------------------------------------------------------


class ClimbCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    grade: str = Field(..., min_length=1, max_length=20)
    rating_average: Optional[float] = Field(default=None, ge=0, le=5)
    grade_average: Optional[float] = Field(default=None, ge=0, le=5)
    tags: list[str] = Field(default_factory=list)
    status: Literal["open", "closed"] = "open"


class ClimbUpdate(BaseModel):
    # Denormalized counters and recent lists are rejected, not ignored.
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    grade: Optional[str] = Field(default=None, min_length=1, max_length=20)
    rating_average: Optional[float] = Field(default=None, ge=0, le=5)
    grade_average: Optional[float] = Field(default=None, ge=0, le=5)
    tags: Optional[list[str]] = None
    status: Optional[Literal["open", "closed"]] = None


class ClimbResponse(BaseModel):
    id: str
    title: str
    grade: str
    created_by: str
    description: Optional[str] = None
    rating_average: Optional[float] = None
    grade_average: Optional[float] = None
    tags: list[str]
    status: str
    likes_count: int
    comments_count: int
    recent_likes: list[str]
    recent_comments: list[str]
    created_at: float
    updated_at: float
    is_ascended: Optional[bool] = None


class ClimbListResponse(BaseModel):
    data: list[ClimbResponse]
    total: int
    page: int
    pageSize: int


# ----------------------------------------------------------------------
# Interactions
# ----------------------------------------------------------------------


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class AscendRequest(BaseModel):
    ascension_type: Literal["onsight", "flash", "redpoint", "toprope"] = "redpoint"


class LikeResponse(BaseModel):
    id: str
    climb_id: str
    user_id: str
    created_at: float


class IsLikedResponse(BaseModel):
    isLiked: bool


class CommentResponse(BaseModel):
    id: str
    climb_id: str
    user_id: str
    content: str
    created_at: float


class CommentListResponse(BaseModel):
    data: list[CommentResponse]
    total: int
    page: int
    pageSize: int


class AscensionResponse(BaseModel):
    id: str
    climb_id: str
    user_id: str
    ascension_type: str
    created_at: float


class FollowResponse(BaseModel):
    id: str
    follower_id: str
    following_id: str
    created_at: float


# ----------------------------------------------------------------------
# Profile / health
# ----------------------------------------------------------------------


class ProfileResponse(BaseModel):
    id: str
    email: str
    username: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    followers_count: int
    following_count: int
    followers: list[str]
    following: list[str]
    ascensions: list[AscensionResponse]
    climbs: list[ClimbResponse]
    climbs_count: int
    is_following: bool


class HealthResponse(BaseModel):
    status: Literal["up"]
    database: Literal["up", "down"]
    queue: Literal["up", "down"]
    queue_depth: Optional[int] = None
    uptime: float
