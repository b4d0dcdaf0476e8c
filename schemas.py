"""Pydantic schemas for request bodies and JSON responses.

Responses use camelCase keys; request bodies accept camelCase or snake_case.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from errors import ValidationError
from models import Role


class Schema(BaseModel):
    """Base schema: camelCase aliases, readable from ORM objects"""
    model_config = ConfigDict(alias_generator=to_camel,
                              populate_by_name=True,
                              from_attributes=True)


def parse_model(model, data: Dict[str, Any]):
    """Validate ``data`` against ``model`` raising the API's ValidationError"""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        raise ValidationError("Validation failed",
                              details=errors[0]["msg"] if errors else None,
                              extra={"fields": [".".join(str(p) for p in e["loc"]) for e in errors]})


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterIn(Schema):
    """Body of POST /auth/register"""
    email: str
    password: str
    name: str
    role: Optional[str] = Role.READER.value


class LoginIn(Schema):
    email: str
    password: str


class PostIn(Schema):
    """Fields accepted when creating a post"""
    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    tags: Any = None
    category_id: Optional[int] = None


class PostUpdateIn(PostIn):
    """Partial update; absent fields keep their value"""
    published: Any = None


class CommentIn(Schema):
    content: Optional[str] = None
    post_id: Optional[int] = None


class CommentUpdateIn(Schema):
    content: Optional[str] = None
    approved: Optional[bool] = None


class CategoryIn(Schema):
    name: Optional[str] = None


class RoleUpdateIn(Schema):
    role: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class PaginationOut(Schema):
    current_page: int
    total_pages: int
    total_items: int
    limit: int
    has_next: bool
    has_prev: bool


class AuthorOut(Schema):
    id: int
    name: str
    email: Optional[str] = None


class UserOut(Schema):
    id: int
    email: str
    name: str
    role: Role
    created_at: datetime
    updated_at: Optional[datetime] = None


class UserWithCountsOut(UserOut):
    post_count: int = 0
    comment_count: int = 0


class AuthOut(Schema):
    message: str
    user: UserOut
    token: str


class CategoryOut(Schema):
    id: int
    name: str
    slug: str
    created_at: datetime


class CategoryWithCountOut(CategoryOut):
    post_count: int = 0


class PostRefOut(Schema):
    id: int
    title: str


class CommentOut(Schema):
    id: int
    content: str
    approved: bool
    post_id: int
    author_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    author: Optional[AuthorOut] = None


class CommentWithPostOut(CommentOut):
    post: Optional[PostRefOut] = None


class PostOut(Schema):
    id: int
    title: str
    content: str
    excerpt: Optional[str] = None
    tags: List[str] = []
    image: Optional[str] = None
    published: bool
    category_id: Optional[int] = None
    author_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    author: Optional[AuthorOut] = None
    category: Optional[CategoryOut] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_as_list(cls, value):
        return list(value) if value is not None else []


class PostListItemOut(PostOut):
    comment_count: int = 0


class PostDetailOut(PostOut):
    comments: List[CommentOut] = []


class PostListOut(Schema):
    posts: List[PostListItemOut]
    pagination: PaginationOut


class PostsOut(Schema):
    posts: List[PostOut]


class PostPageOut(Schema):
    posts: List[PostOut]
    pagination: PaginationOut


class PostEnvelope(Schema):
    message: Optional[str] = None
    post: PostOut


class PostDetailEnvelope(Schema):
    post: PostDetailOut


class CommentEnvelope(Schema):
    comment: CommentWithPostOut


class CommentPageOut(Schema):
    comments: List[CommentWithPostOut]
    pagination: PaginationOut


class CategoryDetailOut(CategoryOut):
    posts: List[PostOut] = []


class UserPageOut(Schema):
    users: List[UserWithCountsOut]
    pagination: PaginationOut


class UserSearchOut(Schema):
    users: List[UserOut]


class UserPostSummaryOut(Schema):
    id: int
    title: str
    published: bool
    created_at: datetime
    comment_count: int = 0


class UserDetailOut(UserWithCountsOut):
    posts: List[UserPostSummaryOut] = []
    comments: List[CommentWithPostOut] = []


class UserEnvelope(Schema):
    message: Optional[str] = None
    user: UserOut


class UserDetailEnvelope(Schema):
    user: UserDetailOut


class StatsOut(Schema):
    total_users: int
    total_posts: int
    total_comments: int
    role_distribution: Dict[str, int]
    recent_registrations: int
    recent_users: List[UserOut]


class AnalyticsOut(Schema):
    posts_per_user: float
    comments_per_user: float
    comments_per_post: float


class UserStatsOut(Schema):
    stats: StatsOut
    analytics: AnalyticsOut


class CascadeDetailsOut(Schema):
    user: str
    posts_deleted: int
    comments_deleted: int


class UserDeletedOut(Schema):
    message: str
    details: CascadeDetailsOut


class MessageOut(Schema):
    message: str

