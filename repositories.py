"""Repositories for users, posts, comments and categories.

Each repository wraps a request-scoped ``Session``. Reads apply the access
policy and return NotFound for rows the actor is not allowed to know about;
writes validate their input before touching storage and commit through
``write_transaction``.
"""
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from errors import ConflictError, NotFoundError, ValidationError, write_transaction
from images import ImageStore, discard_image
from logging_config import get_logger
from models import ROLE_VALUES, Category, Comment, Post, PostTag, Role, User
from normalize import coerce_bool, normalize_tags, slugify
from pagination import ListSpec, Page, PageParams, build_page, run_page, visibility_predicate
from policy import (Action, Actor, Resource, comment_visibility, enforce, post_visibility,
                    require_admin)
from schemas import CommentIn, CommentUpdateIn, PostIn, PostUpdateIn
from security import hash_password, validate_registration

logger = get_logger("repositories")

ImageUpload = namedtuple("ImageUpload", ["data", "content_type"])

MIN_TITLE_LENGTH = 3
MIN_CONTENT_LENGTH = 10
MIN_SEARCH_LENGTH = 2
FEATURED_COUNT = 3
RECENT_DAYS = 30

POST_LIST = ListSpec(
    model=Post,
    search_columns=(Post.title, Post.content),
    order_by=(Post.created_at.desc(), Post.id.desc()),
    flag_column=Post.published,
    owner_column=Post.author_id,
    tag_filter=lambda tag: Post.tag_rows.any(PostTag.name == tag),
)

COMMENT_LIST = ListSpec(
    model=Comment,
    search_columns=(Comment.content,),
    order_by=(Comment.created_at.desc(), Comment.id.desc()),
    flag_column=Comment.approved,
    owner_column=Comment.author_id,
)

USER_LIST = ListSpec(
    model=User,
    search_columns=(User.name, User.email),
    order_by=(User.created_at.desc(), User.id.desc()),
    role_column=User.role,
    role_values=ROLE_VALUES,
)


def count_by(db: Session, column, ids: Iterable[int], *criteria) -> Dict[int, int]:
    """Return ``{id: row count}`` grouped on ``column`` for the given ids"""
    ids = list(ids)
    if not ids:
        return {}
    rows = (db.query(column, func.count())
            .filter(column.in_(ids), *criteria)
            .group_by(column)
            .all())
    return {key: count for key, count in rows}


def parse_role(role: Optional[str]) -> Role:
    if role not in ROLE_VALUES:
        raise ValidationError("Invalid role", extra={"validRoles": ROLE_VALUES})
    return Role(role)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        """Retrieve a user from the database by their email address"""
        return self.db.query(User).filter(User.email == email.strip()).first()

    def create(self, email: str, password: str, name: str,
               role: Optional[str] = Role.READER.value) -> User:
        """Validate, hash and store a new account"""
        validate_registration(email, password, name)
        parsed_role = parse_role(role or Role.READER.value)
        email = email.strip()

        if self.get_by_email(email):
            raise ConflictError("User already exists")

        user = User(email=email,
                    password_hash=hash_password(password),
                    name=name.strip(),
                    role=parsed_role)
        with write_transaction(self.db):
            self.db.add(user)
        self.db.refresh(user)
        logger.info("Registered user %s as %s", user.email, user.role.value)
        return user

    def list(self, actor: Actor, params: PageParams) -> Page:
        require_admin(actor)
        plan = build_page(params, USER_LIST)
        page = run_page(self.db.query(User), plan)
        ids = [user.id for user in page.items]
        page.extras["post_counts"] = count_by(self.db, Post.author_id, ids)
        page.extras["comment_counts"] = count_by(self.db, Comment.author_id, ids)
        return page

    def search(self, actor: Actor, query: Optional[str], limit: int) -> List[User]:
        require_admin(actor)
        query = (query or "").strip()
        if len(query) < MIN_SEARCH_LENGTH:
            raise ValidationError(
                f"Search query must be at least {MIN_SEARCH_LENGTH} characters long")
        plan = build_page(PageParams(limit=limit, search=query),
                          ListSpec(model=User,
                                   search_columns=USER_LIST.search_columns,
                                   order_by=(User.name.asc(), User.id.asc())))
        return run_page(self.db.query(User), plan).items

    def detail(self, actor: Actor, user_id: int) -> dict:
        """User with their ten latest posts and comments plus totals"""
        require_admin(actor)
        user = self.get(user_id)
        posts = (self.db.query(Post)
                 .filter(Post.author_id == user.id)
                 .order_by(Post.created_at.desc(), Post.id.desc())
                 .limit(10).all())
        comments = (self.db.query(Comment)
                    .options(selectinload(Comment.post))
                    .filter(Comment.author_id == user.id)
                    .order_by(Comment.created_at.desc(), Comment.id.desc())
                    .limit(10).all())
        return {
            "user": user,
            "posts": posts,
            "post_comment_counts": count_by(self.db, Comment.post_id, [p.id for p in posts]),
            "comments": comments,
            "post_count": self.db.query(Post).filter(Post.author_id == user.id).count(),
            "comment_count": self.db.query(Comment).filter(Comment.author_id == user.id).count(),
        }

    def stats(self, actor: Actor) -> dict:
        require_admin(actor)
        total_users = self.db.query(User).count()
        total_posts = self.db.query(Post).count()
        total_comments = self.db.query(Comment).count()

        role_distribution = {role.value: 0 for role in Role}
        for role, count in self.db.query(User.role, func.count()).group_by(User.role):
            role_distribution[Role(role).value] = count

        since = datetime.now(timezone.utc) - timedelta(days=RECENT_DAYS)
        recent_registrations = self.db.query(User).filter(User.created_at >= since).count()
        recent_users = (self.db.query(User)
                        .order_by(User.created_at.desc(), User.id.desc())
                        .limit(5).all())

        def ratio(numerator: int, denominator: int) -> float:
            return round(numerator / denominator, 2) if denominator else 0.0

        return {
            "stats": {
                "total_users": total_users,
                "total_posts": total_posts,
                "total_comments": total_comments,
                "role_distribution": role_distribution,
                "recent_registrations": recent_registrations,
                "recent_users": recent_users,
            },
            "analytics": {
                "posts_per_user": ratio(total_posts, total_users),
                "comments_per_user": ratio(total_comments, total_users),
                "comments_per_post": ratio(total_comments, total_posts),
            },
        }

    def set_role(self, actor: Actor, user_id: int, role: Optional[str]) -> User:
        enforce(actor, Action.UPDATE, Resource.user(user_id))
        new_role = parse_role(role)
        user = self.get(user_id)

        with write_transaction(self.db):
            user.role = new_role
        self.db.refresh(user)
        logger.info("User %s role changed to %s by user %s", user.email, new_role.value, actor.id)
        return user


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


def _post_options():
    return (selectinload(Post.author),
            selectinload(Post.category),
            selectinload(Post.tag_rows))


def validate_post_fields(data: PostIn, partial: bool) -> None:
    """Length checks on title and content; absent fields pass on partial updates"""
    if not partial and (not data.title or not data.content):
        raise ValidationError("Title and content are required")
    if data.title is not None and len(data.title.strip()) < MIN_TITLE_LENGTH:
        raise ValidationError(f"Title must be at least {MIN_TITLE_LENGTH} characters long")
    if data.content is not None and len(data.content.strip()) < MIN_CONTENT_LENGTH:
        raise ValidationError(f"Content must be at least {MIN_CONTENT_LENGTH} characters long")


class PostRepository:
    def __init__(self, db: Session, image_store: Optional[ImageStore] = None):
        self.db = db
        self.image_store = image_store

    def _query(self):
        return self.db.query(Post).options(*_post_options())

    def get(self, post_id: int) -> Post:
        post = self._query().filter(Post.id == post_id).first()
        if not post:
            raise NotFoundError("Post not found")
        return post

    def get_visible(self, actor: Actor, post_id: int) -> Tuple[Post, List[Comment]]:
        """Post plus the comments the actor may see, newest first"""
        post = self.get(post_id)
        enforce(actor, Action.READ, Resource.of_post(post))

        comments = self.db.query(Comment).options(selectinload(Comment.author))
        visible = visibility_predicate(comment_visibility(actor), COMMENT_LIST)
        if visible is not None:
            comments = comments.filter(visible)
        comments = (comments.filter(Comment.post_id == post.id)
                    .order_by(*COMMENT_LIST.order_by)
                    .all())
        return post, comments

    def list(self, actor: Actor, params: PageParams) -> Page:
        plan = build_page(params, POST_LIST, post_visibility(actor))
        page = run_page(self._query(), plan)
        page.extras["comment_counts"] = count_by(
            self.db, Comment.post_id, [post.id for post in page.items],
            Comment.approved.is_(True))
        return page

    def featured(self) -> List[Post]:
        """The most recent published posts"""
        return (self._query()
                .filter(Post.published.is_(True))
                .order_by(*POST_LIST.order_by)
                .limit(FEATURED_COUNT)
                .all())

    def mine(self, actor: Actor, params: PageParams) -> Page:
        enforce(actor, Action.CREATE, Resource.post())
        plan = build_page(params, POST_LIST, extra=[Post.author_id == actor.id])
        return run_page(self._query(), plan)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None and not self.db.get(Category, category_id):
            raise ValidationError("Invalid categoryId", details=f"No category with id {category_id}")

    def _store_image(self, image: Optional[ImageUpload]) -> Optional[str]:
        if image is None:
            return None
        if self.image_store is None:
            raise ValidationError("Image uploads are not available")
        return self.image_store.store(image.data, image.content_type)

    def create(self, actor: Actor, data: PostIn, image: Optional[ImageUpload] = None) -> Post:
        enforce(actor, Action.CREATE, Resource.post())
        validate_post_fields(data, partial=False)
        tags = normalize_tags(data.tags) or []
        self._check_category(data.category_id)

        image_url = self._store_image(image)
        post = Post(title=data.title.strip(),
                    content=data.content,
                    excerpt=data.excerpt,
                    author_id=actor.id,
                    published=actor.role == Role.ADMIN,
                    image=image_url,
                    category_id=data.category_id)
        post.tags = tags
        try:
            with write_transaction(self.db):
                self.db.add(post)
        except Exception:
            if image_url:
                discard_image(self.image_store, image_url)
            raise
        logger.info("Post %s created by user %s (published=%s)", post.id, actor.id, post.published)
        return self.get(post.id)

    def update(self, actor: Actor, post_id: int, data: PostUpdateIn,
               image: Optional[ImageUpload] = None) -> Post:
        """Merge the supplied fields into the post; the author never changes"""
        post = self.get(post_id)
        enforce(actor, Action.UPDATE, Resource.of_post(post))
        validate_post_fields(data, partial=True)
        tags = normalize_tags(data.tags)
        published = coerce_bool(data.published)
        if "category_id" in data.model_fields_set:
            self._check_category(data.category_id)

        old_image = post.image
        new_image = self._store_image(image)
        try:
            with write_transaction(self.db):
                if data.title is not None:
                    post.title = data.title.strip()
                if data.content is not None:
                    post.content = data.content
                if data.excerpt is not None:
                    post.excerpt = data.excerpt
                if tags is not None:
                    post.tags = tags
                if published is not None:
                    post.published = published
                if "category_id" in data.model_fields_set:
                    post.category_id = data.category_id
                if new_image:
                    post.image = new_image
        except Exception:
            if new_image:
                discard_image(self.image_store, new_image)
            raise

        if new_image and old_image:
            discard_image(self.image_store, old_image)
        return self.get(post.id)

    def delete(self, actor: Actor, post_id: int) -> None:
        post = self.get(post_id)
        enforce(actor, Action.DELETE, Resource.of_post(post))
        image = post.image
        with write_transaction(self.db):
            self.db.delete(post)
        if image and self.image_store is not None:
            discard_image(self.image_store, image)
        logger.info("Post %s deleted by user %s", post_id, actor.id)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def _comment_query(db: Session):
    return db.query(Comment).options(selectinload(Comment.author), selectinload(Comment.post))


class CommentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, actor: Actor, comment_id: int) -> Comment:
        comment = _comment_query(self.db).filter(Comment.id == comment_id).first()
        if not comment:
            raise NotFoundError("Comment not found")
        enforce(actor, Action.READ, Resource.of_comment(comment))
        return comment

    def _visible_post(self, actor: Actor, post_id: Optional[int]) -> Post:
        post = self.db.get(Post, post_id) if post_id is not None else None
        if not post:
            raise NotFoundError("Post not found")
        enforce(actor, Action.READ, Resource.of_post(post))
        return post

    def for_post(self, actor: Actor, post_id: int, params: PageParams) -> Page:
        post = self._visible_post(actor, post_id)
        plan = build_page(params, COMMENT_LIST, comment_visibility(actor),
                          extra=[Comment.post_id == post.id])
        return run_page(_comment_query(self.db), plan)

    def create(self, actor: Actor, data: CommentIn) -> Comment:
        enforce(actor, Action.CREATE, Resource.comment())
        if not data.content or not data.content.strip() or data.post_id is None:
            raise ValidationError("Content and postId are required")
        post = self._visible_post(actor, data.post_id)

        comment = Comment(content=data.content.strip(),
                          post_id=post.id,
                          author_id=actor.id,
                          approved=actor.role == Role.ADMIN)
        with write_transaction(self.db):
            self.db.add(comment)
        logger.info("Comment %s on post %s by user %s", comment.id, post.id, actor.id)
        return self.get(actor, comment.id)

    def update(self, actor: Actor, comment_id: int, data: CommentUpdateIn) -> Comment:
        """Authors edit the text; only admins can change approval"""
        comment = _comment_query(self.db).filter(Comment.id == comment_id).first()
        if not comment:
            raise NotFoundError("Comment not found")
        enforce(actor, Action.UPDATE, Resource.of_comment(comment))
        if data.content is not None and not data.content.strip():
            raise ValidationError("Comment cannot be empty")

        with write_transaction(self.db):
            if data.content is not None:
                comment.content = data.content.strip()
            if data.approved is not None and actor.role == Role.ADMIN:
                comment.approved = data.approved
        return self.get(actor, comment_id)

    def delete(self, actor: Actor, comment_id: int) -> None:
        comment = self.db.get(Comment, comment_id)
        if not comment:
            raise NotFoundError("Comment not found")
        enforce(actor, Action.DELETE, Resource.of_comment(comment))
        with write_transaction(self.db):
            self.db.delete(comment)

    def pending(self, actor: Actor, params: PageParams) -> Page:
        require_admin(actor)
        plan = build_page(params, COMMENT_LIST, extra=[Comment.approved.is_(False)])
        return run_page(_comment_query(self.db), plan)

    def mine(self, actor: Actor, params: PageParams) -> Page:
        enforce(actor, Action.CREATE, Resource.comment())
        plan = build_page(params, COMMENT_LIST, extra=[Comment.author_id == actor.id])
        return run_page(_comment_query(self.db), plan)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def list(self) -> List[Tuple[Category, int]]:
        categories = self.db.query(Category).order_by(Category.name.asc(), Category.id.asc()).all()
        counts = count_by(self.db, Post.category_id, [c.id for c in categories])
        return [(category, counts.get(category.id, 0)) for category in categories]

    def create(self, actor: Actor, name: Optional[str]) -> Category:
        enforce(actor, Action.CREATE, Resource.category())
        if not name or not name.strip():
            raise ValidationError("Category name required")
        name = name.strip()
        slug = slugify(name)

        if self.db.query(Category).filter(Category.slug == slug).first():
            raise ConflictError("Category already exists")

        category = Category(name=name, slug=slug)
        with write_transaction(self.db):
            self.db.add(category)
        self.db.refresh(category)
        logger.info("Category %r created as %s", name, slug)
        return category

    def by_slug(self, actor: Actor, slug: str) -> Tuple[Category, List[Post]]:
        category = self.db.query(Category).filter(Category.slug == slug).first()
        if not category:
            raise NotFoundError("Category not found")
        enforce(actor, Action.READ, Resource.category())

        posts = self.db.query(Post).options(*_post_options()).filter(Post.category_id == category.id)
        visible = visibility_predicate(post_visibility(actor), POST_LIST)
        if visible is not None:
            posts = posts.filter(visible)
        return category, posts.order_by(*POST_LIST.order_by).all()
