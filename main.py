"""Main application module."""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

import schemas
from cascade import delete_user
from config import Settings
from database import Database
from dependencies import (COOKIE_NAME, actor_dependency, current_user_dependency,
                          db_dependency, optional_actor_dependency, settings_dependency)
from errors import AuthenticationError, ValidationError, register_exception_handlers
from images import DEFAULT_CONSTRAINTS, ImageConstraints, ImageStore, LocalImageStore
from logging_config import get_logger, setup_logging
from pagination import COMMENT_LIMIT, DEFAULT_LIMIT, Page, PageParams
from repositories import (CategoryRepository, CommentRepository, ImageUpload, PostRepository,
                          UserRepository)
from security import authenticate, configure_password_hashing, create_access_token

logger = get_logger("api")

IMAGE_FIELD = "postsImage"


def page_params(settings: Settings, page: Optional[str], limit: Optional[str],
                default_limit: int = DEFAULT_LIMIT, **filters) -> PageParams:
    return PageParams.from_query(page, limit,
                                 default_limit=default_limit,
                                 max_limit=settings.max_page_limit,
                                 **filters)


def set_jwt_cookie(response: Response, token: str, settings: Settings) -> None:
    """Store the token in an HTTP-only cookie as well as returning it"""
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="Strict",
        max_age=settings.access_token_expire_minutes * 60,
    )


async def read_upload(upload: UploadFile,
                      constraints: ImageConstraints = DEFAULT_CONSTRAINTS) -> bytes:
    """Read an uploaded file, stopping one byte past the size limit"""
    data = await upload.read(constraints.max_size + 1)
    constraints.check_size(len(data))
    return data


async def read_post_payload(request: Request) -> Tuple[Dict[str, Any], Optional[ImageUpload]]:
    """Read a post body sent either as JSON or as a (multipart) form.

    Repeated form fields become lists, so ``tags`` may arrive as a list, a
    JSON string or a comma separated string.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Malformed JSON body")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body, None

    form = await request.form()
    values: Dict[str, List[Any]] = {}
    image = None
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key == IMAGE_FIELD and value.filename:
                image = ImageUpload(await read_upload(value), value.content_type)
            continue
        values.setdefault(key, []).append(value)

    fields: Dict[str, Any] = {key: items if len(items) > 1 else items[0]
                              for key, items in values.items()}
    for key in ("categoryId", "category_id"):
        if fields.get(key) == "":
            fields[key] = None
    return fields, image


def post_items(page: Page) -> List[schemas.PostListItemOut]:
    counts = page.extras.get("comment_counts", {})
    items = []
    for post in page.items:
        item = schemas.PostListItemOut.model_validate(post)
        item.comment_count = counts.get(post.id, 0)
        items.append(item)
    return items


def comment_page(page: Page) -> schemas.CommentPageOut:
    return schemas.CommentPageOut(
        comments=[schemas.CommentWithPostOut.model_validate(c) for c in page.items],
        pagination=page.pagination(),
    )


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register", status_code=status.HTTP_201_CREATED,
                  response_model=schemas.AuthOut)
def register(body: schemas.RegisterIn, response: Response,
                   db: db_dependency, settings: settings_dependency):
    """Create a READER (default) or AUTHOR account and log it in"""
    if body.role == "ADMIN":
        raise ValidationError("Cannot self-register as ADMIN")
    user = UserRepository(db).create(body.email, body.password, body.name, body.role)
    token = create_access_token(user.id, settings)
    set_jwt_cookie(response, token, settings)
    return {"message": "User created successfully", "user": user, "token": token}


@auth_router.post("/login", response_model=schemas.AuthOut)
def login(body: schemas.LoginIn, response: Response,
                db: db_dependency, settings: settings_dependency):
    """Authenticate a user using email and password"""
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")
    user = authenticate(db, body.email, body.password)
    if not user:
        logger.info("Failed login for %s", body.email)
        raise AuthenticationError("Invalid credentials")
    token = create_access_token(user.id, settings)
    set_jwt_cookie(response, token, settings)
    return {"message": "Login successful", "user": user, "token": token}


@auth_router.post("/logout", response_model=schemas.MessageOut)
def logout(response: Response):
    """Log out by deleting the access token cookie"""
    response.delete_cookie(COOKIE_NAME)
    return {"message": "Logged out successfully"}


@auth_router.get("/profile", response_model=schemas.UserEnvelope)
def profile(current_user: current_user_dependency):
    """Retrieve information about the currently authenticated user"""
    return {"user": current_user}


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

posts_router = APIRouter(prefix="/posts", tags=["posts"])


@posts_router.get("", response_model=schemas.PostListOut)
def list_posts(db: db_dependency, settings: settings_dependency,
                     actor: optional_actor_dependency,
                     page: Optional[str] = None, limit: Optional[str] = None,
                     search: Optional[str] = None, tag: Optional[str] = None):
    """List the posts visible to the requester, newest first"""
    params = page_params(settings, page, limit, search=search, tag=tag)
    result = PostRepository(db).list(actor, params)
    return {"posts": post_items(result), "pagination": result.pagination()}


@posts_router.get("/featured/posts", response_model=schemas.PostsOut)
def featured_posts(db: db_dependency):
    """The three most recent published posts"""
    return {"posts": PostRepository(db).featured()}


@posts_router.get("/user/my-posts", response_model=schemas.PostPageOut)
def my_posts(db: db_dependency, settings: settings_dependency, actor: actor_dependency,
                   page: Optional[str] = None, limit: Optional[str] = None):
    """Posts written by the requester, published or not"""
    result = PostRepository(db).mine(actor, page_params(settings, page, limit))
    return {"posts": result.items, "pagination": result.pagination()}


@posts_router.get("/{post_id}", response_model=schemas.PostDetailEnvelope)
def read_post(post_id: int, db: db_dependency, actor: optional_actor_dependency):
    """Retrieve a single post with the comments the requester may see"""
    post, comments = PostRepository(db).get_visible(actor, post_id)
    detail = schemas.PostDetailOut(
        **schemas.PostOut.model_validate(post).model_dump(),
        comments=[schemas.CommentOut.model_validate(c) for c in comments],
    )
    return {"post": detail}


@posts_router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.PostEnvelope)
async def create_post(request: Request, db: db_dependency, actor: actor_dependency):
    """Create a post. Authors' posts start unpublished, admins' are published"""
    fields, image = await read_post_payload(request)
    data = schemas.parse_model(schemas.PostIn, fields)
    repo = PostRepository(db, request.app.state.image_store)
    post = await run_in_threadpool(repo.create, actor, data, image)
    return {"message": "Post created successfully", "post": post}


@posts_router.put("/{post_id}", response_model=schemas.PostEnvelope)
async def update_post(post_id: int, request: Request, db: db_dependency,
                      actor: actor_dependency):
    """Update a post by ID. Only the owner or an admin may do so"""
    fields, image = await read_post_payload(request)
    data = schemas.parse_model(schemas.PostUpdateIn, fields)
    repo = PostRepository(db, request.app.state.image_store)
    post = await run_in_threadpool(repo.update, actor, post_id, data, image)
    return {"message": "Post updated successfully", "post": post}


@posts_router.delete("/{post_id}", response_model=schemas.MessageOut)
def delete_post(post_id: int, request: Request, db: db_dependency,
                      actor: actor_dependency):
    """Delete a post by ID. Only the owner or an admin may do so"""
    PostRepository(db, request.app.state.image_store).delete(actor, post_id)
    return {"message": "Post deleted successfully"}


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

comments_router = APIRouter(prefix="/comments", tags=["comments"])


@comments_router.get("/post/{post_id}", response_model=schemas.CommentPageOut)
def post_comments(post_id: int, db: db_dependency, settings: settings_dependency,
                        actor: optional_actor_dependency,
                        page: Optional[str] = None, limit: Optional[str] = None):
    """Approved comments of a post (plus the requester's own pending ones)"""
    params = page_params(settings, page, limit, default_limit=COMMENT_LIMIT)
    return comment_page(CommentRepository(db).for_post(actor, post_id, params))


@comments_router.get("/mine", response_model=schemas.CommentPageOut)
def my_comments(db: db_dependency, settings: settings_dependency, actor: actor_dependency,
                      page: Optional[str] = None, limit: Optional[str] = None):
    params = page_params(settings, page, limit, default_limit=COMMENT_LIMIT)
    return comment_page(CommentRepository(db).mine(actor, params))


@comments_router.get("/admin/pending", response_model=schemas.CommentPageOut)
def pending_comments(db: db_dependency, settings: settings_dependency,
                           actor: actor_dependency,
                           page: Optional[str] = None, limit: Optional[str] = None):
    """Comments waiting for approval. Admin only"""
    params = page_params(settings, page, limit, default_limit=COMMENT_LIMIT)
    return comment_page(CommentRepository(db).pending(actor, params))


@comments_router.post("", status_code=status.HTTP_201_CREATED,
                      response_model=schemas.CommentEnvelope)
def create_comment(body: schemas.CommentIn, db: db_dependency, actor: actor_dependency):
    """Comment on a post. Admin comments are approved immediately"""
    return {"comment": CommentRepository(db).create(actor, body)}


@comments_router.get("/{comment_id}", response_model=schemas.CommentEnvelope)
def read_comment(comment_id: int, db: db_dependency, actor: optional_actor_dependency):
    return {"comment": CommentRepository(db).get(actor, comment_id)}


@comments_router.put("/{comment_id}", response_model=schemas.CommentEnvelope)
def update_comment(comment_id: int, body: schemas.CommentUpdateIn,
                         db: db_dependency, actor: actor_dependency):
    """Edit a comment; admins may also approve or reject it"""
    return {"comment": CommentRepository(db).update(actor, comment_id, body)}


@comments_router.delete("/{comment_id}", response_model=schemas.MessageOut)
def delete_comment(comment_id: int, db: db_dependency, actor: actor_dependency):
    CommentRepository(db).delete(actor, comment_id)
    return {"message": "Comment deleted successfully"}


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

categories_router = APIRouter(prefix="/categories", tags=["categories"])


@categories_router.get("", response_model=List[schemas.CategoryWithCountOut])
def list_categories(db: db_dependency):
    """All categories with their post counts, by name"""
    result = []
    for category, post_count in CategoryRepository(db).list():
        item = schemas.CategoryWithCountOut.model_validate(category)
        item.post_count = post_count
        result.append(item)
    return result


@categories_router.post("", status_code=status.HTTP_201_CREATED,
                        response_model=schemas.CategoryOut)
def create_category(body: schemas.CategoryIn, db: db_dependency, actor: actor_dependency):
    """Create a category; the slug is derived from the name. Admin only"""
    return CategoryRepository(db).create(actor, body.name)


@categories_router.get("/{slug}", response_model=schemas.CategoryDetailOut)
def category_by_slug(slug: str, db: db_dependency, actor: optional_actor_dependency):
    """A category with the posts the requester may see"""
    category, posts = CategoryRepository(db).by_slug(actor, slug)
    return schemas.CategoryDetailOut(
        **schemas.CategoryOut.model_validate(category).model_dump(),
        posts=[schemas.PostOut.model_validate(p) for p in posts],
    )


# ---------------------------------------------------------------------------
# Users (admin)
# ---------------------------------------------------------------------------

users_router = APIRouter(prefix="/users", tags=["users"])


@users_router.get("", response_model=schemas.UserPageOut)
def list_users(db: db_dependency, settings: settings_dependency, actor: actor_dependency,
                     page: Optional[str] = None, limit: Optional[str] = None,
                     search: Optional[str] = None, role: Optional[str] = None):
    """All users with post and comment counts. Admin only"""
    params = page_params(settings, page, limit, search=search, role=role)
    result = UserRepository(db).list(actor, params)
    users = []
    for user in result.items:
        item = schemas.UserWithCountsOut.model_validate(user)
        item.post_count = result.extras["post_counts"].get(user.id, 0)
        item.comment_count = result.extras["comment_counts"].get(user.id, 0)
        users.append(item)
    return {"users": users, "pagination": result.pagination()}


@users_router.get("/stats", response_model=schemas.UserStatsOut)
def user_stats(db: db_dependency, actor: actor_dependency):
    """Totals, role distribution and activity ratios. Admin only"""
    return UserRepository(db).stats(actor)


@users_router.get("/search", response_model=schemas.UserSearchOut)
def search_users(db: db_dependency, settings: settings_dependency, actor: actor_dependency,
                       query: Optional[str] = None, limit: Optional[str] = None):
    """Search users by name or email, alphabetically. Admin only"""
    params = page_params(settings, None, limit)
    return {"users": UserRepository(db).search(actor, query, params.limit)}


@users_router.get("/{user_id}", response_model=schemas.UserDetailEnvelope)
def read_user(user_id: int, db: db_dependency, actor: actor_dependency):
    """Retrieve a user with recent activity. Admin only"""
    found = UserRepository(db).detail(actor, user_id)
    posts = []
    for post in found["posts"]:
        summary = schemas.UserPostSummaryOut.model_validate(post)
        summary.comment_count = found["post_comment_counts"].get(post.id, 0)
        posts.append(summary)
    detail = schemas.UserDetailOut(
        **schemas.UserOut.model_validate(found["user"]).model_dump(),
        post_count=found["post_count"],
        comment_count=found["comment_count"],
        posts=posts,
        comments=[schemas.CommentWithPostOut.model_validate(c) for c in found["comments"]],
    )
    return {"user": detail}


@users_router.patch("/{user_id}/role", response_model=schemas.UserEnvelope)
def update_user_role(user_id: int, body: schemas.RoleUpdateIn,
                           db: db_dependency, actor: actor_dependency):
    """Change another user's role. Admin only"""
    user = UserRepository(db).set_role(actor, user_id, body.role)
    return {"message": f"User role updated successfully to {user.role.value}", "user": user}


@users_router.delete("/{user_id}", response_model=schemas.UserDeletedOut)
def remove_user(user_id: int, db: db_dependency, actor: actor_dependency):
    """Delete another user with their posts and comments. Admin only"""
    report = delete_user(db, actor, user_id)
    user = report.deleted_user
    return {
        "message": f'User "{user["name"]}" ({user["email"]}) deleted successfully',
        "details": {
            "user": user["email"],
            "posts_deleted": report.posts_deleted,
            "comments_deleted": report.comments_deleted,
        },
    }


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def health(request: Request):
    """Report whether the database answers"""
    try:
        db_time = request.app.state.database.now()
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Database not reachable"})
    return {"status": "OK", "dbTime": str(db_time)}


def create_app(settings: Optional[Settings] = None,
               database: Optional[Database] = None,
               image_store: Optional[ImageStore] = None) -> FastAPI:
    """Build the API around an explicitly constructed database handle"""
    settings = settings or Settings.from_env()
    setup_logging(settings)
    configure_password_hashing(settings.bcrypt_rounds)

    owns_database = database is None
    database = database or Database.from_settings(settings)
    image_store = image_store or LocalImageStore(settings.upload_dir, settings.upload_url_prefix)
    database.create_all()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API started (%s)", settings.environment)
        yield
        if owns_database:
            database.dispose()

    app = FastAPI(title="Blog API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.image_store = image_store

    register_exception_handlers(app, settings)
    for router in (auth_router, posts_router, comments_router, categories_router, users_router):
        app.include_router(router)
    app.add_api_route("/health", health, methods=["GET"], response_model=None)

    if isinstance(image_store, LocalImageStore):
        app.mount(settings.upload_url_prefix, StaticFiles(directory=image_store.directory),
                  name="uploads")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
