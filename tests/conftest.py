"""Shared fixtures: an in-memory database, the app and user factories."""
import itertools

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from images import LocalImageStore
from main import create_app
from models import Category, Comment, Post, Role, User
from security import configure_password_hashing, create_access_token, hash_password

PASSWORD = "secret123"

_counter = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    """Test settings: fast bcrypt, no log file, uploads under tmp_path."""
    settings = Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        bcrypt_rounds=4,
        environment="test",
        log_level="WARNING",
        log_file=None,
        upload_dir=str(tmp_path / "uploads"),
    )
    configure_password_hashing(settings.bcrypt_rounds)
    return settings


@pytest.fixture
def database(settings):
    """Fresh in-memory schema per test."""
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture
def image_store(settings):
    return LocalImageStore(settings.upload_dir, settings.upload_url_prefix)


@pytest.fixture
def client(settings, database, image_store):
    app = create_app(settings, database, image_store)
    return TestClient(app)


@pytest.fixture
def make_user(database):
    """Factory creating a committed user row."""
    def _make(role=Role.READER, name=None, email=None, password=PASSWORD):
        n = next(_counter)
        with database.session() as db:
            user = User(email=email or f"user{n}@example.com",
                        password_hash=hash_password(password),
                        name=name or f"User {n}",
                        role=role)
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
        return user
    return _make


@pytest.fixture
def make_post(database):
    """Factory creating a committed post row."""
    def _make(author, title="A post title", content="Some long enough content",
              published=True, tags=(), category=None):
        with database.session() as db:
            post = Post(title=title, content=content, published=published,
                        author_id=author.id,
                        category_id=category.id if category else None)
            post.tags = list(tags)
            db.add(post)
            db.commit()
            return post.id
    return _make


@pytest.fixture
def make_comment(database):
    """Factory creating a committed comment row."""
    def _make(author, post_id, content="Nice post!", approved=True):
        with database.session() as db:
            comment = Comment(content=content, approved=approved,
                              author_id=author.id, post_id=post_id)
            db.add(comment)
            db.commit()
            return comment.id
    return _make


@pytest.fixture
def make_category(database):
    def _make(name="Technology", slug=None):
        with database.session() as db:
            category = Category(name=name, slug=slug or name.lower().replace(" ", "-"))
            db.add(category)
            db.commit()
            db.refresh(category)
            db.expunge(category)
        return category
    return _make


@pytest.fixture
def auth_headers(settings):
    """Build the Authorization header for a user."""
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id, settings)}"}
    return _headers


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, name="Admin User")


@pytest.fixture
def author(make_user):
    return make_user(Role.AUTHOR, name="John Author")


@pytest.fixture
def other_author(make_user):
    return make_user(Role.AUTHOR, name="Other Author")


@pytest.fixture
def reader(make_user):
    return make_user(Role.READER, name="Jane Reader")
