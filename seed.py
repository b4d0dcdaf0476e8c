"""Fill an empty database with demo accounts, posts, comments and categories.

Running it twice does not duplicate anything.
"""
from sqlalchemy.orm import Session

from config import Settings
from database import Database
from errors import write_transaction
from models import Category, Comment, Post, Role, User
from normalize import slugify
from security import configure_password_hashing, hash_password

USERS = [
    ("admin@blog.com", "admin123", "Admin User", Role.ADMIN),
    ("author@blog.com", "author123", "John Author", Role.AUTHOR),
    ("reader@blog.com", "reader123", "Jane Reader", Role.READER),
]

CATEGORIES = ["Technology", "Web Development", "Announcements"]

POSTS = [
    {
        "title": "Welcome to Our Blog",
        "content": (
            "This is the first post on our amazing blogging platform. We're excited to "
            "share knowledge and insights with our readers.\n\n"
            "## Features:\n"
            "- Role-based access control\n"
            "- Moderated comments\n"
            "- Relational database backend\n\n"
            "Stay tuned for more updates!"
        ),
        "excerpt": "Welcome to our new blogging platform built with modern technologies",
        "author": "author@blog.com",
        "category": "announcements",
        "tags": ["welcome", "introduction", "blogging"],
    },
    {
        "title": "The Future of Web Development",
        "content": (
            "Web development continues to evolve at a rapid pace. In this post, we'll "
            "explore the latest trends and technologies shaping the future of web "
            "development.\n\n"
            "### Key Trends:\n"
            "1. **Serverless Architecture**\n"
            "2. **JAMstack**\n"
            "3. **WebAssembly**\n"
            "4. **AI Integration**\n\n"
            "These technologies are making web applications faster, more secure, and "
            "more scalable than ever before."
        ),
        "excerpt": "Exploring the latest trends and technologies in web development",
        "author": "admin@blog.com",
        "category": "web-development",
        "tags": ["web-development", "trends", "technology"],
    },
]

COMMENTS = [
    ("reader@blog.com", "Welcome to Our Blog",
     "Great first post! Looking forward to reading more content."),
    ("author@blog.com", "The Future of Web Development",
     "Very insightful article about web development trends."),
]


def _user(db: Session, email: str, password: str, name: str, role: Role) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, password_hash=hash_password(password), name=name, role=role)
        db.add(user)
        db.flush()
    return user


def seed(database: Database) -> None:
    db = database.session()
    try:
        with write_transaction(db):
            users = {email: _user(db, email, password, name, role)
                     for email, password, name, role in USERS}

            categories = {}
            for name in CATEGORIES:
                slug = slugify(name)
                category = db.query(Category).filter(Category.slug == slug).first()
                if not category:
                    category = Category(name=name, slug=slug)
                    db.add(category)
                    db.flush()
                categories[slug] = category

            posts = {}
            for entry in POSTS:
                post = db.query(Post).filter(Post.title == entry["title"]).first()
                if not post:
                    post = Post(title=entry["title"],
                                content=entry["content"],
                                excerpt=entry["excerpt"],
                                published=True,
                                author_id=users[entry["author"]].id,
                                category_id=categories[entry["category"]].id)
                    post.tags = entry["tags"]
                    db.add(post)
                    db.flush()
                posts[entry["title"]] = post

            for email, title, content in COMMENTS:
                author, post = users[email], posts[title]
                exists = (db.query(Comment)
                          .filter(Comment.author_id == author.id, Comment.post_id == post.id)
                          .first())
                if not exists:
                    db.add(Comment(content=content, approved=True,
                                   author_id=author.id, post_id=post.id))
    finally:
        db.close()

    print("Database seeded successfully!")
    for email, password, _, role in USERS:
        print(f"{role.value.title()} credentials: {email} / {password}")


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_password_hashing(settings.bcrypt_rounds)
    database = Database.from_settings(settings)
    database.create_all()
    try:
        seed(database)
    finally:
        database.dispose()
