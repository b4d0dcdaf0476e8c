"""Create the first ADMIN account (admins cannot self-register)"""
import os

from config import Settings
from database import Database
from errors import AppError
from models import Role
from repositories import UserRepository
from security import configure_password_hashing


def create_admin(database: Database,
                 email: str,
                 password: str,
                 name: str = "Admin User"):
    """Create an admin, or report the existing account with that email"""
    db = database.session()
    try:
        users = UserRepository(db)
        existing = users.get_by_email(email)
        if existing:
            print(f"User '{email}' already exists with role {existing.role.value}")
            return existing

        admin = users.create(email, password, name, Role.ADMIN.value)
        print(f"Admin created successfully: {admin.name} / {admin.email}")
        return admin
    finally:
        db.close()


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_password_hashing(settings.bcrypt_rounds)
    database = Database.from_settings(settings)
    database.create_all()
    try:
        create_admin(database,
                     email=os.getenv("ADMIN_EMAIL", "admin@blog.com"),
                     password=os.getenv("ADMIN_PASSWORD", "admin123"),
                     name=os.getenv("ADMIN_NAME", "Admin User"))
    except AppError as exc:
        raise SystemExit(f"Could not create admin: {exc.error}")
    finally:
        database.dispose()
