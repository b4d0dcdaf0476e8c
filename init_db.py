"""Create every table of the blog schema on DATABASE_URL"""
from config import Settings
from database import Database


def init_db():
    database = Database.from_settings(Settings.from_env())
    print("Creating tables on the database...")
    database.create_all()
    database.dispose()
    print("Tables created successfully!")


if __name__ == "__main__":
    init_db()
