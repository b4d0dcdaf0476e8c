"""Database handle: engine, session factory and declarative base."""
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


class Database:
    """Owns one engine and its session factory.

    Built once by the application factory (or a script) and disposed when
    the owner shuts down. Repositories only ever see the sessions it hands out.
    """

    def __init__(self, url: str, echo: bool = False,
                 statement_timeout_ms: Optional[int] = None):
        self.url = url
        engine_kwargs = {}

        if _is_sqlite(url):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(url):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
            if statement_timeout_ms and url.startswith("postgresql"):
                engine_kwargs["connect_args"] = {
                    "options": f"-c statement_timeout={int(statement_timeout_ms)}"
                }

        self.engine: Engine = create_engine(url, echo=echo, **engine_kwargs)

        if _is_sqlite(url):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(settings.require_database_url(),
                   echo=settings.sql_echo,
                   statement_timeout_ms=settings.db_statement_timeout_ms)

    def create_all(self) -> None:
        """Create every table registered on the declarative base"""
        import models  # noqa: F401  registers the mapped classes

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def sessions(self) -> Iterator[Session]:
        """Yield a session and always close it afterwards"""
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def now(self):
        """Ask the database for its current time (used by the health check)"""
        with self.engine.connect() as connection:
            return connection.execute(text("SELECT CURRENT_TIMESTAMP")).scalar()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
