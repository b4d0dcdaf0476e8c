"""Application settings loaded from the environment (and a local .env file)."""
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Runtime configuration for the API and its scripts.

    Every field is read from the environment variable of the same name in
    upper case (``DATABASE_URL``, ``BCRYPT_ROUNDS``, ...). Keyword arguments
    take precedence over the environment.
    """
    database_url: Optional[str] = None
    secret_key: str = "dev-secret-change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 7 * 24 * 60
    bcrypt_rounds: int = 12
    environment: str = "development"
    log_level: str = "INFO"
    log_file: Optional[str] = "app.log"
    upload_dir: str = "uploads"
    upload_url_prefix: str = "/uploads"
    max_page_limit: int = 100
    db_statement_timeout_ms: int = 5000
    sql_echo: bool = False

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables"""
        return cls()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def require_database_url(self) -> str:
        """Return DATABASE_URL or fail loudly when it is missing"""
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable not set!")
        return self.database_url
