"""FastAPI dependencies: database session, settings and the requesting actor."""
from typing import Annotated, Iterator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

import models
from config import Settings
from errors import AuthenticationError
from logging_config import get_logger
from policy import Actor, actor_for
from security import decode_access_token

logger = get_logger("auth")

COOKIE_NAME = "access_token"

optional_bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    """Dependency function that provides a database session"""
    yield from request.app.state.database.sessions()


db_dependency = Annotated[Session, Depends(get_db)]
settings_dependency = Annotated[Settings, Depends(get_settings)]


def _token_from(request: Request,
                credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(COOKIE_NAME)


def _load_user(db: Session, settings: Settings, token: str) -> models.User:
    user_id = decode_access_token(token, settings)
    if user_id is None:
        raise AuthenticationError("Invalid token")
    user = db.get(models.User, user_id)
    if not user:
        raise AuthenticationError("User not found")
    return user


def get_current_user(request: Request,
                     db: db_dependency,
                     settings: settings_dependency,
                     credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
                     ) -> models.User:
    """Retrieve the authenticated user from the bearer token (or the session cookie)"""
    token = _token_from(request, credentials)
    if not token:
        raise AuthenticationError("Access token required")
    return _load_user(db, settings, token)


def get_optional_user(request: Request,
                      db: db_dependency,
                      settings: settings_dependency,
                      credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
                      ) -> Optional[models.User]:
    """Like get_current_user, but anonymous requests resolve to None.

    An invalid or expired token (or one naming a deleted user) is treated as
    no token, so a stale cookie never locks a client out of public reads.
    """
    token = _token_from(request, credentials)
    if not token:
        return None
    try:
        return _load_user(db, settings, token)
    except AuthenticationError as exc:
        logger.debug("Treating request as anonymous: %s", exc.error)
        return None


def get_actor(user: models.User = Depends(get_current_user)) -> Actor:
    return actor_for(user)


def get_optional_actor(user: Optional[models.User] = Depends(get_optional_user)) -> Actor:
    return actor_for(user)


current_user_dependency = Annotated[models.User, Depends(get_current_user)]
actor_dependency = Annotated[Actor, Depends(get_actor)]
optional_actor_dependency = Annotated[Actor, Depends(get_optional_actor)]
