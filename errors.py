"""Error taxonomy and the translation of failures into JSON responses."""
from contextlib import contextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from logging_config import get_logger

logger = get_logger("errors")


class AppError(Exception):
    """Base class for errors that map onto an HTTP status and a stable message"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_error = "Internal server error"

    def __init__(self, error: Optional[str] = None, details: Any = None,
                 extra: Optional[Dict[str, Any]] = None):
        self.error = error or self.default_error
        self.details = details
        self.extra = extra or {}
        super().__init__(self.error)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_error = "Validation failed"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_error = "Authentication required"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_error = "Not authorized"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_error = "Not found"


class ConflictError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_error = "Resource already exists"


class InternalError(AppError):
    pass


def _message(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc).lower()


def translate_storage_error(exc: SQLAlchemyError) -> AppError:
    """Map a storage failure onto the error taxonomy"""
    if isinstance(exc, IntegrityError):
        message = _message(exc)
        if "unique" in message or "duplicate" in message:
            return ConflictError("Resource already exists", details=str(exc.orig))
        if "foreign key" in message:
            return ConflictError(
                "Operation conflicts with existing references",
                details="There might be related data that cannot be changed automatically",
            )
        return ConflictError("Integrity constraint violated", details=str(exc.orig))
    if isinstance(exc, (NoResultFound, StaleDataError)):
        return NotFoundError("Not found", details=str(exc))
    return InternalError(details=str(exc))


@contextmanager
def write_transaction(db: Session):
    """Commit the session when the block succeeds, roll back otherwise.

    Storage failures leave the block as AppError subclasses.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc
    except Exception:
        db.rollback()
        raise


def error_body(exc: AppError, show_details: bool) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": exc.error}
    body.update(exc.extra)
    if show_details and exc.details is not None:
        body["details"] = exc.details
    return body


def register_exception_handlers(app: FastAPI, settings) -> None:
    """Install handlers that turn every failure into ``{"error": ...}``"""
    show_details = not settings.is_production

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if isinstance(exc, InternalError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.details)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc, show_details))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0]["msg"] if errors else None
        wrapped = ValidationError("Validation failed", details=first,
                                  extra={"fields": [_field_name(e) for e in errors]})
        return JSONResponse(status_code=wrapped.status_code,
                            content=error_body(wrapped, show_details))

    @app.exception_handler(SQLAlchemyError)
    async def handle_storage_error(request: Request, exc: SQLAlchemyError):
        wrapped = translate_storage_error(exc)
        if isinstance(wrapped, InternalError):
            logger.exception("Storage failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=wrapped.status_code,
                            content=error_body(wrapped, show_details))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        wrapped = InternalError("Something went wrong!", details=repr(exc))
        return JSONResponse(status_code=wrapped.status_code,
                            content=error_body(wrapped, show_details))


def _field_name(error: Dict[str, Any]) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    return ".".join(loc)
