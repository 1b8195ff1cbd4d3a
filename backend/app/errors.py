from __future__ import annotations
from typing import Any, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base for errors that map onto a stable machine-readable code.

    The front end keys its localized messages off ``code``; ``message`` is a
    human-readable fallback and ``details`` carries structured context.
    """

    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"

    # reasons surfaced to clients alongside the code
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    BAD_CREDENTIALS = "BAD_CREDENTIALS"
    USER_INACTIVE = "USER_INACTIVE"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    def __init__(self, message: str, reason: str, details: Optional[Any] = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class AuthorizationError(AppError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str = "Resource", details: Optional[Any] = None):
        super().__init__(f"{resource} not found", details)


class DuplicateResourceError(AppError):
    status_code = 409
    code = "DUPLICATE_RESOURCE"


class ResourceInUseError(AppError):
    status_code = 409
    code = "RESOURCE_IN_USE"


class FileUploadError(AppError):
    status_code = 400
    code = "FILE_UPLOAD_ERROR"


class DatabaseError(AppError):
    status_code = 500
    code = "DATABASE_ERROR"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        fields = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Request validation failed", "code": ValidationError.code, "details": fields},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            body = {"error": f"Endpoint {request.method} {request.url.path} not found", "code": NotFoundError.code}
        else:
            body = {"error": str(exc.detail), "code": "HTTP_ERROR"}
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(SQLAlchemyError)
    async def _db_error(request: Request, exc: SQLAlchemyError):
        # internal detail goes to the log only
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Database operation failed", "code": DatabaseError.code},
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "INTERNAL_SERVER_ERROR"},
        )
