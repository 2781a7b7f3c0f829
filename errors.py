# errors.py
"""
Error taxonomy shared by services and routers.

Services raise these; routers let them propagate. ``register_error_handlers``
turns them into JSON responses ``{"error", "code", ...details}`` with the
mapped HTTP status.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)


class PrecastError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.message, "code": self.code}
        out.update(self.details)
        return out


class BadInput(PrecastError):
    code = "BAD_INPUT"
    status_code = 400


class Unauthorized(PrecastError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(PrecastError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(PrecastError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(PrecastError):
    code = "CONFLICT"
    status_code = 409


class InvariantViolation(PrecastError):
    code = "INVARIANT_VIOLATION"
    status_code = 500


class DependencyFailure(PrecastError):
    code = "DEPENDENCY_FAILURE"
    status_code = 500


class Timeout(DependencyFailure):
    code = "TIMEOUT"


class AuditFailure(PrecastError):
    """Mutation committed, audit or notification write did not. Never sent as an error response."""

    code = "AUDIT_FAILURE"
    status_code = 200


# Postgres SQLSTATE 57014 = query_canceled (statement_timeout / cancel)
_PG_QUERY_CANCELED = "57014"


def from_db_error(exc: DBAPIError) -> PrecastError:
    """Map a SQLAlchemy DBAPI error onto the taxonomy."""
    if isinstance(exc, IntegrityError):
        return Conflict("Duplicate or conflicting row", detail=str(exc.orig))
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode == _PG_QUERY_CANCELED:
        return Timeout("Query deadline exceeded")
    if isinstance(exc, OperationalError):
        return DependencyFailure("Database unavailable")
    return DependencyFailure("Database error")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PrecastError)
    async def _precast_error(request: Request, exc: PrecastError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.as_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        bad = BadInput("Invalid request", fields=jsonable_encoder(exc.errors()))
        return JSONResponse(status_code=bad.status_code, content=bad.as_dict())

    @app.exception_handler(DBAPIError)
    async def _db_error(request: Request, exc: DBAPIError):
        mapped = from_db_error(exc)
        if mapped.status_code >= 500:
            logger.exception("%s %s -> database failure", request.method, request.url.path)
        return JSONResponse(status_code=mapped.status_code, content=mapped.as_dict())
