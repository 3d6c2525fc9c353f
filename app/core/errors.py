"""
Error taxonomy and the JSON error envelope.

Every failure reaching a REST caller is rendered as::

    {"error": {"code": "...", "message": "...", "status": 400}}
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

log = structlog.get_logger()


class ChatError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """Rejected before any store write."""

    status_code = 400
    code = "VALIDATION_FAILED"


class NotFoundError(ChatError):
    status_code = 404
    code = "NOT_FOUND"


class PersistenceError(ChatError):
    """The store was unreachable or rejected the write."""

    status_code = 500
    code = "PERSISTENCE_FAILED"


def error_body(code: str, message: str, status: int) -> dict:
    return {"error": {"code": code, "message": message, "status": status}}


async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("api.request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code),
    )


async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.error("api.store_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=PersistenceError.status_code,
        content=error_body(PersistenceError.code, "Store operation failed", PersistenceError.status_code),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, _chat_error_handler)
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)
