"""Error responses for the Cachewire HTTP API.

Every error body uses one shape:

    {"messages": [{"code", "messageType", "text", "timestamp"}]}

Domain exceptions from cachewire.errors are mapped to status codes by the
handlers registered in create_app. Storage errors never reach here: the
cache and metadata layers degrade instead of raising.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cachewire.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Type of message in error response."""

    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    EXCEPTION = "Exception"


class Message(BaseModel):
    """One error message."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    code: str
    message_type: MessageType = Field(alias="messageType")
    text: str
    timestamp: str | None = None


class Result(BaseModel):
    """Error result wrapper."""

    model_config = {"extra": "forbid"}

    messages: list[Message]


def error_response(
    status_code: int,
    text: str,
    code: str = "BadRequest",
    message_type: MessageType = MessageType.ERROR,
) -> JSONResponse:
    """Build a JSON error response with a single message."""
    result = Result(
        messages=[
            Message(
                code=code,
                messageType=message_type,
                text=text,
                timestamp=datetime.now(UTC).isoformat(),
            )
        ]
    )
    return JSONResponse(status_code=status_code, content=result.model_dump(by_alias=True))


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return error_response(404, str(exc), code="NotFound")


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return error_response(400, str(exc), code="BadRequest")


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures in the common error shape."""
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return error_response(400, details or "Invalid request", code="BadRequest")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for unexpected errors."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        500,
        "An unexpected error occurred",
        code="InternalServerError",
        message_type=MessageType.EXCEPTION,
    )
