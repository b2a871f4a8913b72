from __future__ import annotations

from typing import Generator

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session as DbSession

from ..db.database import get_database
from ..exceptions import RateLimitedError, TrackedError


def get_db_session() -> Generator[DbSession, None, None]:
    with get_database().session_scope() as session:
        yield session


def error_response(exc: TrackedError, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def rate_limited_response(exc: RateLimitedError) -> JSONResponse:
    response = error_response(exc, 429)
    response.headers["Retry-After"] = str(exc.retry_after)
    return response


__all__ = ["get_db_session", "error_response", "rate_limited_response"]
