import os
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("credservice")

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_store_engine(database_url: str) -> AsyncEngine:
    """
    Build the async engine for the credential store.

    SQLite URLs get a single static connection so an in-memory database is
    shared by every session (used by the test suite).
    """
    kwargs: Dict[str, Any] = {"echo": False, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_async_engine(database_url, **kwargs)


class EnvelopeResponse(JSONResponse):
    """
    Standard response envelope for all API endpoints.
    """
    def __init__(
        self,
        status_code: int = 200,
        message: str = "success",
        data: Any = None,
        error: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        content: Dict[str, Any] = {
            "status": status_code,
            "success": error is None and status_code < 400,
            "message": message,
            "timestamp": utcnow().isoformat(),
            "requestId": str(uuid.uuid4()),
        }
        if data is not None:
            content["data"] = data
        if error is not None:
            content["error"] = error
        super().__init__(content=content, status_code=status_code, **kwargs)


class BaseMicroservice:
    """
    Base class for services. Provides:
    - Structured event/error logging
    - Envelope responses
    """
    def __init__(self, service_name: str = "credservice"):
        self.service_name = service_name
        self.logger = logger

    def envelope(self, data: Any = None, message: str = "success", status_code: int = 200) -> EnvelopeResponse:
        """
        Return a successful response wrapped in the standard envelope.
        """
        return EnvelopeResponse(status_code=status_code, message=message, data=data)

    def error_envelope(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, str]] = None,
    ) -> EnvelopeResponse:
        error: Dict[str, Any] = {"code": code, "message": message}
        if details:
            error["details"] = details
        return EnvelopeResponse(status_code=status_code, message=message, error=error)

    def log_event(self, event: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        log_data = {
            "timestamp": utcnow().isoformat(),
            "service": self.service_name,
            "event": event,
            "data": details or {},
        }
        self.logger.info(f"EVENT: {json.dumps(log_data, default=str)}")
        return log_data

    def log_error(self, error: Exception, context: str = "") -> Dict[str, Any]:
        error_data = {
            "timestamp": utcnow().isoformat(),
            "service": self.service_name,
            "error": str(error),
            "error_type": error.__class__.__name__,
            "context": context or "unknown",
        }
        self.logger.error(f"ERROR: {json.dumps(error_data, default=str)}")
        return error_data
