import logging
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

CORRELATION_ID_HEADER = "x-correlation-id"

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="no-context")
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_correlation_id() -> str:
    return _correlation_id.get()


def get_user_id() -> Optional[str]:
    return _user_id.get()


def set_user_id(user_id: Optional[str]):
    _user_id.set(user_id)


class RequestContextFilter(logging.Filter):
    """Adds correlation_id and user_id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.user_id = get_user_id() or "-"
        return True


class RequestContextMiddleware:
    """Binds a correlation id to the request and echoes it in the response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        incoming = headers.get(CORRELATION_ID_HEADER.encode())
        correlation_id = incoming.decode("latin-1") if incoming else str(uuid.uuid4())

        correlation_token = _correlation_id.set(correlation_id)
        user_token = _user_id.set(None)

        async def send_with_header(message: Message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].append(
                    (CORRELATION_ID_HEADER.encode(), correlation_id.encode("latin-1"))
                )
            await send(message)

        try:
            await self.app(scope, receive, send_with_header)
        finally:
            _correlation_id.reset(correlation_token)
            _user_id.reset(user_token)
