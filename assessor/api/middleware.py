"""FastAPI middleware: Request ID tracking (pure ASGI)."""

from __future__ import annotations

import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = b"x-request-id"


def new_request_id() -> str:
    """Short correlation id."""
    return str(uuid.uuid4())[:8]


class RequestIdMiddleware:
    """Inject a request ID into every HTTP request/response.

    If the client sends ``X-Request-ID``, it is reused; otherwise a short
    UUID is generated. The ID is stored on ``request.state.request_id``
    and returned in the response headers.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(REQUEST_ID_HEADER, b"").decode().strip() or new_request_id()

        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = [
                    (k, v) for k, v in message.get("headers", []) if k.lower() != REQUEST_ID_HEADER
                ]
                response_headers.append((REQUEST_ID_HEADER, request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)
