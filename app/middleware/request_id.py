"""Request-ID middleware -- tags every HTTP request with an ``X-Request-ID``.

Pure ASGI (not ``BaseHTTPMiddleware``) so WebSocket build streams pass
through untouched.
"""

import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER = b"x-request-id"


class RequestIDMiddleware:
    """Reuse the client's ``X-Request-ID`` or mint a UUID-4.

    The id is stored on ``request.state.request_id`` for the exception
    handlers and echoed on the response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers", [])).get(HEADER, b"").decode()
        request_id = incoming or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((HEADER, request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
