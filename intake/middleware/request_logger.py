# intake/middleware/request_logger.py
import logging
import time
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("intake.http")


class RequestLoggerMiddleware:
    """
    Logs every HTTP request with:
      - method, path, status, duration
      - X-Req-Id (from client)

    Bodies, query strings and client addresses are never logged: form
    payloads carry personal data and identity documents.
    """
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        start = time.time()
        rid = request.headers.get("x-req-id", "-")
        path = request.url.path
        status = {"code": 500}

        async def send_wrapper(message: Message):
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        logger.info("[HTTP ►] rid=%s %s %s", rid, request.method, path)
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            dur_ms = (time.time() - start) * 1000
            logger.info("[HTTP ◄] rid=%s %s %s status=%d in %.1fms", rid, request.method, path, status["code"], dur_ms)
