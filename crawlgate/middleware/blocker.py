import inspect

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from crawlgate.blocker import Blocker
from crawlgate.core.fingerprint import RequestView

import structlog

logger = structlog.get_logger()


def request_view(request: Request) -> RequestView:
    """Starlette request → framework-neutral view (raw header order kept)."""
    headers = [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in request.headers.raw
    ]
    client = ""
    if request.client:
        client = request.client.host or ""
    return RequestView(
        method=request.method,
        path=request.url.path,
        headers=headers,
        client=client,
    )


class BotBlockerMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, blocker: Blocker):
        super().__init__(app)
        self.blocker = blocker

    async def dispatch(self, request: Request, call_next):
        view = request_view(request)
        decision = self.blocker.analyze(view)

        # Telemetry is fire-and-forget; the flush (if any) runs detached.
        self.blocker.record(view)

        if not decision.blocked:
            return await call_next(request)

        logger.info(
            "request_blocked",
            reason=decision.reason,
            confidence=decision.confidence,
            path=view.path,
        )

        if self.blocker.on_block is not None:
            response = self.blocker.on_block(request, decision)
            if inspect.isawaitable(response):
                response = await response
            return response

        return Response(status_code=403)
