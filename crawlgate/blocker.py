"""
Blocker — owns the detection pipeline and its background tasks.

One instance = one RuleManager, RateLimiter, TelemetryClient and one shutdown
signal. Nothing is shared between instances.

    blocker = Blocker()
    await blocker.start()   # rule sync, telemetry flush, limiter cleanup
    ...
    await blocker.close()   # stop all loops, final telemetry flush
"""

import asyncio
from typing import Awaitable, Callable, Union

import httpx
import structlog
from starlette.requests import Request
from starlette.responses import Response

from crawlgate.config import Settings, get_settings
from crawlgate.core.background import periodic
from crawlgate.core.engine import Decision, DetectionEngine
from crawlgate.core.fingerprint import RequestView, build_fingerprint
from crawlgate.core.rate_limit import RateLimiter
from crawlgate.core.rules import RuleManager
from crawlgate.core.telemetry import TelemetryClient

logger = structlog.get_logger()

BlockHandler = Callable[[Request, Decision], Union[Response, Awaitable[Response]]]


class Blocker:
    def __init__(
        self,
        settings: Settings | None = None,
        on_block: BlockHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.on_block = on_block

        s = self.settings
        self.rules = RuleManager(
            s.base_url, s.api_key, timeout=s.http_timeout_seconds, transport=transport,
        )
        self.limiter = RateLimiter(s.rate_limit, s.rate_limit_window_seconds)
        self.telemetry = TelemetryClient(
            s.base_url,
            s.api_key,
            max_buffer=s.buffer_size,
            enabled=s.telemetry_enabled,
            timeout=s.http_timeout_seconds,
            transport=transport,
        )
        self.engine = DetectionEngine(self.rules, self.limiter)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._closed = False

    @property
    def running(self) -> bool:
        return self._started and not self._closed

    async def start(self) -> None:
        """Spawn the background loops on the running event loop."""
        if self._started:
            return
        self._started = True
        s = self.settings

        self.telemetry.bind_loop(asyncio.get_running_loop())
        self._tasks.append(asyncio.create_task(periodic(
            "rules_sync", s.sync_interval_seconds, self._stop,
            self.rules.sync_once, run_immediately=True,
        )))
        if self.telemetry.enabled:
            self._tasks.append(asyncio.create_task(periodic(
                "telemetry_flush", s.flush_interval_seconds, self._stop, self.telemetry.flush,
            )))
        self._tasks.append(asyncio.create_task(periodic(
            "ratelimit_cleanup", s.rate_limit_cleanup_seconds, self._stop, self.limiter.run_cleanup,
        )))

    async def close(self) -> None:
        """Signal shutdown, join every loop, then flush telemetry one last time."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
        await self.telemetry.drain()
        await self.telemetry.flush()

    async def __aenter__(self) -> "Blocker":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # --- Per request ---

    def analyze(self, view: RequestView) -> Decision:
        return self.engine.analyze(view)

    def record(self, view: RequestView) -> None:
        """Queue a fingerprint for telemetry. Never blocks."""
        if not self.telemetry.enabled:
            return
        self.telemetry.push(build_fingerprint(view))
