"""
Telemetry client — buffered, best-effort fingerprint reporting.

  - push() appends and returns immediately; a full buffer schedules a flush
    on a detached task
  - flush() swaps the buffer out under the lock, then POSTs the batch once
  - Failed batches are dropped (at-most-once, no retry, no re-buffering)

Disabled mode: push() is a no-op and no timer runs.
"""

import asyncio
import concurrent.futures
import threading

import httpx
import structlog

from crawlgate.core.fingerprint import Fingerprint

logger = structlog.get_logger()


class TelemetryClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        max_buffer: int = 100,
        enabled: bool = True,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.max_buffer = max_buffer
        self.enabled = enabled
        self.timeout = timeout
        self._transport = transport
        self._lock = threading.Lock()
        self._buffer: list[Fingerprint] = []
        # Strong refs so detached flushes aren't garbage-collected mid-flight.
        self._inflight: set[asyncio.Task] = set()
        # Flushes handed to the loop from worker threads.
        self._threaded: set[concurrent.futures.Future] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Loop that receives flushes triggered from worker threads."""
        self._loop = loop

    def push(self, fp: Fingerprint) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._buffer.append(fp)
            should_flush = len(self._buffer) >= self.max_buffer

        if should_flush:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called off-loop (threadpool endpoint); hand it to the owner's loop.
            if self._loop is not None and not self._loop.is_closed():
                future = asyncio.run_coroutine_threadsafe(self.flush(), self._loop)
                with self._lock:
                    self._threaded.add(future)
                future.add_done_callback(self._forget_threaded)
            return

        task = loop.create_task(self.flush())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _forget_threaded(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._threaded.discard(future)

    async def drain(self) -> None:
        """Wait for any detached flushes still in flight."""
        with self._lock:
            threaded = list(self._threaded)
        pending = list(self._inflight) + [asyncio.wrap_future(f) for f in threaded]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def flush(self) -> int:
        """Send everything buffered as one batch. Returns the batch size."""
        with self._lock:
            if not self._buffer:
                return 0
            batch, self._buffer = self._buffer, []

        try:
            payload = {"events": [fp.model_dump(by_alias=True) for fp in batch]}
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.api_url}/v1/fingerprints",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except (httpx.HTTPError, TypeError, ValueError) as e:
            logger.warning("telemetry_flush_failed", dropped=len(batch), error=str(e))
            return 0

        if resp.is_error:
            logger.warning("telemetry_flush_failed", dropped=len(batch), status=resp.status_code)
            return 0

        logger.debug("telemetry_flushed", events=len(batch))
        return len(batch)
