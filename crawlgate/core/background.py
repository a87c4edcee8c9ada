"""Periodic background loops tied to a shared shutdown signal."""

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


async def periodic(
    name: str,
    interval: float,
    stop: asyncio.Event,
    tick: Callable[[], Awaitable[object]],
    run_immediately: bool = False,
) -> None:
    """Run `tick` every `interval` seconds until `stop` is set.

    Waiting on the event (not sleeping) lets shutdown end the loop at once.
    A failing tick is logged and the loop keeps going.
    """
    if run_immediately:
        await _safe_tick(name, tick)

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            await _safe_tick(name, tick)
        else:
            break

    logger.debug("background_loop_stopped", loop=name)


async def _safe_tick(name: str, tick: Callable[[], Awaitable[object]]) -> None:
    try:
        await tick()
    except Exception:
        logger.exception("background_tick_failed", loop=name)
