"""Periodic sweep closing connections that went quiet without disconnecting.

Network drops do not always reach the server as a disconnect. Every
``interval`` seconds the reconciler takes each registry entry idle for longer
than ``timeout`` through the normal disconnect path (leave room, notify peers,
close the session) and then drops the transport.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from event_analytics.realtime.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        pipeline: IngestionPipeline,
        *,
        timeout_seconds: int | None = None,
        interval_seconds: int | None = None,
        disconnect: Callable[[str], Awaitable[None]] | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.pipeline = pipeline
        self.timeout = timedelta(
            seconds=timeout_seconds
            if timeout_seconds is not None
            else settings.TRACKING_INACTIVITY_TIMEOUT_SECONDS
        )
        self.interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.TRACKING_SWEEP_INTERVAL_SECONDS
        )
        self._disconnect = disconnect
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: datetime | None = None) -> int:
        """Run one pass; returns how many connections were closed."""
        cutoff = (now or self._clock()) - self.timeout
        registry = self.pipeline.registry
        closed = 0
        for candidate in registry.stale(cutoff):
            cid = candidate.connection_id
            # The connection may have sent a message or gone away since the
            # candidate list was taken.
            current = registry.get(cid)
            if current is None or current.last_activity >= cutoff:
                continue
            try:
                await self.pipeline.on_disconnect(cid)
                if self._disconnect is not None:
                    await self._disconnect(cid)
            except Exception:
                logger.exception("Failed to reconcile stale connection %s", cid)
                continue
            closed += 1
            logger.info("Closed idle connection %s", cid)
        return closed

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Reconciler sweep failed")

    def start(self) -> asyncio.Task:
        """Start the sweep loop on the running event loop (idempotent)."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self.run_forever())
            logger.info(
                "Reconciler started (interval=%ss, timeout=%s)",
                self.interval,
                self.timeout,
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
