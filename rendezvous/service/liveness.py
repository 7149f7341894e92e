from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from typing import TYPE_CHECKING, Optional

from rendezvous.models.messages import CloseCode, Ping

if TYPE_CHECKING:
    from rendezvous.service.hub import SignalingHub


class LivenessSupervisor:
    """Periodic heartbeat probe, stale-connection eviction and room sweep.

    A connection that has not answered the previous ping by the next tick is
    terminated and cleaned up like any other disconnect.
    """

    def __init__(self, hub: SignalingHub, interval: float):
        self.hub = hub
        self.interval = interval
        self.log = logging.getLogger("rendezvous.liveness")
        self._task: Optional[asyncio.Task] = None

    # --- lifecycle ---
    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                self.log.exception("liveness tick failed")

    # --- API ---
    async def tick(self, now: Optional[float] = None) -> None:
        for conn in self.hub.registry:
            if conn.cleaned_up:
                continue
            if not conn.alive:
                self.log.info("%s missed heartbeat; terminating", conn.id)
                await conn.close(CloseCode.GOING_AWAY, "heartbeat timeout")
                await self.hub.cleanup.on_disconnect(conn)
                continue
            conn.alive = False
            await conn.send_message(Ping())

        now = time.time() if now is None else now
        removed = self.hub.rooms.sweep_expired(now, self.hub.tokens.ttl_seconds)
        if removed:
            self.log.info("swept %d abandoned rooms", len(removed))
