from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from rendezvous.models.camel_case import CamelCase

log = logging.getLogger("rendezvous.connection")


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_urlsafe(12)}"


class Connection:
    """Per-socket record owned by the ConnectionRegistry.

    Rooms reference connections by id only. The flags below are the
    connection's admission state inside its (at most one) room.
    """

    def __init__(self, websocket: WebSocket, ip: str) -> None:
        self.id = new_id("c")
        self.websocket = websocket
        self.ip = ip
        self.alive = True
        self.room_id: Optional[str] = None
        self.is_host = False
        self.pending = False
        self.alias: Optional[str] = None
        self.peer_id: Optional[str] = None
        self.window_start = time.monotonic()
        self.window_count = 0
        self.approval_timer: Optional[asyncio.Task] = None
        self.closed = False
        self.cleaned_up = False

    @property
    def seated(self) -> bool:
        return self.room_id is not None and not self.pending

    @property
    def is_writable(self) -> bool:
        return (not self.closed
                and self.websocket.application_state == WebSocketState.CONNECTED
                and self.websocket.client_state == WebSocketState.CONNECTED)

    def leave_room(self) -> None:
        self.cancel_approval_timer()
        self.room_id = None
        self.is_host = False
        self.pending = False
        self.alias = None

    def cancel_approval_timer(self) -> None:
        timer = self.approval_timer
        self.approval_timer = None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def send_message(self, msg: CamelCase) -> None:
        payload = msg.dump()
        if not self.is_writable:
            log.debug("dropping %s for %s: socket not writable", payload.get("type"), self.id)
            return
        try:
            await self.websocket.send_json(payload)
        except (RuntimeError, WebSocketDisconnect) as e:
            log.debug("send to %s failed: %s", self.id, e)

    async def send_raw(self, raw: str | bytes) -> None:
        if not self.is_writable:
            return
        try:
            if isinstance(raw, bytes):
                await self.websocket.send_bytes(raw)
            else:
                await self.websocket.send_text(raw)
        except (RuntimeError, WebSocketDisconnect) as e:
            log.debug("relay to %s failed: %s", self.id, e)

    async def close(self, code: int, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except (RuntimeError, WebSocketDisconnect) as e:
            log.debug("close of %s failed: %s", self.id, e)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, ip={self.ip!r}, room={self.room_id!r})"
