from __future__ import annotations

import logging
from typing import Optional

from fastapi import WebSocket
from pydantic import TypeAdapter, ValidationError

from rendezvous.models.messages import (
    Answer,
    ApprovalResponse,
    Candidate,
    ClientMessage,
    CloseCode,
    Join,
    Leave,
    Offer,
    Pong,
    Register,
    Signal,
)
from rendezvous.service.admission import AdmissionProtocol
from rendezvous.service.cleanup import CleanupCoordinator
from rendezvous.service.connection import Connection
from rendezvous.service.credentials import JoinTokenIssuer, PasswordHasher
from rendezvous.service.liveness import LivenessSupervisor
from rendezvous.service.registry import ConnectionRegistry
from rendezvous.service.relay import RelayEngine
from rendezvous.service.rooms import RoomStore
from rendezvous.settings import AppSettings


class SignalingHub:
    """
    Owns all signaling state for the process and dispatches client frames.

    Responsible for:
    (1) admitting connections against the per-IP cap
    (2) enforcing message size and rate limits before decoding
    (3) routing decoded messages to admission, relay and cleanup
    """

    def __init__(self, settings: AppSettings):
        self.settings = settings
        self.log = logging.getLogger("rendezvous.hub")

        self.registry = ConnectionRegistry(
            max_connections_per_ip=settings.max_connections_per_ip,
            max_messages_per_second=settings.max_messages_per_second,
            max_message_bytes=settings.max_message_bytes,
        )
        self.rooms = RoomStore()
        self.passwords = PasswordHasher(settings.bcrypt_rounds)
        self.tokens = JoinTokenIssuer(settings.jwt_secret, settings.join_token_ttl_seconds)

        self.admission = AdmissionProtocol(self)
        self.relay = RelayEngine(self)
        self.cleanup = CleanupCoordinator(self)
        self.supervisor = LivenessSupervisor(self, settings.heartbeat_interval_seconds)

        self._adapter = TypeAdapter(ClientMessage)

    # --- connection lifecycle ---
    def open_connection(self, websocket: WebSocket, ip: str) -> Optional[Connection]:
        return self.registry.open(websocket, ip)

    async def close_connection(self, conn: Connection) -> None:
        await self.cleanup.on_disconnect(conn)

    async def shutdown(self) -> None:
        await self.supervisor.stop()
        for conn in self.registry:
            conn.cancel_approval_timer()
            await conn.close(CloseCode.GOING_AWAY, "server shutdown")
        self.registry.clear()
        self.rooms.clear()

    # --- Message dispatcher ---
    async def handle_incoming_message(self, conn: Connection, raw: str | bytes) -> None:
        if not self.registry.check_size(raw):
            self.log.warning("%s sent oversized message (%d bytes); closing", conn.id, len(raw))
            await self._terminate(conn, CloseCode.MESSAGE_TOO_BIG, "message too large")
            return
        if not self.registry.check_rate(conn):
            self.log.warning("%s exceeded message rate; closing", conn.id)
            await self._terminate(conn, CloseCode.POLICY_VIOLATION, "rate limit exceeded")
            return

        msg = self.decode(conn, raw)
        if msg is None:
            return

        match msg:
            case Join():
                await self.admission.handle_join(conn, msg)
            case ApprovalResponse():
                await self.admission.handle_approval_response(conn, msg)
            case Signal():
                await self.relay.relay_signal(conn, raw)
            case Leave():
                await self.cleanup.leave(conn)
            case Register():
                await self.relay.register(conn, msg)
            case Offer() | Answer() | Candidate():
                await self.relay.relay_direct(conn, msg, raw)
            case Pong():
                conn.alive = True

    def decode(self, conn: Connection, raw: str | bytes) -> Optional[ClientMessage]:
        try:
            return self._adapter.validate_json(raw)
        except ValidationError as e:
            if any(err["type"] == "union_tag_invalid" for err in e.errors()):
                self.log.info("ignoring unknown message type from %s", conn.id)
            else:
                self.log.debug("dropping malformed message from %s: %s", conn.id, e.error_count())
            return None

    async def _terminate(self, conn: Connection, code: int, reason: str) -> None:
        await conn.close(code, reason)
        await self.cleanup.on_disconnect(conn)
