from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from rendezvous.models.messages import (
    ApprovalRequest,
    ApprovalResponse,
    Approved,
    CloseCode,
    Error,
    ErrorCode,
    Join,
    Joined,
    Rejected,
    RoomCreated,
    StartNegotiation,
)
from rendezvous.service.connection import Connection
from rendezvous.service.rooms import Room

if TYPE_CHECKING:
    from rendezvous.service.hub import SignalingHub

# seated members needed before the host is told to start negotiating
NEGOTIATION_PEERS = 2


class AdmissionProtocol:
    """Decides whether a joining connection is seated, held pending, or rejected.

    Outcomes for a join naming a room id:
    - unknown room: the room is created and the joiner becomes its host
    - room at capacity (seated + pending): ``room_full`` error
    - valid unexpired join token: token consumed, joiner seated
    - password set and not proven: ``invalid_password`` error
    - manual approval on: joiner queued as pending, host asked to approve
    - otherwise: joiner seated

    All steps for one room id run under ``RoomStore.guard``.
    """

    def __init__(self, hub: SignalingHub) -> None:
        self.hub = hub
        self.log = logging.getLogger("rendezvous.admission")

    @property
    def capacity(self) -> int:
        return self.hub.settings.max_room_members

    # ---- join ----
    async def handle_join(self, conn: Connection, msg: Join) -> None:
        if conn.room_id is not None:
            await conn.send_message(Error(
                code=ErrorCode.ALREADY_IN_ROOM,
                message=f"already in room {conn.room_id}",
            ))
            return

        async with self.hub.rooms.guard(msg.room):
            if not self._active(conn) or conn.room_id is not None:
                return
            room = self.hub.rooms.get(msg.room)
            if room is None:
                await self._create_room(conn, msg)
                return

            if room.is_full(self.capacity):
                self.log.info("join to %s by %s refused: room full", room.id, conn.id)
                await conn.send_message(Error(code=ErrorCode.ROOM_FULL, message="room is full"))
                return

            if msg.token and self._consume_token(room, msg.token):
                self.log.info("%s joined %s with join token", conn.id, room.id)
                await self._seat(room, conn)
                return

            if room.has_password:
                ok = bool(msg.password) and await self.hub.passwords.verify_async(
                    msg.password, room.password_hash)
                if not self._active(conn):
                    return
                if not ok:
                    self.log.info("join to %s by %s refused: bad password", room.id, conn.id)
                    await conn.send_message(Error(
                        code=ErrorCode.INVALID_PASSWORD,
                        message="invalid room password",
                    ))
                    return

            if room.manual_approval:
                await self._queue_pending(room, conn, msg.alias)
                return

            await self._seat(room, conn)

    async def _create_room(self, conn: Connection, msg: Join) -> None:
        password_hash: Optional[bytes] = None
        if msg.password:
            password_hash = await self.hub.passwords.hash_async(msg.password)
            if not self._active(conn):
                return

        room = self.hub.rooms.create(
            msg.room,
            conn.id,
            password_hash=password_hash,
            manual_approval=msg.manual_approval,
        )
        token, jti = self.hub.tokens.issue(room.id)
        room.set_token(jti, time.time())

        conn.room_id = room.id
        conn.is_host = True
        conn.pending = False
        conn.alias = msg.alias
        await conn.send_message(RoomCreated(room=room.id, token=token, peer_id=conn.id))

    def _consume_token(self, room: Room, token: str) -> bool:
        jti = self.hub.tokens.read(token, room.id)
        if jti is None:
            return False
        return room.consume_token(jti, time.time(), self.hub.tokens.ttl_seconds)

    async def _queue_pending(self, room: Room, conn: Connection, alias: Optional[str]) -> None:
        room.add(conn.id)
        conn.room_id = room.id
        conn.pending = True
        conn.alias = alias
        self.log.info("%s waiting for host approval in %s", conn.id, room.id)

        host = self.hub.registry.get(room.host_id)
        if host is not None:
            await host.send_message(ApprovalRequest(room=room.id, peer_id=conn.id, alias=alias))

        timeout = self.hub.settings.approval_timeout_seconds
        if timeout > 0:
            conn.approval_timer = asyncio.create_task(
                self._expire_pending(room.id, conn.id, timeout))

    async def _seat(self, room: Room, conn: Connection) -> None:
        if conn.id not in room.members:
            room.add(conn.id)
        conn.room_id = room.id
        conn.pending = False
        conn.cancel_approval_timer()
        await conn.send_message(Joined(room=room.id, peer_id=conn.id))

        if self.seated_count(room) == NEGOTIATION_PEERS:
            host = self.hub.registry.get(room.host_id)
            if host is not None:
                self.log.info("room %s ready; starting negotiation", room.id)
                await host.send_message(StartNegotiation(room=room.id))

    def seated_count(self, room: Room) -> int:
        count = 0
        for member_id in room.members:
            member = self.hub.registry.get(member_id)
            if member is not None and not member.pending:
                count += 1
        return count

    # ---- host approval ----
    async def handle_approval_response(self, conn: Connection, msg: ApprovalResponse) -> None:
        room = self.hub.rooms.get(conn.room_id)
        if room is None or room.host_id != conn.id:
            self.log.debug("approval response from non-host %s ignored", conn.id)
            return

        async with self.hub.rooms.guard(room.id):
            if self.hub.rooms.get(room.id) is not room:
                return
            peer = self.hub.registry.get(msg.peer_id)
            if peer is None or peer.room_id != room.id or not peer.pending:
                self.log.debug("approval response for unknown pending peer %s", msg.peer_id)
                return
            if msg.approved:
                self.log.info("host approved %s in %s", peer.id, room.id)
                peer.pending = False
                peer.cancel_approval_timer()
                await peer.send_message(Approved(room=room.id))
                await self._seat(room, peer)
            else:
                self.log.info("host rejected %s in %s", peer.id, room.id)
                await self.reject(room, peer, "rejected_by_host")

    async def reject(self, room: Room, peer: Connection, reason: str) -> None:
        room.remove(peer.id)
        peer.leave_room()
        await peer.send_message(Rejected(room=room.id, reason=reason))
        await peer.close(CloseCode.NORMAL, reason)
        await self.hub.cleanup.on_disconnect(peer)

    async def _expire_pending(self, room_id: str, conn_id: str, timeout: float) -> None:
        await asyncio.sleep(timeout)
        async with self.hub.rooms.guard(room_id):
            room = self.hub.rooms.get(room_id)
            peer = self.hub.registry.get(conn_id)
            if room is None or peer is None or peer.room_id != room_id or not peer.pending:
                return
            peer.approval_timer = None
            self.log.info("approval for %s in %s timed out", conn_id, room_id)
            await self.reject(room, peer, "approval_timeout")

    @staticmethod
    def _active(conn: Connection) -> bool:
        return not conn.closed and not conn.cleaned_up
