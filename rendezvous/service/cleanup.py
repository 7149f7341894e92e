from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rendezvous.models.messages import CloseCode, PeerLeft, RoomClosed
from rendezvous.service.connection import Connection
from rendezvous.service.rooms import Room

if TYPE_CHECKING:
    from rendezvous.service.hub import SignalingHub


class CleanupCoordinator:
    """Detaches departing connections from their room and the registry."""

    def __init__(self, hub: SignalingHub) -> None:
        self.hub = hub
        self.log = logging.getLogger("rendezvous.cleanup")

    async def on_disconnect(self, conn: Connection) -> None:
        """Runs once per connection, whatever ended it."""
        if conn.cleaned_up:
            return
        conn.cleaned_up = True
        conn.cancel_approval_timer()
        if conn.room_id is not None:
            await self.leave(conn, reason="host_disconnected")
        self.hub.registry.release(conn)
        self.log.debug("cleaned up %s", conn.id)

    async def leave(self, conn: Connection, reason: str = "host_left") -> None:
        room_id = conn.room_id
        if room_id is None:
            return
        async with self.hub.rooms.guard(room_id):
            if conn.room_id != room_id:
                return
            room = self.hub.rooms.get(room_id)
            if room is None or conn.id not in room.members:
                conn.leave_room()
                return
            if room.host_id == conn.id:
                await self._teardown(room, reason)
            else:
                await self._remove_member(room, conn)

    async def _remove_member(self, room: Room, conn: Connection) -> None:
        room.remove(conn.id)
        was_pending = conn.pending
        conn.leave_room()
        self.log.info("%s left room %s", conn.id, room.id)

        if not room.members:
            self.hub.rooms.delete(room.id)
            return
        if was_pending:
            return
        for member_id in list(room.members):
            peer = self.hub.registry.get(member_id)
            if peer is not None:
                await peer.send_message(PeerLeft(room=room.id, peer_id=conn.id))

    async def _teardown(self, room: Room, reason: str) -> None:
        self.hub.rooms.delete(room.id)
        self.log.info("host of %s left; closing room (%d members)", room.id, len(room.members))

        host = self.hub.registry.get(room.host_id)
        if host is not None:
            host.leave_room()

        for member_id in list(room.members):
            if member_id == room.host_id:
                continue
            peer = self.hub.registry.get(member_id)
            if peer is None:
                continue
            peer.leave_room()
            await peer.send_message(RoomClosed(room=room.id, reason=reason))
            await peer.close(CloseCode.NORMAL, "room closed")
            await self.on_disconnect(peer)
        room.members.clear()
