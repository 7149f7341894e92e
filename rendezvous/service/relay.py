from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rendezvous.models.messages import Answer, Candidate, Offer, Register, Registered
from rendezvous.service.connection import Connection

if TYPE_CHECKING:
    from rendezvous.service.hub import SignalingHub


class RelayEngine:
    """Forwards signaling payloads between peers.

    Payloads are forwarded as the raw frame that arrived, never re-encoded.
    """

    def __init__(self, hub: SignalingHub) -> None:
        self.hub = hub
        self.log = logging.getLogger("rendezvous.relay")

    # ---- room-sync mode ----
    async def relay_signal(self, conn: Connection, raw: str | bytes) -> None:
        room = self.hub.rooms.get(conn.room_id)
        if room is None:
            self.log.debug("signal from %s outside any room dropped", conn.id)
            return
        if conn.pending:
            self.log.debug("signal from pending %s in %s dropped", conn.id, room.id)
            return

        for member_id in list(room.members):
            if member_id == conn.id:
                continue
            peer = self.hub.registry.get(member_id)
            if peer is None or peer.pending:
                continue
            await peer.send_raw(raw)
            self.log.debug("relayed signal %s -> %s in %s (%d bytes)",
                           conn.id, peer.id, room.id, len(raw))

    # ---- direct-peer-messaging mode ----
    async def register(self, conn: Connection, msg: Register) -> None:
        self.hub.registry.register_peer(msg.peer_id, conn)
        self.log.info("%s registered as peer %s", conn.id, msg.peer_id)
        await conn.send_message(Registered(peer_id=msg.peer_id))

    async def relay_direct(self, conn: Connection, msg: Offer | Answer | Candidate, raw: str | bytes) -> None:
        target = self.hub.registry.lookup_peer(msg.target_peer_id)
        if target is None:
            self.log.warning("no peer registered as %s; dropping %s from %s",
                             msg.target_peer_id, msg.type, conn.id)
            return
        await target.send_raw(raw)
        self.log.debug("relayed %s %s -> %s", msg.type, conn.id, target.id)
