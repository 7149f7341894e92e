"""Room state and the process-wide room store.

A room is a named rendezvous point for two peers. Membership holds
connection ids only; the connection records themselves live in the
ConnectionRegistry. Every mutation of a room's admission state runs under
that room's guard so that a join awaiting password verification cannot
interleave with a second join to the same room id.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterator, Optional, Set


class Room:
    def __init__(self,
                 room_id: str,
                 host_id: str,
                 *,
                 password_hash: Optional[bytes] = None,
                 manual_approval: bool = False,
                 created_at: Optional[float] = None) -> None:
        self.id = room_id
        self._host_id = host_id
        self.members: Set[str] = {host_id}
        self.password_hash = password_hash
        self.manual_approval = manual_approval
        self.created_at = time.time() if created_at is None else created_at
        self.token_id: Optional[str] = None
        self.token_created_at: Optional[float] = None

    @property
    def host_id(self) -> str:
        return self._host_id

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_full(self, capacity: int) -> bool:
        return len(self.members) >= capacity

    def add(self, conn_id: str) -> None:
        if conn_id in self.members:
            raise ValueError(f"connection {conn_id} already in room {self.id}")
        self.members.add(conn_id)

    def remove(self, conn_id: str) -> None:
        if conn_id not in self.members:
            raise ValueError(f"connection {conn_id} not in room {self.id}")
        self.members.discard(conn_id)

    # ---- join token ----
    def set_token(self, token_id: str, now: float) -> None:
        self.token_id = token_id
        self.token_created_at = now

    def token_expired(self, now: float, ttl_seconds: float) -> bool:
        if self.token_created_at is None:
            return True
        return now - self.token_created_at > ttl_seconds

    def consume_token(self, token_id: str, now: float, ttl_seconds: float) -> bool:
        """Single-use check: True at most once per issued token."""
        if self.token_id is None or token_id != self.token_id:
            return False
        if self.token_expired(now, ttl_seconds):
            return False
        self.token_id = None
        return True

    def __repr__(self) -> str:
        return f"Room(id={self.id!r}, host={self._host_id!r}, members={len(self.members)})"


class RoomStore:
    """Maps room ids to Room state for the lifetime of the process."""

    def __init__(self) -> None:
        self.log = logging.getLogger("rendezvous.rooms")
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def guard(self, room_id: str) -> AsyncIterator[None]:
        """Serialize admission steps for one room id."""
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[room_id] - 1
            if users:
                self._lock_users[room_id] = users
            else:
                del self._lock_users[room_id]
                del self._locks[room_id]

    def create(self, room_id: str, host_id: str, **kwargs) -> Room:
        if room_id in self._rooms:
            raise ValueError(f"room {room_id} already exists")
        room = Room(room_id, host_id, **kwargs)
        self._rooms[room_id] = room
        self.log.info("room %s created by %s", room_id, host_id)
        return room

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def delete(self, room_id: str) -> Optional[Room]:
        room = self._rooms.pop(room_id, None)
        if room is not None:
            self.log.info("room %s deleted", room_id)
        return room

    def sweep_expired(self, now: float, ttl_seconds: float) -> list[str]:
        """Expire stale join tokens and drop abandoned empty rooms."""
        removed: list[str] = []
        for room in list(self._rooms.values()):
            if not room.token_expired(now, ttl_seconds):
                continue
            if room.token_id is not None:
                self.log.debug("join token for room %s expired", room.id)
                room.token_id = None
            if not room.members and room.id not in self._locks:
                self.delete(room.id)
                removed.append(room.id)
        return removed

    def clear(self) -> None:
        self._rooms.clear()

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
