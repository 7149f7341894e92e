from __future__ import annotations

import logging
import time
from typing import Dict, Iterator, Optional

from fastapi import WebSocket

from rendezvous.service.connection import Connection

RATE_WINDOW_SECONDS = 1.0


class ConnectionRegistry:
    """Live connections, per-IP connection counts and rate-limit windows.

    Also holds the direct-messaging mapping of caller-declared peer ids to
    connection ids.
    """

    def __init__(self,
                 max_connections_per_ip: int,
                 max_messages_per_second: int,
                 max_message_bytes: int):
        self.max_connections_per_ip = max_connections_per_ip
        self.max_messages_per_second = max_messages_per_second
        self.max_message_bytes = max_message_bytes
        self.log = logging.getLogger("rendezvous.registry")
        self._connections: Dict[str, Connection] = {}
        self._ip_counts: Dict[str, int] = {}
        self._peers: Dict[str, str] = {}

    # ---- admission by IP ----
    def admit(self, ip: str) -> bool:
        count = self._ip_counts.get(ip, 0)
        if count >= self.max_connections_per_ip:
            self.log.warning("connection cap reached for %s (%d open)", ip, count)
            return False
        self._ip_counts[ip] = count + 1
        return True

    def open(self, websocket: WebSocket, ip: str) -> Optional[Connection]:
        """Admit and track a new connection, or return None if its IP is over quota."""
        if not self.admit(ip):
            return None
        conn = Connection(websocket, ip)
        self._connections[conn.id] = conn
        self.log.debug("opened %s from %s", conn.id, ip)
        return conn

    def release(self, conn: Connection) -> None:
        if self._connections.pop(conn.id, None) is None:
            return
        count = self._ip_counts.get(conn.ip, 0) - 1
        if count <= 0:
            self._ip_counts.pop(conn.ip, None)
        else:
            self._ip_counts[conn.ip] = count
        self.unregister_peer(conn)

    def ip_count(self, ip: str) -> int:
        return self._ip_counts.get(ip, 0)

    # ---- per-message limits ----
    def check_size(self, raw: str | bytes) -> bool:
        size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
        return size <= self.max_message_bytes

    def check_rate(self, conn: Connection, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        if now - conn.window_start > RATE_WINDOW_SECONDS:
            conn.window_start = now
            conn.window_count = 0
        conn.window_count += 1
        return conn.window_count <= self.max_messages_per_second

    # ---- direct-messaging peer ids ----
    def register_peer(self, peer_id: str, conn: Connection) -> None:
        if conn.peer_id and conn.peer_id != peer_id:
            self.unregister_peer(conn)
        previous = self._peers.get(peer_id)
        if previous and previous != conn.id:
            self.log.info("peer id %s re-registered by %s (was %s)", peer_id, conn.id, previous)
            old = self._connections.get(previous)
            if old is not None:
                old.peer_id = None
        self._peers[peer_id] = conn.id
        conn.peer_id = peer_id

    def unregister_peer(self, conn: Connection) -> None:
        if conn.peer_id and self._peers.get(conn.peer_id) == conn.id:
            del self._peers[conn.peer_id]
        conn.peer_id = None

    def lookup_peer(self, peer_id: str) -> Optional[Connection]:
        conn_id = self._peers.get(peer_id)
        if conn_id is None:
            return None
        return self._connections.get(conn_id)

    # ---- API ----
    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def clear(self) -> None:
        self._connections.clear()
        self._ip_counts.clear()
        self._peers.clear()

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)
