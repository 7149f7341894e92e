from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import secrets
import time
from typing import Optional

import bcrypt
import jwt

log = logging.getLogger("rendezvous.credentials")


class PasswordHasher:
    """Salted bcrypt hashing for room passwords.

    Secrets are pre-hashed with SHA-256 so passwords longer than bcrypt's
    72-byte input limit are still compared in full. The async variants run
    bcrypt on a worker thread to keep the event loop free.
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    @staticmethod
    def _prehash(secret: str) -> bytes:
        return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())

    def hash(self, secret: str) -> bytes:
        return bcrypt.hashpw(self._prehash(secret), bcrypt.gensalt(self.rounds))

    def verify(self, secret: str, digest: bytes) -> bool:
        try:
            return bcrypt.checkpw(self._prehash(secret), digest)
        except ValueError:
            log.warning("stored password digest is malformed")
            return False

    async def hash_async(self, secret: str) -> bytes:
        return await asyncio.to_thread(self.hash, secret)

    async def verify_async(self, secret: str, digest: bytes) -> bool:
        return await asyncio.to_thread(self.verify, secret, digest)


class JoinTokenIssuer:
    """Issues and reads signed, room-bound join tokens.

    Tokens are HS256 JWTs; the random ``jti`` claim is what a room records as
    its outstanding single-use credential.
    """

    def __init__(self, secret: str, ttl_seconds: int):
        self._secret = secret
        self.ttl_seconds = ttl_seconds

    def issue(self, room_id: str) -> tuple[str, str]:
        jti = secrets.token_urlsafe(16)
        now = int(time.time())
        token = jwt.encode({
            "rid": room_id,
            "jti": jti,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }, self._secret, algorithm="HS256")
        return token, jti

    def read(self, token: str, room_id: str) -> Optional[str]:
        """Return the token's jti if it is authentic, unexpired and bound to room_id."""
        try:
            claims = jwt.decode(token, self._secret, algorithms=["HS256"])
        except jwt.PyJWTError as e:
            log.debug("join token rejected for room %s: %s", room_id, e)
            return None
        if claims.get("rid") != room_id:
            return None
        jti = claims.get("jti")
        return jti if isinstance(jti, str) else None
