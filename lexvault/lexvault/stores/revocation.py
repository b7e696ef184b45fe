from typing import Protocol

import redis.asyncio as redis


class RevocationStore(Protocol):
    """Set of revoked token IDs, each kept only for the token's remaining lifetime."""

    async def is_revoked(self, jti: str) -> bool: ...

    async def revoke(self, jti: str, ttl_seconds: int) -> None: ...

    async def revoke_if_absent(self, jti: str, ttl_seconds: int) -> bool:
        """Revoke ``jti`` unless already revoked. Returns True if this call revoked it."""
        ...


class RedisRevocationStore:
    key_prefix = "revoked:"

    def __init__(self, client: redis.Redis):
        self.client = client

    def _key(self, jti: str) -> str:
        return f"{self.key_prefix}{jti}"

    async def is_revoked(self, jti: str) -> bool:
        return bool(await self.client.exists(self._key(jti)))

    async def revoke(self, jti: str, ttl_seconds: int) -> None:
        await self.client.set(self._key(jti), b"1", ex=max(1, ttl_seconds))

    async def revoke_if_absent(self, jti: str, ttl_seconds: int) -> bool:
        # SET NX makes check-and-revoke a single atomic step across processes.
        return bool(await self.client.set(self._key(jti), b"1", ex=max(1, ttl_seconds), nx=True))
