"""
Redis-based distributed lock.

Guards the recovery sweep so that only one API process closes stuck
rides per interval.  Acquire is ``SET key token NX EX ttl``; release and
extend are Lua scripts that act only while the stored token is still ours,
so an instance whose lock expired mid-cycle can never free a successor's.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 300):
        self.redis = client
        self.key = f"dispatch:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try once, without blocking.  True when this instance now owns it."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        if not self.held:
            logger.debug("Lock %s is held elsewhere", self.key)
        return self.held

    async def extend(self) -> bool:
        """Reset the TTL if still owned (long sweeps)."""
        if not self.held:
            return False
        extended = bool(
            await self.redis.eval(_EXTEND_SCRIPT, 1, self.key, self.token, self.ttl)
        )
        if not extended:
            logger.warning("Lock %s expired before it could be extended", self.key)
            self.held = False
        return extended

    async def release(self) -> None:
        if not self.held:
            return
        released = await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        if not released:
            logger.warning("Lock %s was no longer ours at release", self.key)
        self.held = False
