from datetime import datetime, timezone

import redis

from core.config import settings


class _FakeRedis:
    """Minimal in-process stand-in used when TESTING."""

    def __init__(self):
        self._store = {}
        self._exp = {}

    def _cleanup(self, key):
        exp = self._exp.get(key)
        if exp is not None and datetime.now(timezone.utc).timestamp() > exp:
            self._store.pop(key, None)
            self._exp.pop(key, None)

    def setex(self, key, ttl, value):
        self._store[key] = value
        self._exp[key] = datetime.now(timezone.utc).timestamp() + int(ttl)

    def exists(self, key):
        self._cleanup(key)
        return 1 if key in self._store else 0

    def flushdb(self):
        self._store.clear()
        self._exp.clear()


# Shared across server instances so a logout is honoured everywhere
redis_client = _FakeRedis() if settings.TESTING else redis.from_url(settings.REDIS_URL, decode_responses=True)

BLACKLIST_PREFIX = "token:revoked:"


def revoke(jti: str, expires_at: int) -> None:
    """Blacklist a token id until the token would have expired anyway."""
    ttl = int(expires_at - datetime.now(timezone.utc).timestamp())
    if ttl > 0:
        redis_client.setex(f"{BLACKLIST_PREFIX}{jti}", ttl, "1")


def is_revoked(jti: str) -> bool:
    return bool(redis_client.exists(f"{BLACKLIST_PREFIX}{jti}"))
