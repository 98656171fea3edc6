"""Redis client for advisory webhook locks"""
import redis
import logging
from billing_webhooks.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def webhook_lock_key(event_id: str) -> str:
    return f"webhook_lock:{event_id}"


# Delete only if the key still holds our token; a holder that outlived its
# timeout must not remove the next holder's lock
RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def acquire_lock(lock_key: str, token: str, timeout: int = 30) -> bool:
    """Acquire a distributed lock using Redis SET with NX and EX.

    Args:
        lock_key: The lock key to acquire
        token: Value identifying this holder, required to release the lock
        timeout: Lock expiration in seconds (a crashed holder cannot block forever)

    Returns:
        True if lock was acquired, False if lock already exists
    """
    result = get_redis_client().set(lock_key, token, nx=True, ex=timeout)
    return bool(result)


def release_lock(lock_key: str, token: str) -> bool:
    """Release a distributed lock if it is still held with our token.

    Returns:
        True if the key was deleted, False if it expired or belongs to another holder
    """
    released = get_redis_client().eval(RELEASE_LOCK_SCRIPT, 1, lock_key, token)
    return bool(released)
