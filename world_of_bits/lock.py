from __future__ import annotations

from contextlib import contextmanager

import redis


@contextmanager
def save_lock(*, r: redis.Redis, save_id: str, ttl_ms: int = 5_000):
    """Per-save lock: command handlers for one save never interleave.

    Single holder only; the TTL frees the key if a worker dies mid-command.
    """

    key = f"lock:save:{save_id}"
    acquired = r.set(key, "1", nx=True, px=ttl_ms)
    if not acquired:
        raise ValueError("Save is busy")
    try:
        yield
    finally:
        r.delete(key)
