from __future__ import annotations

from collections.abc import Generator

import redis

from world_of_bits.config import create_redis


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()
