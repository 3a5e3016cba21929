from __future__ import annotations

import os
from dataclasses import dataclass, field

import redis

from world_of_bits.grid import Position

# Default map center (UC Santa Cruz).
DEFAULT_START = Position.from_latlng(36.9979, -122.0570)

# "Roughly 48 meters": 0.00048 degrees at ~111.32 km per degree.
DEFAULT_INTERACTION_RADIUS_M = 0.00048 * 111_320


@dataclass(frozen=True, slots=True)
class GameSettings:
    start_position: Position = field(default=DEFAULT_START)
    # Half-width of the visible window in cells (window is 2R x 2R).
    visible_radius: int = 20
    interaction_radius_m: float = DEFAULT_INTERACTION_RADIUS_M
    win_threshold: int = 32
    # Fraction of window cells that hold a cache; 1.0 materializes every cell.
    spawn_probability: float = 1.0
    initial_held_token: int | None = None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def settings_from_env() -> GameSettings:
    radius = _env_int("WOB_VISIBLE_RADIUS", 20)
    threshold = _env_int("WOB_WIN_THRESHOLD", 32)
    held = _env_int("WOB_INITIAL_HELD_TOKEN", None)
    spawn = _env_float("WOB_SPAWN_PROBABILITY", 1.0)

    if radius is None or radius < 0:
        raise RuntimeError("WOB_VISIBLE_RADIUS must be >= 0")
    if held is not None and held < 0:
        raise RuntimeError("WOB_INITIAL_HELD_TOKEN must be >= 0")
    if not 0.0 <= spawn <= 1.0:
        raise RuntimeError("WOB_SPAWN_PROBABILITY must be between 0 and 1")

    return GameSettings(
        start_position=Position.from_latlng(
            _env_float("WOB_START_LAT", DEFAULT_START.lat),
            _env_float("WOB_START_LNG", DEFAULT_START.lng),
        ),
        visible_radius=radius,
        interaction_radius_m=_env_float("WOB_INTERACTION_RADIUS_M", DEFAULT_INTERACTION_RADIUS_M),
        win_threshold=threshold if threshold is not None else 32,
        spawn_probability=spawn,
        initial_held_token=held,
    )


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis() -> redis.Redis:
    # decode_responses=True => saved values come back as str
    return redis.Redis.from_url(get_redis_url(), decode_responses=True)
