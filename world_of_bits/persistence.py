from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from collections.abc import Mapping
from typing import Annotated, Any, Protocol

import redis
from pydantic import Field, TypeAdapter, ValidationError

from world_of_bits.api.models import MovementMode
from world_of_bits.grid import Position

logger = logging.getLogger(__name__)

CELLS_KEY = "cells"
HELD_TOKEN_KEY = "heldToken"
PLAYER_POSITION_KEY = "playerPosition"
MOVEMENT_MODE_KEY = "movementMode"

SAVE_KEYS = (CELLS_KEY, HELD_TOKEN_KEY, PLAYER_POSITION_KEY, MOVEMENT_MODE_KEY)

SAVE_KEY_PREFIX = "world_of_bits:save:"  # + {save_id}:{key}

_held_token_adapter: TypeAdapter[int | None] = TypeAdapter(Annotated[int, Field(ge=0, strict=True)] | None)
# Saved as [lng, lat]. Bounded and finite so snapping to the lattice cannot overflow.
_Longitude = Annotated[float, Field(ge=-180, le=180, allow_inf_nan=False)]
_Latitude = Annotated[float, Field(ge=-90, le=90, allow_inf_nan=False)]
_position_adapter: TypeAdapter[tuple[float, float]] = TypeAdapter(tuple[_Longitude, _Latitude])
_mode_adapter: TypeAdapter[MovementMode] = TypeAdapter(MovementMode)


class PersistenceGateway(Protocol):
    """Durable string key/value store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def set_many(self, values: Mapping[str, str]) -> None:
        """Write several keys so readers see all of them or none."""
        ...


class RedisGateway:
    """PersistenceGateway backed by plain Redis string keys, namespaced per save."""

    def __init__(self, *, r: redis.Redis, save_id: str = "default") -> None:
        self._r = r
        self.save_id = save_id

    def attach(self, r: redis.Redis) -> None:
        # Request-scoped clients: live sessions outlive the client they were opened with.
        self._r = r

    def _key(self, key: str) -> str:
        return f"{SAVE_KEY_PREFIX}{self.save_id}:{key}"

    def get(self, key: str) -> str | None:
        raw = self._r.get(self._key(key))
        if raw is None:
            return None
        return raw if isinstance(raw, str) else raw.decode("utf-8")

    def set(self, key: str, value: str) -> None:
        self._r.set(self._key(key), value)

    def remove(self, key: str) -> None:
        self._r.delete(self._key(key))

    def set_many(self, values: Mapping[str, str]) -> None:
        pipe = self._r.pipeline(transaction=True)
        for key, value in values.items():
            pipe.set(self._key(key), value)
        pipe.execute()


@dataclass(slots=True)
class LoadedSave:
    """Result of reading a save. Every field is independently optional."""

    cells: dict[str, Any] | None = None
    held_token: int | None = None
    player_position: Position | None = None
    movement_mode: MovementMode | None = None

    # heldToken may be saved as null (empty inventory), which is different from absent.
    held_token_present: bool = False


def _read(gateway: PersistenceGateway, key: str, adapter: TypeAdapter[Any]) -> tuple[bool, Any]:
    """Returns (found, value); malformed values are logged and reported as not found."""

    raw = gateway.get(key)
    if raw is None:
        return False, None
    try:
        return True, adapter.validate_json(raw)
    except (ValidationError, ValueError) as e:
        logger.warning("Ignoring malformed saved %s: %s", key, e)
        return False, None


def _read_cells(gateway: PersistenceGateway) -> dict[str, Any] | None:
    raw = gateway.get(CELLS_KEY)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning("Ignoring malformed saved %s: %s", CELLS_KEY, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring saved %s: expected an object, got %s", CELLS_KEY, type(data).__name__)
        return None
    return data


def load_save(gateway: PersistenceGateway) -> LoadedSave:
    held_present, held_token = _read(gateway, HELD_TOKEN_KEY, _held_token_adapter)
    _, position = _read(gateway, PLAYER_POSITION_KEY, _position_adapter)
    _, mode = _read(gateway, MOVEMENT_MODE_KEY, _mode_adapter)
    return LoadedSave(
        cells=_read_cells(gateway),
        held_token=held_token,
        held_token_present=held_present,
        player_position=Position(x=position[0], y=position[1]) if position is not None else None,
        movement_mode=mode,
    )


def save_cells(gateway: PersistenceGateway, snapshot: dict[str, Any]) -> None:
    gateway.set(CELLS_KEY, json.dumps(snapshot, separators=(",", ":")))


def save_held_token(gateway: PersistenceGateway, held_token: int | None) -> None:
    gateway.set(HELD_TOKEN_KEY, _held_token_adapter.dump_json(held_token).decode("utf-8"))


def save_player_position(gateway: PersistenceGateway, position: Position) -> None:
    gateway.set(PLAYER_POSITION_KEY, _position_adapter.dump_json(position.as_pair()).decode("utf-8"))


def save_movement_mode(gateway: PersistenceGateway, mode: MovementMode) -> None:
    gateway.set(MOVEMENT_MODE_KEY, _mode_adapter.dump_json(mode).decode("utf-8"))


def clear_save(gateway: PersistenceGateway) -> None:
    for key in SAVE_KEYS:
        gateway.remove(key)


def save_inventory_and_cells(gateway: PersistenceGateway, snapshot: dict[str, Any], held_token: int | None) -> None:
    """Persist both token slots together so a token is never saved twice or lost."""

    gateway.set_many(
        {
            CELLS_KEY: json.dumps(snapshot, separators=(",", ":")),
            HELD_TOKEN_KEY: _held_token_adapter.dump_json(held_token).decode("utf-8"),
        }
    )
