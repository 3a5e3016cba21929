from __future__ import annotations

import logging

import pytest

from world_of_bits.api.models import MovementMode
from world_of_bits.grid import Position
from world_of_bits.persistence import (
    CELLS_KEY,
    HELD_TOKEN_KEY,
    MOVEMENT_MODE_KEY,
    PLAYER_POSITION_KEY,
    RedisGateway,
    clear_save,
    load_save,
    save_cells,
    save_held_token,
    save_inventory_and_cells,
    save_movement_mode,
    save_player_position,
)


def test_gateway_namespaces_keys_per_save(fake_redis) -> None:
    a = RedisGateway(r=fake_redis, save_id="a")
    b = RedisGateway(r=fake_redis, save_id="b")

    a.set(HELD_TOKEN_KEY, "4")

    assert fake_redis.get("world_of_bits:save:a:heldToken") == "4"
    assert a.get(HELD_TOKEN_KEY) == "4"
    assert b.get(HELD_TOKEN_KEY) is None

    a.remove(HELD_TOKEN_KEY)
    assert a.get(HELD_TOKEN_KEY) is None


def test_empty_save_loads_as_absent(fake_redis) -> None:
    saved = load_save(RedisGateway(r=fake_redis))

    assert saved.cells is None
    assert saved.held_token is None
    assert saved.held_token_present is False
    assert saved.player_position is None
    assert saved.movement_mode is None


def test_save_and_load_every_key(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis)
    save_cells(gw, {"3,3": {"tokenValue": 4}, "0,0": {"tokenValue": None}})
    save_held_token(gw, 8)
    save_player_position(gw, Position(x=-122.057, y=36.9979))
    save_movement_mode(gw, MovementMode.geo)

    saved = load_save(gw)

    assert saved.cells == {"3,3": {"tokenValue": 4}, "0,0": {"tokenValue": None}}
    assert saved.held_token == 8
    assert saved.held_token_present is True
    assert saved.player_position == Position(x=-122.057, y=36.9979)
    assert saved.movement_mode == MovementMode.geo
    assert gw.get(MOVEMENT_MODE_KEY) == '"geo"'


def test_null_held_token_is_present_but_empty(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis)
    save_held_token(gw, None)

    saved = load_save(gw)
    assert gw.get(HELD_TOKEN_KEY) == "null"
    assert saved.held_token_present is True
    assert saved.held_token is None


@pytest.mark.parametrize(
    ("key", "raw"),
    [
        (CELLS_KEY, "{not json"),
        (CELLS_KEY, "[1, 2]"),
        (HELD_TOKEN_KEY, "four"),
        (HELD_TOKEN_KEY, "-2"),
        (HELD_TOKEN_KEY, "2.5"),
        (PLAYER_POSITION_KEY, "[1]"),
        (PLAYER_POSITION_KEY, '{"lat": 1, "lng": 2}'),
        (PLAYER_POSITION_KEY, "[1e308, 0]"),
        (PLAYER_POSITION_KEY, "[NaN, 0]"),
        (PLAYER_POSITION_KEY, "[-181, 0]"),
        (MOVEMENT_MODE_KEY, '"walking"'),
        (MOVEMENT_MODE_KEY, "geo"),
    ],
)
def test_malformed_key_is_ignored_with_warning(
    fake_redis, caplog: pytest.LogCaptureFixture, key: str, raw: str
) -> None:
    gw = RedisGateway(r=fake_redis)
    gw.set(key, raw)

    with caplog.at_level(logging.WARNING, logger="world_of_bits.persistence"):
        saved = load_save(gw)

    assert saved.cells is None
    assert saved.held_token_present is False
    assert saved.player_position is None
    assert saved.movement_mode is None
    assert any(key in r.getMessage() for r in caplog.records)


def test_keys_load_independently(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis)
    gw.set(CELLS_KEY, "garbage")
    save_held_token(gw, 2)
    gw.set(PLAYER_POSITION_KEY, "[0.0001]")
    save_movement_mode(gw, MovementMode.buttons)

    saved = load_save(gw)

    assert saved.cells is None
    assert saved.held_token == 2
    assert saved.player_position is None
    assert saved.movement_mode == MovementMode.buttons


def test_clear_save_removes_every_key(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis, save_id="gone")
    save_cells(gw, {})
    save_held_token(gw, 2)
    save_player_position(gw, Position(x=0.0, y=0.0))
    save_movement_mode(gw, MovementMode.geo)

    clear_save(gw)

    assert fake_redis.keys("world_of_bits:save:gone:*") == []


def test_set_many_writes_every_key(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis, save_id="batch")

    gw.set_many({HELD_TOKEN_KEY: "2", MOVEMENT_MODE_KEY: '"geo"'})

    assert fake_redis.get("world_of_bits:save:batch:heldToken") == "2"
    assert fake_redis.get("world_of_bits:save:batch:movementMode") == '"geo"'


def test_inventory_and_cells_are_saved_together(fake_redis) -> None:
    gw = RedisGateway(r=fake_redis)

    save_inventory_and_cells(gw, {"0,0": {"tokenValue": 2}}, 8)

    saved = load_save(gw)
    assert saved.cells == {"0,0": {"tokenValue": 2}}
    assert saved.held_token == 8
