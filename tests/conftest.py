from __future__ import annotations

from collections.abc import Generator

import pytest

_ENV_VARS = (
    "WOB_START_LAT",
    "WOB_START_LNG",
    "WOB_INTERACTION_RADIUS_M",
    "WOB_WIN_THRESHOLD",
    "WOB_SPAWN_PROBABILITY",
    "WOB_INITIAL_HELD_TOKEN",
)


@pytest.fixture(autouse=True)
def _hermetic_sessions(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Small visible window, default settings, and an empty live-session registry."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WOB_VISIBLE_RADIUS", "3")

    from world_of_bits.sessions import close_all_sessions

    close_all_sessions()
    yield
    close_all_sessions()


@pytest.fixture()
def fake_redis():
    import fakeredis

    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis(fake_redis):
    """FastAPI TestClient wired to fakeredis."""

    from fastapi.testclient import TestClient

    from world_of_bits.api.deps import get_redis
    from world_of_bits.main import app

    def _override() -> Generator[object, None, None]:
        yield fake_redis

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, fake_redis
    app.dependency_overrides.clear()


@pytest.fixture()
def make_session(fake_redis):
    """Factory for a GameSession at the origin with a fakeredis-backed save."""

    from world_of_bits.config import GameSettings
    from world_of_bits.grid import Position
    from world_of_bits.persistence import RedisGateway
    from world_of_bits.render import BufferedRenderer
    from world_of_bits.session import GameSession

    def _make(*, seed=lambda cell: 4, **overrides):
        options = {"start_position": Position(x=0.0, y=0.0), "visible_radius": 2}
        options.update(overrides)
        return GameSession(
            gateway=RedisGateway(r=fake_redis, save_id="test"),
            renderer=BufferedRenderer(),
            settings=GameSettings(**options),
            seed=seed,
            save_id="test",
        )

    return _make
