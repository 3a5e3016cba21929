from __future__ import annotations

import logging
from dataclasses import dataclass

import redis

from world_of_bits.api.models import GameView
from world_of_bits.config import GameSettings, settings_from_env
from world_of_bits.movement import MovementController, PushPositionSource, resolve_initial_mode
from world_of_bits.persistence import RedisGateway, clear_save
from world_of_bits.render import BufferedRenderer
from world_of_bits.session import GameSession

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LiveSession:
    session: GameSession
    controller: MovementController
    renderer: BufferedRenderer
    gateway: RedisGateway
    position_source: PushPositionSource

    def view(self) -> GameView:
        return self.session.view(
            effective_mode=self.controller.effective_mode,
            controls_enabled=self.controller.controls_enabled,
        )


_SESSIONS: dict[str, LiveSession] = {}


def open_session(
    *,
    r: redis.Redis,
    save_id: str,
    requested_mode: str | None = None,
    settings: GameSettings | None = None,
) -> LiveSession:
    """Load a save into a live session (or reuse the live one).

    Initial movement mode: `requested_mode` > saved mode > buttons.
    """

    live = _SESSIONS.get(save_id)
    if live is not None:
        live.gateway.attach(r)
        if requested_mode:
            live.controller.activate(resolve_initial_mode(requested=requested_mode, saved=live.session.state.movement_mode))
        return live

    gateway = RedisGateway(r=r, save_id=save_id)
    renderer = BufferedRenderer()
    session = GameSession.load(
        gateway=gateway,
        renderer=renderer,
        settings=settings or settings_from_env(),
        save_id=save_id,
    )
    position_source = PushPositionSource()
    controller = MovementController(session=session, position_source=position_source)
    controller.activate(resolve_initial_mode(requested=requested_mode, saved=session.saved_mode))
    session.refresh()

    live = LiveSession(
        session=session,
        controller=controller,
        renderer=renderer,
        gateway=gateway,
        position_source=position_source,
    )
    _SESSIONS[save_id] = live
    logger.info("Opened save %s in %s mode", save_id, controller.effective_mode.value)
    return live


def get_live_session(*, r: redis.Redis, save_id: str) -> LiveSession:
    live = _SESSIONS.get(save_id)
    if live is None:
        raise LookupError("Session not found")
    live.gateway.attach(r)
    return live


def close_session(*, r: redis.Redis, save_id: str, delete_save: bool = False) -> None:
    live = _SESSIONS.pop(save_id, None)
    if live is not None:
        # Cancels any geolocation subscription so late fixes can't touch the save.
        live.controller.shutdown()
    if delete_save:
        clear_save(RedisGateway(r=r, save_id=save_id))


def close_all_sessions() -> None:
    """Stop every live session. Used on app shutdown and between tests."""

    for live in _SESSIONS.values():
        live.controller.shutdown()
    _SESSIONS.clear()
