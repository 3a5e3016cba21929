from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from world_of_bits.actions import MoveRequested
from world_of_bits.api.models import Direction, MovementMode
from world_of_bits.grid import Position, displacement_steps

if TYPE_CHECKING:
    from world_of_bits.session import GameSession

logger = logging.getLogger(__name__)


FixCallback = Callable[[Position], None]
ErrorCallback = Callable[[str], None]
MoveHandler = Callable[[MoveRequested], None]

_DIRECTION_STEPS: dict[Direction, tuple[int, int]] = {
    Direction.up: (0, 1),
    Direction.down: (0, -1),
    Direction.left: (-1, 0),
    Direction.right: (1, 0),
}

_MODE_ALIASES: dict[str, MovementMode] = {
    "buttons": MovementMode.buttons,
    "geo": MovementMode.geo,
    "geolocation": MovementMode.geo,
}


class UnsupportedPositionSource(RuntimeError):
    """The continuous position source is missing or disabled."""


def parse_mode(value: str) -> MovementMode:
    mode = _MODE_ALIASES.get(value.strip().casefold())
    if mode is None:
        allowed = ",".join(sorted(_MODE_ALIASES))
        raise ValueError(f"Unknown movement mode '{value}' (allowed: {allowed})")
    return mode


def resolve_initial_mode(*, requested: str | None, saved: MovementMode | None) -> MovementMode:
    """Explicit request (launch parameter) > saved mode > buttons."""

    if requested:
        try:
            return parse_mode(requested)
        except ValueError as e:
            logger.warning("Ignoring launch movement mode: %s", e)
    if saved is not None:
        return saved
    return MovementMode.buttons


class Subscription(Protocol):
    def cancel(self) -> None: ...


class PositionSource(Protocol):
    """Continuous position stream (device geolocation or equivalent)."""

    @property
    def supported(self) -> bool: ...

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> Subscription: ...


class _PushSubscription:
    def __init__(self, source: PushPositionSource, token: int) -> None:
        self._source = source
        self._token = token

    def cancel(self) -> None:
        self._source._subscribers.pop(self._token, None)


class PushPositionSource:
    """PositionSource fed from outside, e.g. fixes a browser posts to the API."""

    def __init__(self, *, supported: bool = True) -> None:
        self._supported = supported
        self._subscribers: dict[int, tuple[FixCallback, ErrorCallback]] = {}
        self._tokens = itertools.count(1)

    @property
    def supported(self) -> bool:
        return self._supported

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> Subscription:
        if not self._supported:
            raise UnsupportedPositionSource("position source is disabled")
        token = next(self._tokens)
        self._subscribers[token] = (on_fix, on_error)
        return _PushSubscription(self, token)

    def publish(self, position: Position) -> int:
        """Deliver a fix to current subscribers. Returns how many received it."""

        subscribers = list(self._subscribers.values())
        for on_fix, _ in subscribers:
            on_fix(position)
        return len(subscribers)

    def publish_error(self, message: str) -> int:
        subscribers = list(self._subscribers.values())
        for _, on_error in subscribers:
            on_error(message)
        return len(subscribers)


class MovementSource(ABC):
    """One of the two ways the player moves. Emits MoveRequested while active."""

    mode: MovementMode

    def __init__(self, *, emit: MoveHandler) -> None:
        self._emit = emit
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError


class DiscreteSource(MovementSource):
    """Up/down/left/right commands, one tile per command."""

    mode = MovementMode.buttons

    def start(self) -> None:
        self._active = True

    def stop(self) -> None:
        self._active = False

    def press(self, direction: Direction) -> bool:
        if not self._active:
            logger.debug("Ignoring %s: directional controls are disabled", direction.value)
            return False
        self._emit(MoveRequested(direction=direction))
        return True


class ContinuousSource(MovementSource):
    """Follows a PositionSource, moving only in whole-tile steps.

    The first fix after start() jumps straight to the reported position; later fixes
    move only when at least one axis changes by a full tile, so jitter is ignored.
    """

    mode = MovementMode.geo

    def __init__(self, *, emit: MoveHandler, source: PositionSource, current: Callable[[], Position]) -> None:
        super().__init__(emit=emit)
        self._source = source
        self._current = current
        self._subscription: Subscription | None = None
        self._generation = 0
        self._awaiting_first_fix = True

    def start(self) -> None:
        if not self._source.supported:
            raise UnsupportedPositionSource("position source is disabled")

        self._generation += 1
        generation = self._generation
        self._awaiting_first_fix = True
        self._active = True
        try:
            self._subscription = self._source.subscribe(
                lambda pos: self._on_fix(pos, generation),
                lambda msg: self._on_error(msg, generation),
            )
        except UnsupportedPositionSource:
            self._active = False
            raise

    def stop(self) -> None:
        self._active = False
        # Bumping the generation invalidates callbacks that are already in flight.
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _is_stale(self, generation: int) -> bool:
        return not self._active or generation != self._generation

    def _on_fix(self, position: Position, generation: int) -> None:
        if self._is_stale(generation):
            logger.debug("Dropping stale position fix")
            return

        if self._awaiting_first_fix:
            self._awaiting_first_fix = False
            self._emit(MoveRequested(position=position))
            return

        current = self._current()
        dx, dy = displacement_steps(current, position)
        if dx == 0 and dy == 0:
            logger.debug("Position fix within current tile; not moving")
            return
        self._emit(MoveRequested(position=current.offset(dx, dy)))

    def _on_error(self, message: str, generation: int) -> None:
        if self._is_stale(generation):
            return
        # Errors don't end the subscription; only a mode switch does.
        logger.warning("Position source error: %s", message)


class MovementController:
    """Owns both movement sources and guarantees only one is active.

    Every MoveRequested from either source lands in `_on_move`, which resolves it to a
    position and hands it to the session's single position-update handler.
    """

    def __init__(self, *, session: GameSession, position_source: PositionSource | None = None) -> None:
        self.session = session
        self.discrete = DiscreteSource(emit=self._on_move)
        self.continuous: ContinuousSource | None = None
        if position_source is not None:
            self.continuous = ContinuousSource(
                emit=self._on_move,
                source=position_source,
                current=lambda: self.session.state.position,
            )
        self._active: MovementSource | None = None

    @property
    def effective_mode(self) -> MovementMode:
        if self._active is None:
            return MovementMode.buttons
        return self._active.mode

    @property
    def controls_enabled(self) -> bool:
        return self.discrete.active

    def activate(self, mode: MovementMode) -> MovementMode:
        """Switch to `mode`, persisting it. Returns the mode actually in effect."""

        # Stop (and unsubscribe) the old source before anything new starts.
        if self._active is not None:
            self._active.stop()
            self._active = None

        self.session.set_movement_mode(mode)

        if mode == MovementMode.geo:
            try:
                if self.continuous is None:
                    raise UnsupportedPositionSource("no position source configured")
                self.continuous.start()
            except UnsupportedPositionSource as e:
                logger.warning("Geolocation unavailable (%s); using directional controls", e)
            else:
                self._active = self.continuous
                self.session.renderer.set_controls_enabled(False)
                logger.info("Save %s now follows geolocation", self.session.save_id)
                return MovementMode.geo

        self.discrete.start()
        self._active = self.discrete
        self.session.renderer.set_controls_enabled(True)
        logger.info("Save %s now uses directional controls", self.session.save_id)
        return MovementMode.buttons

    def press(self, direction: Direction) -> bool:
        return self.discrete.press(direction)

    def shutdown(self) -> None:
        if self._active is not None:
            self._active.stop()
            self._active = None

    def _on_move(self, command: MoveRequested) -> None:
        if command.position is not None:
            target = command.position
        elif command.direction is not None:
            dx, dy = _DIRECTION_STEPS[command.direction]
            target = self.session.state.position.offset(dx, dy)
        else:
            raise ValueError("MoveRequested has no target")
        self.session.handle_position_update(target)
