from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from world_of_bits.api.models import CellPopup, Direction
from world_of_bits.grid import CellId, Position

if TYPE_CHECKING:
    from world_of_bits.session import GameSession

logger = logging.getLogger(__name__)


ActionName = Literal["take", "combine", "store"]


@dataclass(frozen=True, slots=True)
class TakeRequested:
    cell: CellId


@dataclass(frozen=True, slots=True)
class CombineRequested:
    cell: CellId


@dataclass(frozen=True, slots=True)
class StoreRequested:
    cell: CellId


@dataclass(frozen=True, slots=True)
class MoveRequested:
    """Emitted by movement sources: either a directional step or an absolute position."""

    direction: Direction | None = None
    position: Position | None = None

    def __post_init__(self) -> None:
        if (self.direction is None) == (self.position is None):
            raise ValueError("MoveRequested needs exactly one of direction or position")


InteractionCommand = TakeRequested | CombineRequested | StoreRequested


@dataclass(frozen=True, slots=True)
class ActionEligibility:
    take: bool
    combine: bool
    store: bool


@dataclass(frozen=True, slots=True)
class ActionResult:
    applied: bool
    popup: CellPopup
    eligibility: ActionEligibility


def compute_eligibility(*, held_token: int | None, cell_token: int | None, in_reach: bool) -> ActionEligibility:
    """Which of take/combine/store are enabled for a cell, computed from scratch."""

    if not in_reach:
        return ActionEligibility(take=False, combine=False, store=False)
    return ActionEligibility(
        take=cell_token is not None,
        combine=held_token is not None and cell_token is not None and held_token == cell_token,
        store=held_token is not None,
    )


def command_for_action(action: str, cell: CellId) -> InteractionCommand:
    if action == "take":
        return TakeRequested(cell=cell)
    if action == "combine":
        return CombineRequested(cell=cell)
    if action == "store":
        return StoreRequested(cell=cell)
    raise ValueError(f"Unknown action: {action}")


def swap_tokens(*, session: GameSession, cell: CellId) -> None:
    """Exchange the held token with the cell's token.

    Both slots are assigned before anything is drawn or written, so observers only
    ever see the swapped state. Persisting is left to the caller (`session.save_tokens`).
    """

    held = session.state.held_token
    cell_token = session.cells.get_or_create(cell).token_value
    with session.deferred_cell_writes():
        session.cells.set(cell, held)
        session.set_held_token(cell_token)


def _take(session: GameSession, cell: CellId, eligibility: ActionEligibility) -> bool:
    if not eligibility.take:
        logger.debug("Take rejected at %s", cell.key)
        return False

    if session.state.held_token is not None:
        swap_tokens(session=session, cell=cell)
        return True

    cell_token = session.cells.get_or_create(cell).token_value
    session.cells.set(cell, None)
    session.set_held_token(cell_token)
    return True


def _combine(session: GameSession, cell: CellId, eligibility: ActionEligibility) -> bool:
    held = session.state.held_token
    if not eligibility.combine or held is None:
        logger.debug("Cannot combine at %s", cell.key)
        return False

    logger.info("Combining a token of value %d to create a %d token", held, held * 2)
    session.cells.set(cell, held * 2)
    session.set_held_token(None)
    return True


def _store(session: GameSession, cell: CellId, eligibility: ActionEligibility) -> bool:
    if not eligibility.store:
        logger.debug("Store rejected at %s", cell.key)
        return False

    if session.cells.get_or_create(cell).token_value is not None:
        swap_tokens(session=session, cell=cell)
        return True

    session.cells.set(cell, session.state.held_token)
    session.set_held_token(None)
    return True


def dispatch_interaction(*, session: GameSession, command: InteractionCommand) -> ActionResult:
    """Entry point for take/combine/store.

    Applies a command by:
    - refusing cells that are not drawn on the map (LookupError)
    - moving the interaction FSM out of idle (refuses overlapping interactions)
    - checking eligibility (reach + token rules); ineligible commands are no-ops
    - mutating cell and inventory
    - persisting cells and inventory together, whatever branch was taken
    - recomputing eligibility and redrawing the cell
    """

    cell = command.cell
    # Records only come into existence through the visible window.
    if session.handle_for(cell) is None:
        raise LookupError(f"Cell {cell.key} is not on the map")

    fsm = session.fsm
    if isinstance(command, TakeRequested):
        fsm.take()
        handler = _take
    elif isinstance(command, CombineRequested):
        fsm.combine()
        handler = _combine
    else:
        fsm.store()
        handler = _store

    try:
        with session.deferred_cell_writes():
            applied = handler(session, cell, session.eligibility_for(cell))
    finally:
        fsm.finish()

    session.save_tokens()
    session.redraw_cell(cell)
    return ActionResult(applied=applied, popup=session.popup_for(cell), eligibility=session.eligibility_for(cell))
