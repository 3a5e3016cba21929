from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from world_of_bits.actions import ActionEligibility, compute_eligibility
from world_of_bits.api.models import CellPopup, CellRecord, CellView, GameView, MovementMode
from world_of_bits.cell_store import CellStore, seed_initial_token
from world_of_bits.config import GameSettings
from world_of_bits.fsm import InteractionFSM
from world_of_bits.grid import TILE_SIZE, CellId, Position, distance_m, snap, visible_window
from world_of_bits.luck import luck, luck_key
from world_of_bits.persistence import (
    PersistenceGateway,
    load_save,
    save_cells,
    save_held_token,
    save_inventory_and_cells,
    save_movement_mode,
    save_player_position,
)
from world_of_bits.render import RenderFacade

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlayerState:
    position: Position
    held_token: int | None = None
    movement_mode: MovementMode = MovementMode.buttons
    won: bool = False


def describe_cell(cell: CellId, token_value: int | None) -> str:
    pos = cell.position
    where = f"There is a cell at {pos.x:.4f},{pos.y:.4f}."
    if token_value is None:
        return f"{where} It has no token."
    return f"{where} It has a token of {token_value}."


class GameSession:
    """Explicit owner of everything a save holds.

    Handlers receive the session instead of reaching for module state:
    - cells: lazily generated lattice cells
    - state: held token, player position, movement mode, win flag
    - fsm: guards that only one interaction runs at a time
    """

    def __init__(
        self,
        *,
        gateway: PersistenceGateway,
        renderer: RenderFacade,
        settings: GameSettings | None = None,
        seed: Callable[[CellId], int] = seed_initial_token,
        save_id: str = "default",
    ) -> None:
        self.save_id = save_id
        self.settings = settings or GameSettings()
        self.gateway = gateway
        self.renderer = renderer
        self.cells = CellStore(seed=seed, on_change=self._on_cell_changed)
        self.state = PlayerState(
            position=snap(self.settings.start_position),
            held_token=self.settings.initial_held_token,
        )
        self.fsm = InteractionFSM()
        self.visible_cells: list[CellId] = []
        self._handles: dict[str, str] = {}
        self._defer_cell_writes = False

        # Mode found in the save, if any; used to resolve the initial movement source.
        self.saved_mode: MovementMode | None = None

    @classmethod
    def load(
        cls,
        *,
        gateway: PersistenceGateway,
        renderer: RenderFacade,
        settings: GameSettings | None = None,
        seed: Callable[[CellId], int] = seed_initial_token,
        save_id: str = "default",
    ) -> "GameSession":
        """Build a session from whatever the gateway has; missing or bad keys keep defaults."""

        session = cls(gateway=gateway, renderer=renderer, settings=settings, seed=seed, save_id=save_id)
        saved = load_save(gateway)

        if saved.cells is not None:
            loaded = session.cells.restore(saved.cells)
            logger.debug("Restored %d cells for save %s", loaded, save_id)
        if saved.player_position is not None:
            session.state.position = snap(saved.player_position)
        if saved.movement_mode is not None:
            session.saved_mode = saved.movement_mode
            session.state.movement_mode = saved.movement_mode
        if saved.held_token_present:
            session.set_held_token(saved.held_token)
        else:
            session.renderer.update_inventory(session.state.held_token)
        return session

    # --- inventory -------------------------------------------------------

    def set_held_token(self, value: int | None) -> None:
        self.state.held_token = value
        self.renderer.update_inventory(value)
        self._check_win()

    def _check_win(self) -> None:
        held = self.state.held_token
        threshold = self.settings.win_threshold
        if self.state.won or held is None or held < threshold:
            return
        self.state.won = True
        logger.info("Save %s reached the win condition of %d", self.save_id, threshold)
        self.renderer.show_win(threshold)

    # --- persistence -----------------------------------------------------

    def _on_cell_changed(self, cell: CellId, record: CellRecord) -> None:
        if not self._defer_cell_writes:
            self.save_cells()

    @contextmanager
    def deferred_cell_writes(self) -> Iterator[None]:
        """Hold back per-change cell writes; the caller persists once via `save_tokens`."""

        previous, self._defer_cell_writes = self._defer_cell_writes, True
        try:
            yield
        finally:
            self._defer_cell_writes = previous

    def save_tokens(self) -> None:
        save_inventory_and_cells(self.gateway, self.cells.snapshot(), self.state.held_token)

    def save_cells(self) -> None:
        save_cells(self.gateway, self.cells.snapshot())

    def save_held_token(self) -> None:
        save_held_token(self.gateway, self.state.held_token)

    def save_player_position(self) -> None:
        save_player_position(self.gateway, self.state.position)

    def set_movement_mode(self, mode: MovementMode) -> None:
        self.state.movement_mode = mode
        save_movement_mode(self.gateway, mode)

    # --- cells -----------------------------------------------------------

    def in_reach(self, cell: CellId) -> bool:
        return distance_m(self.state.position, cell.position) <= self.settings.interaction_radius_m

    def eligibility_for(self, cell: CellId) -> ActionEligibility:
        return compute_eligibility(
            held_token=self.state.held_token,
            cell_token=self.cells.get_or_create(cell).token_value,
            in_reach=self.in_reach(cell),
        )

    def popup_for(self, cell: CellId) -> CellPopup:
        token = self.cells.get_or_create(cell).token_value
        eligibility = self.eligibility_for(cell)
        return CellPopup(
            key=cell.key,
            x=cell.x,
            y=cell.y,
            token_value=token,
            message=describe_cell(cell, token),
            can_take=eligibility.take,
            can_combine=eligibility.combine,
            can_store=eligibility.store,
        )

    def open_cell(self, cell: CellId) -> CellPopup:
        # Eligibility is recomputed every time the popup opens; the player may have moved.
        return self.popup_for(cell)

    def cell_views(self) -> list[CellView]:
        views: list[CellView] = []
        for cell in self.visible_cells:
            popup = self.popup_for(cell)
            views.append(
                CellView(
                    key=popup.key,
                    x=popup.x,
                    y=popup.y,
                    token_value=popup.token_value,
                    can_take=popup.can_take,
                    can_combine=popup.can_combine,
                    can_store=popup.can_store,
                )
            )
        return views

    def _is_spawned(self, cell: CellId) -> bool:
        p = self.settings.spawn_probability
        if p >= 1.0:
            return True
        return luck(luck_key(cell.x, cell.y)) < p

    def handle_for(self, cell: CellId) -> str | None:
        return self._handles.get(cell.key)

    def redraw_cell(self, cell: CellId) -> None:
        """Push a cell's token label and popup after it changed, if it is on screen."""

        handle = self._handles.get(cell.key)
        if handle is None:
            return
        token = self.cells.get_or_create(cell).token_value
        self.renderer.set_tooltip(handle, None if token is None else str(token))
        self.renderer.update_popup(handle, self.popup_for(cell))

    def refresh(self) -> None:
        """Clear and regenerate the visible window around the player, then recenter."""

        position = self.state.position
        self.renderer.clear_all()
        self.renderer.draw_player(position, self.settings.interaction_radius_m)

        visible: list[CellId] = []
        handles: dict[str, str] = {}
        for cell in visible_window(position.cell, self.settings.visible_radius):
            if not self._is_spawned(cell):
                continue
            record = self.cells.get_or_create(cell)
            handle = self.renderer.draw_cell(cell.position, TILE_SIZE)
            self.renderer.set_tooltip(handle, None if record.token_value is None else str(record.token_value))
            self.renderer.bind_interaction(handle, lambda c=cell: self.open_cell(c))
            handles[cell.key] = handle
            visible.append(cell)

        self.visible_cells = visible
        self._handles = handles
        self.renderer.set_view(position)

    def handle_position_update(self, position: Position) -> None:
        """Single handler for every movement source."""

        self.state.position = snap(position)
        self.refresh()
        self.save_player_position()

    def view(self, *, effective_mode: MovementMode, controls_enabled: bool) -> GameView:
        return GameView(
            save_id=self.save_id,
            player_position=self.state.position.as_pair(),
            held_token=self.state.held_token,
            movement_mode=self.state.movement_mode,
            effective_mode=effective_mode,
            controls_enabled=controls_enabled,
            won=self.state.won,
            win_threshold=self.settings.win_threshold,
            visible_cell_count=len(self.visible_cells),
        )
