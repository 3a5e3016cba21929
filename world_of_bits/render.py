from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from world_of_bits.api.models import CellPopup
from world_of_bits.grid import Position


class RenderFacade(Protocol):
    """What the game core needs from whatever draws the map.

    Handles are opaque strings chosen by the renderer.
    """

    def clear_all(self) -> None: ...

    def draw_cell(self, position: Position, size: float) -> str: ...

    def set_tooltip(self, handle: str, text: str | None) -> None: ...

    def bind_interaction(self, handle: str, on_open: Callable[[], CellPopup]) -> None: ...

    def update_popup(self, handle: str, popup: CellPopup) -> None: ...

    def draw_player(self, position: Position, reach_m: float) -> None: ...

    def set_view(self, position: Position) -> None: ...

    def update_inventory(self, held_token: int | None) -> None: ...

    def set_controls_enabled(self, enabled: bool) -> None: ...

    def show_win(self, threshold: int) -> None: ...


class BufferedRenderer:
    """RenderFacade that records draw operations as JSON-ready dicts.

    The API drains the buffer after each request and pushes it to WebSocket clients,
    which do the actual map drawing. Interaction callbacks stay server-side and are
    invoked through `open(handle)`.
    """

    def __init__(self) -> None:
        self._ops: list[dict[str, Any]] = []
        self._bindings: dict[str, Callable[[], CellPopup]] = {}

    @property
    def handles(self) -> list[str]:
        return list(self._bindings)

    def clear_all(self) -> None:
        self._bindings.clear()
        self._ops.append({"op": "clear_all"})

    def draw_cell(self, position: Position, size: float) -> str:
        handle = position.cell.key
        self._ops.append(
            {
                "op": "draw_cell",
                "handle": handle,
                "bounds": [[position.lat, position.lng], [position.lat + size, position.lng + size]],
            }
        )
        return handle

    def set_tooltip(self, handle: str, text: str | None) -> None:
        self._ops.append({"op": "set_tooltip", "handle": handle, "text": text})

    def bind_interaction(self, handle: str, on_open: Callable[[], CellPopup]) -> None:
        self._bindings[handle] = on_open

    def update_popup(self, handle: str, popup: CellPopup) -> None:
        self._ops.append({"op": "update_popup", "handle": handle, "popup": popup.model_dump()})

    def draw_player(self, position: Position, reach_m: float) -> None:
        self._ops.append({"op": "draw_player", "lat": position.lat, "lng": position.lng, "reach_m": reach_m})

    def set_view(self, position: Position) -> None:
        self._ops.append({"op": "set_view", "lat": position.lat, "lng": position.lng})

    def update_inventory(self, held_token: int | None) -> None:
        self._ops.append({"op": "update_inventory", "held_token": held_token})

    def set_controls_enabled(self, enabled: bool) -> None:
        self._ops.append({"op": "set_controls_enabled", "enabled": enabled})

    def show_win(self, threshold: int) -> None:
        self._ops.append(
            {
                "op": "show_win",
                "threshold": threshold,
                "text": f"Congratulations! You've reached the win condition of {threshold}!",
            }
        )

    def open(self, handle: str) -> CellPopup:
        on_open = self._bindings.get(handle)
        if on_open is None:
            raise KeyError(handle)
        return on_open()

    def drain(self) -> list[dict[str, Any]]:
        ops, self._ops = self._ops, []
        return ops
