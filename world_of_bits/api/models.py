from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MovementMode(StrEnum):
    buttons = "buttons"
    geo = "geo"


class Direction(StrEnum):
    up = "up"
    down = "down"
    left = "left"
    right = "right"


class CellRecord(BaseModel):
    """Persisted token state of one lattice cell. `token_value=None` means empty."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Stored as {"tokenValue": int | null}; strict so "4" or true are rejected on restore.
    token_value: int | None = Field(default=None, ge=0, strict=True, alias="tokenValue")

    @property
    def is_empty(self) -> bool:
        return self.token_value is None


class CellPopup(BaseModel):
    """What a cell's interaction popup shows: message plus which actions are enabled."""

    key: str
    x: int
    y: int
    token_value: int | None
    message: str
    can_take: bool
    can_combine: bool
    can_store: bool


class CellView(BaseModel):
    key: str
    x: int
    y: int
    token_value: int | None
    can_take: bool
    can_combine: bool
    can_store: bool


class GameView(BaseModel):
    save_id: str
    player_position: tuple[float, float]
    held_token: int | None
    movement_mode: MovementMode

    # Effective source can differ from the stored mode when geolocation is unavailable.
    effective_mode: MovementMode
    controls_enabled: bool

    won: bool = False
    win_threshold: int
    visible_cell_count: int


class CellListResponse(BaseModel):
    cells: list[CellView]


class ActionResponse(BaseModel):
    applied: bool
    popup: CellPopup
    game: GameView


class MoveRequest(BaseModel):
    direction: Direction


class PositionFixRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PositionErrorRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)


class ModeRequest(BaseModel):
    # Accepts the launch-parameter spellings too ("geolocation").
    mode: str


class PositionFixResponse(BaseModel):
    # Zero when no geolocation subscription is live (e.g. in buttons mode).
    delivered: int
    game: GameView
