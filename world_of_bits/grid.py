from __future__ import annotations

import math
from dataclasses import dataclass

# Lattice cell size in degrees.
TILE_SIZE = 1e-4

# Same mean radius Leaflet uses for distanceTo().
EARTH_RADIUS_M = 6_371_000.0


def to_cell_index(continuous: float) -> int:
    # Half-up rounding so exact tile midpoints don't flip with banker's rounding.
    return math.floor(continuous / TILE_SIZE + 0.5)


def to_continuous(index: int) -> float:
    return index * TILE_SIZE


@dataclass(frozen=True, slots=True)
class Position:
    """Continuous map position. `x` is longitude, `y` is latitude."""

    x: float
    y: float

    @classmethod
    def from_latlng(cls, lat: float, lng: float) -> "Position":
        return cls(x=lng, y=lat)

    @property
    def lat(self) -> float:
        return self.y

    @property
    def lng(self) -> float:
        return self.x

    @property
    def cell(self) -> "CellId":
        return CellId(x=to_cell_index(self.x), y=to_cell_index(self.y))

    def offset(self, dx: int, dy: int) -> "Position":
        """Move by whole tiles along each axis."""

        return Position(x=self.x + dx * TILE_SIZE, y=self.y + dy * TILE_SIZE)

    def as_pair(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True, slots=True)
class CellId:
    x: int
    y: int

    @property
    def key(self) -> str:
        return f"{self.x},{self.y}"

    @classmethod
    def from_key(cls, key: str) -> "CellId":
        parts = key.split(",")
        if len(parts) != 2:
            raise ValueError(f"Invalid cell key: {key!r}")
        try:
            return cls(x=int(parts[0]), y=int(parts[1]))
        except ValueError as e:
            raise ValueError(f"Invalid cell key: {key!r}") from e

    @property
    def position(self) -> Position:
        return Position(x=to_continuous(self.x), y=to_continuous(self.y))


def snap(position: Position) -> Position:
    """Quantize a position to the nearest lattice-aligned point."""

    return position.cell.position


def visible_window(center: CellId, radius: int) -> list[CellId]:
    """All cells in the square [-R, R) x [-R, R) around `center` (2R x 2R cells)."""

    if radius < 0:
        raise ValueError("radius must be non-negative")
    return [
        CellId(x=center.x + i, y=center.y + j)
        for i in range(-radius, radius)
        for j in range(-radius, radius)
    ]


def displacement_steps(current: Position, target: Position) -> tuple[int, int]:
    """Whole-tile steps per axis from `current` to `target`, rounded to nearest."""

    dx = (target.x - current.x) / TILE_SIZE
    dy = (target.y - current.y) / TILE_SIZE
    return (math.floor(dx + 0.5), math.floor(dy + 0.5))


def distance_m(a: Position, b: Position) -> float:
    """Great-circle (haversine) distance in meters."""

    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))
