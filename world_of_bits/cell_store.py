from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from world_of_bits.api.models import CellRecord
from world_of_bits.grid import CellId
from world_of_bits.luck import luck, luck_key

logger = logging.getLogger(__name__)

POSSIBLE_STARTING_TOKENS: tuple[int, ...] = (0, 2, 4, 8, 16)

# floor(luck * 4) only ever indexes the first four values, so 16 never spawns.
STARTING_TOKEN_SLOTS = 4


def seed_initial_token(cell: CellId) -> int:
    """Initial token for a never-visited cell, derived only from its coordinates."""

    pos = cell.position
    roll = luck(luck_key(pos.x, pos.y, "initialValue"))
    return POSSIBLE_STARTING_TOKENS[math.floor(roll * STARTING_TOKEN_SLOTS)]


class CellStore:
    """Authoritative cell key -> CellRecord mapping.

    Records are created lazily by `get_or_create` and never deleted. The cache is
    checked before seeding, so an existing record is never re-rolled.
    """

    def __init__(
        self,
        *,
        seed: Callable[[CellId], int] = seed_initial_token,
        on_change: Callable[[CellId, CellRecord], None] | None = None,
    ) -> None:
        self._seed = seed
        self._on_change = on_change
        self._records: dict[str, CellRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, cell: CellId) -> bool:
        return cell.key in self._records

    def get(self, cell: CellId) -> CellRecord | None:
        return self._records.get(cell.key)

    def get_or_create(self, cell: CellId) -> CellRecord:
        record = self._records.get(cell.key)
        if record is None:
            record = CellRecord(token_value=self._seed(cell))
            self._records[cell.key] = record
        return record

    def set(self, cell: CellId, token_value: int | None) -> CellRecord:
        if token_value is not None and token_value < 0:
            raise ValueError("token value must be non-negative")
        record = CellRecord(token_value=token_value)
        self._records[cell.key] = record
        if self._on_change is not None:
            self._on_change(cell, record)
        return record

    def snapshot(self) -> dict[str, dict[str, int | None]]:
        return {key: rec.model_dump(by_alias=True) for key, rec in sorted(self._records.items())}

    def restore(self, data: Mapping[str, Any]) -> int:
        """Replace all in-memory state from a snapshot mapping.

        Malformed entries are skipped with a warning. Returns how many were loaded.
        """

        records: dict[str, CellRecord] = {}
        for key, raw in data.items():
            try:
                cell = CellId.from_key(str(key))
                if not isinstance(raw, Mapping) or "tokenValue" not in raw:
                    raise ValueError('expected {"tokenValue": int | null}')
                records[cell.key] = CellRecord.model_validate(raw)
            except (ValidationError, ValueError) as e:
                logger.warning("Skipping malformed cell entry %r: %s", key, e)
        self._records = records
        return len(records)
