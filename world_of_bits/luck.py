from __future__ import annotations

import random


def luck_key(*parts: object) -> str:
    """Join seed parts the same way everywhere (e.g. ``"0.0003,0.0003,initialValue"``)."""

    return ",".join(str(p) for p in parts)


def luck(key: str) -> float:
    """Deterministic value in [0, 1) for a string key.

    String seeds go through SHA-512 inside `random.Random`, so this does not depend on
    PYTHONHASHSEED and is stable across processes and save/reload.
    """

    return random.Random(key).random()
