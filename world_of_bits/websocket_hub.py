from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

RENDER_MESSAGE_TYPE = "render"


def render_message(save_id: str, ops: list[dict[str, Any]]) -> dict[str, Any]:
    """Wire form of one batch of draw operations.

    `ops` are the dicts recorded by `BufferedRenderer` in call order, each tagged with
    an "op" name (clear_all, draw_player, draw_cell, set_tooltip, update_popup,
    set_view, update_inventory, set_controls_enabled, show_win). Clients replay them
    in order; a batch that starts with clear_all replaces the whole map.
    """

    return {"type": RENDER_MESSAGE_TYPE, "save_id": save_id, "ops": ops}


class RenderHub:
    """In-process WebSocket fan-out of render batches, keyed by save_id."""

    def __init__(self) -> None:
        self._by_save: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, save_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_save[save_id].add(websocket)

    async def disconnect(self, save_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_save.get(save_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_save.pop(save_id, None)

    async def publish_ops(self, save_id: str, ops: list[dict[str, Any]]) -> int:
        """Push drained ops to the save's clients. Empty batches are not sent.

        Returns how many clients received the batch.
        """

        if not ops:
            return 0
        return await self.broadcast(save_id, render_message(save_id, ops))

    async def broadcast(self, save_id: str, payload: dict[str, Any]) -> int:
        async with self._lock:
            conns = list(self._by_save.get(save_id, set()))

        delivered = 0
        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("Dropping render client of save %s: %s", save_id, e)
                dead.append(ws)
            else:
                delivered += 1

        if dead:
            for ws in dead:
                await self.disconnect(save_id, ws)
        return delivered


hub = RenderHub()
