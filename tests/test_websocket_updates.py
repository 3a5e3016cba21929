from __future__ import annotations

import asyncio

from world_of_bits.grid import to_cell_index
from world_of_bits.websocket_hub import RenderHub, render_message


def test_ws_render_ops_broadcast(client_and_redis) -> None:
    client, _ = client_and_redis
    client.post("/saves/w1/session")

    with client.websocket_connect("/ws/saves/w1") as ws:
        res = client.post("/saves/w1/move", json={"direction": "left"})
        assert res.status_code == 200

        msg = ws.receive_json()
        assert msg["type"] == "render"
        assert msg["save_id"] == "w1"

        ops = [op["op"] for op in msg["ops"]]
        assert ops[0] == "clear_all"
        assert "draw_player" in ops
        assert ops.count("draw_cell") == 36
        assert ops[-1] == "set_view"


def test_ws_receives_inventory_after_take(client_and_redis) -> None:
    client, _ = client_and_redis
    view = client.post("/saves/w2/session").json()
    x, y = (to_cell_index(v) for v in view["player_position"])

    with client.websocket_connect("/ws/saves/w2") as ws:
        client.post(f"/saves/w2/cells/{x}/{y}/actions/take")

        msg = ws.receive_json()
        kinds = [op["op"] for op in msg["ops"]]
        assert "update_inventory" in kinds
        assert "update_popup" in kinds
        inventory = next(op for op in msg["ops"] if op["op"] == "update_inventory")
        assert inventory["held_token"] is not None


class _FakeSocket:
    def __init__(self, *, broken: bool = False) -> None:
        self.broken = broken
        self.sent: list[dict] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, payload: dict) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


def test_hub_skips_empty_batches_and_drops_dead_clients() -> None:
    hub = RenderHub()
    good = _FakeSocket()
    dead = _FakeSocket(broken=True)

    async def _run() -> tuple[int, int, int]:
        await hub.connect("h1", good)
        await hub.connect("h1", dead)
        empty = await hub.publish_ops("h1", [])
        first = await hub.publish_ops("h1", [{"op": "clear_all"}])
        second = await hub.publish_ops("h1", [{"op": "set_view", "lat": 0.0, "lng": 0.0}])
        return empty, first, second

    assert asyncio.run(_run()) == (0, 1, 1)
    assert good.sent[0] == render_message("h1", [{"op": "clear_all"}])
    assert len(good.sent) == 2
