from __future__ import annotations

import redis
from fastapi import APIRouter, Depends, HTTPException, Response, WebSocket, WebSocketDisconnect, status
from statemachine.exceptions import TransitionNotAllowed

from world_of_bits.actions import command_for_action, dispatch_interaction
from world_of_bits.api.deps import get_redis
from world_of_bits.api.models import (
    ActionResponse,
    CellListResponse,
    CellPopup,
    GameView,
    ModeRequest,
    MoveRequest,
    PositionErrorRequest,
    PositionFixRequest,
    PositionFixResponse,
)
from world_of_bits.grid import CellId, Position
from world_of_bits.lock import save_lock
from world_of_bits.movement import parse_mode
from world_of_bits.sessions import LiveSession, close_session, get_live_session, open_session
from world_of_bits.websocket_hub import hub

router = APIRouter()


def _live(*, r: redis.Redis, save_id: str) -> LiveSession:
    try:
        return get_live_session(r=r, save_id=save_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.websocket("/ws/saves/{save_id}")
async def render_updates_ws(websocket: WebSocket, save_id: str) -> None:
    await hub.connect(save_id, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(save_id, websocket)
    except Exception:
        await hub.disconnect(save_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/saves/{save_id}/session", response_model=GameView)
async def open_session_route(save_id: str, mode: str | None = None, r: redis.Redis = Depends(get_redis)) -> GameView:
    """Open a save. `mode` is the launch override (geo, geolocation or buttons)."""

    try:
        with save_lock(r=r, save_id=save_id):
            live = open_session(r=r, save_id=save_id, requested_mode=mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await hub.publish_ops(save_id, live.renderer.drain())
    return live.view()


@router.get("/saves/{save_id}", response_model=GameView)
async def get_save_route(save_id: str, r: redis.Redis = Depends(get_redis)) -> GameView:
    return _live(r=r, save_id=save_id).view()


@router.delete("/saves/{save_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_save_route(save_id: str, r: redis.Redis = Depends(get_redis)) -> Response:
    close_session(r=r, save_id=save_id, delete_save=True)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/saves/{save_id}/cells", response_model=CellListResponse)
async def list_cells_route(save_id: str, r: redis.Redis = Depends(get_redis)) -> CellListResponse:
    live = _live(r=r, save_id=save_id)
    return CellListResponse(cells=live.session.cell_views())


@router.get("/saves/{save_id}/cells/{x}/{y}", response_model=CellPopup)
async def open_cell_route(save_id: str, x: int, y: int, r: redis.Redis = Depends(get_redis)) -> CellPopup:
    live = _live(r=r, save_id=save_id)
    handle = live.session.handle_for(CellId(x=x, y=y))
    if handle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell is not on the map")
    return live.renderer.open(handle)


@router.post("/saves/{save_id}/cells/{x}/{y}/actions/{action}", response_model=ActionResponse)
async def cell_action_route(
    save_id: str,
    x: int,
    y: int,
    action: str,
    r: redis.Redis = Depends(get_redis),
) -> ActionResponse:
    live = _live(r=r, save_id=save_id)
    try:
        command = command_for_action(action, CellId(x=x, y=y))
        with save_lock(r=r, save_id=save_id):
            result = dispatch_interaction(session=live.session, command=command)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell is not on the map") from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except TransitionNotAllowed as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Another interaction is in progress") from e

    await hub.publish_ops(save_id, live.renderer.drain())
    return ActionResponse(applied=result.applied, popup=result.popup, game=live.view())


@router.post("/saves/{save_id}/move", response_model=GameView)
async def move_route(save_id: str, payload: MoveRequest, r: redis.Redis = Depends(get_redis)) -> GameView:
    live = _live(r=r, save_id=save_id)
    try:
        with save_lock(r=r, save_id=save_id):
            if not live.controller.press(payload.direction):
                raise ValueError("Directional controls are disabled while following geolocation")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await hub.publish_ops(save_id, live.renderer.drain())
    return live.view()


@router.post("/saves/{save_id}/position", response_model=PositionFixResponse)
async def position_fix_route(
    save_id: str,
    payload: PositionFixRequest,
    r: redis.Redis = Depends(get_redis),
) -> PositionFixResponse:
    live = _live(r=r, save_id=save_id)
    try:
        with save_lock(r=r, save_id=save_id):
            delivered = live.position_source.publish(Position.from_latlng(payload.lat, payload.lng))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await hub.publish_ops(save_id, live.renderer.drain())
    return PositionFixResponse(delivered=delivered, game=live.view())


@router.post("/saves/{save_id}/position/error")
async def position_error_route(
    save_id: str,
    payload: PositionErrorRequest,
    r: redis.Redis = Depends(get_redis),
) -> dict[str, int]:
    live = _live(r=r, save_id=save_id)
    return {"delivered": live.position_source.publish_error(payload.message)}


@router.post("/saves/{save_id}/mode", response_model=GameView)
async def set_mode_route(save_id: str, payload: ModeRequest, r: redis.Redis = Depends(get_redis)) -> GameView:
    live = _live(r=r, save_id=save_id)
    try:
        mode = parse_mode(payload.mode)
        with save_lock(r=r, save_id=save_id):
            live.controller.activate(mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await hub.publish_ops(save_id, live.renderer.drain())
    return live.view()
