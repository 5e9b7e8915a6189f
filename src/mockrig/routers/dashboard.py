"""
Dashboard Router
=================
The operator control surface: read and turn the simulation dials, follow them
live over a WebSocket, and ask the server to shut down.
Mounted under the admin prefix (default /admin).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect

from mockrig.core.auth import require_auth, require_auth_ws
from mockrig.services.monitor import state_message

logger = logging.getLogger("mockrig")

router = APIRouter()

KNOB_STEPPERS = {
    "delay": "step_delay_factor",
    "fail": "step_fail_probability",
    "view": "step_view_index",
}
DIRECTIONS = {"up": 1, "down": -1}


async def _announce(request_or_socket):
    app = request_or_socket.app
    await app.state.connections.broadcast(state_message(app.state.simulation, app.state.tracker))


# ── State ──

@router.get("/state", dependencies=[Depends(require_auth)])
async def get_state(request: Request):
    return request.app.state.simulation.as_dict()


@router.put("/state", dependencies=[Depends(require_auth)])
async def set_state(request: Request):
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    try:
        updated = request.app.state.simulation.set(
            delay_factor=data.get("delay_factor"),
            fail_probability=data.get("fail_probability"),
            view_index=data.get("view_index"),
        )
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="State values must be numbers")
    logger.info(f"🎛️ Server state set: {updated}")
    await _announce(request)
    return updated


@router.post("/state/{knob}/{direction}", dependencies=[Depends(require_auth)])
async def step_state(request: Request, knob: str, direction: str):
    if knob not in KNOB_STEPPERS or direction not in DIRECTIONS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown control. Knobs: {sorted(KNOB_STEPPERS)}, directions: {sorted(DIRECTIONS)}",
        )
    simulation = request.app.state.simulation
    getattr(simulation, KNOB_STEPPERS[knob])(DIRECTIONS[direction])
    logger.info(f"🎛️ {knob} {direction}: {simulation.as_dict()}")
    await _announce(request)
    return simulation.as_dict()


# ── Lifecycle ──

@router.post("/shutdown", status_code=202, dependencies=[Depends(require_auth)])
async def shutdown(request: Request):
    server = getattr(request.app.state, "server", None)
    if server is None:
        raise HTTPException(status_code=503, detail="Server is not running under the mockrig runner")
    server.request_shutdown()
    return {"status": "shutting_down", "timeout_seconds": server.shutdown_timeout}


# ── WebSocket ──

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, _: None = Depends(require_auth_ws)):
    app = websocket.app
    manager = app.state.connections
    await manager.connect(websocket, state_message(app.state.simulation, app.state.tracker))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
