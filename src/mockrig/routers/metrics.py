"""
Metrics Router
===============
Rolling requests-per-second per route and the registered pipelines.
"""

from fastapi import APIRouter, Depends, Request

from mockrig.core.auth import require_auth

router = APIRouter()


@router.get("/metrics", dependencies=[Depends(require_auth)])
async def get_metrics(request: Request):
    """
    Requests observed per (route, method) during the trailing window.
    The count is approximate to one tick interval.
    """
    tracker = request.app.state.tracker
    return {
        "window_ms": tracker.window_ms,
        "interval_ms": tracker.interval_ms,
        "routes": tracker.snapshot(),
    }


@router.get("/endpoints", dependencies=[Depends(require_auth)])
async def list_endpoints(request: Request):
    return request.app.state.registry.describe()
