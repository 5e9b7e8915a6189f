"""
Admin Auth Dependency
======================
The operator routes can turn a healthy mock into a failing one, so they sit
behind a shared bearer token when ADMIN_TOKEN is configured.

Usage
-----
  HTTP routes :  Authorization: Bearer <ADMIN_TOKEN>
  WebSocket   :  /admin/ws?token=<ADMIN_TOKEN>

Dev-mode passthrough: with no token configured every admin request is allowed
and a warning is logged once at startup.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, WebSocket, WebSocketException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger("mockrig")

_bearer = HTTPBearer(auto_error=False)


def _token_matches(expected: str, supplied: Optional[str]) -> bool:
    return bool(supplied) and hmac.compare_digest(expected.encode(), supplied.encode())


async def require_auth(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(_bearer),
) -> None:
    expected = request.app.state.config.admin_token
    if not expected:
        return
    if not creds or not creds.credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required. Format: 'Authorization: Bearer <admin-token>'",
        )
    if not _token_matches(expected, creds.credentials):
        logger.warning(f"Rejected admin request from {request.client.host if request.client else 'unknown'}")
        raise HTTPException(status_code=401, detail="Invalid admin token.")


async def require_auth_ws(websocket: WebSocket, token: str = Query(default=None)) -> None:
    """Browser WebSocket APIs cannot send headers, so the token rides in ?token=."""
    expected = websocket.app.state.config.admin_token
    if expected and not _token_matches(expected, token):
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid admin token.")
