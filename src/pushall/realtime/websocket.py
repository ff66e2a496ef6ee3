"""WebSocket endpoint — the connection upgrade handler.

Learn: Clients connect to /ws?token=<routing key>. The token is checked
*before* the upgrade: a blank token gets a plain HTTP 400 via the ASGI
WebSocket denial-response extension, so no session or channel is ever
created for it. Servers without that extension get a policy-violation
close instead.

Everything after accept() belongs to ConnectionSession.
"""

import structlog
from fastapi import APIRouter, WebSocket, status
from starlette.responses import PlainTextResponse

from pushall.realtime.session import ConnectionSession

logger = structlog.get_logger()
router = APIRouter()

DENIAL_EXTENSION = "websocket.http.response"


@router.websocket("/ws")
async def push_websocket(websocket: WebSocket):
    """Subscribe a client to every push sent to its token."""
    token = websocket.query_params.get("token", "")

    if not token.strip():
        logger.info("pushall.connect_rejected", reason="empty token")
        if DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
            await websocket.send_denial_response(
                PlainTextResponse("token is required", status_code=400)
            )
        else:
            await websocket.close(
                code=status.WS_1008_POLICY_VIOLATION, reason="token is required"
            )
        return

    logger.info("pushall.client_connected", token=token)
    await websocket.accept()
    await ConnectionSession(websocket, token).run()
