import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends

from rendezvous.deps import get_hub_ws
from rendezvous.models.messages import CloseCode
from rendezvous.service.hub import SignalingHub

router = APIRouter()
log = logging.getLogger("rendezvous.ws")


@router.websocket("/ws")
async def signaling_ws(
    websocket: WebSocket,
    hub: SignalingHub = Depends(get_hub_ws),
):
    ip = websocket.client.host if websocket.client else "unknown"
    conn = hub.open_connection(websocket, ip)
    if conn is None:
        await websocket.close(code=CloseCode.POLICY_VIOLATION)
        return

    try:
        await websocket.accept()
        log.info("accepted signaling websocket: conn=%s ip=%s", conn.id, ip)
        while not conn.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await hub.handle_incoming_message(conn, raw)
    except WebSocketDisconnect:
        pass
    finally:
        log.info("signaling websocket closed: conn=%s ip=%s", conn.id, ip)
        await hub.close_connection(conn)
