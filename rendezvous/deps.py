from __future__ import annotations
from fastapi import Request, WebSocket

from rendezvous.service.hub import SignalingHub

def get_hub(req: Request) -> SignalingHub:
    return req.app.state.hub

def get_hub_ws(ws: WebSocket) -> SignalingHub:
    return ws.app.state.hub
