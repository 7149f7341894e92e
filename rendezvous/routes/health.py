from fastapi import APIRouter, Depends
import time

from rendezvous.deps import get_hub
from rendezvous.service.hub import SignalingHub

router = APIRouter()


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


# Health check
@router.get("/health")
async def health(hub: SignalingHub = Depends(get_hub)) -> dict:
    return {
        "ok": True,
        "now": now_iso(),
        "rooms": len(hub.rooms),
        "connections": len(hub.registry),
    }
