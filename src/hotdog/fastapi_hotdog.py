import json
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from hotdog.messages import Sender
from hotdog.service import HotdogService
from hotdog.utils.logger import logger

router = APIRouter(prefix="/hotdog", tags=["hotdog"])


def get_service(request: Request) -> HotdogService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Hotdog service is not running")
    return service


@router.post("/bridge/{tab_id}")
async def bridge_request(tab_id: str, request: Request, url: str = "about:blank") -> Any:
    """
    Speak the page/service protocol over HTTP.

    The body is a message ({"type": ..., "dataset": {...}}). An `observe`
    request is held open until the file changes or the subscription is
    dropped.
    """
    try:
        body = await request.json()
    except json.JSONDecodeError:
        logger.debug(f"Bridge request from tab {tab_id} without a JSON body")
        body = {}

    service = get_service(request)
    sender = Sender(tab_id=tab_id, url=url)
    return await service.bridge.handle(body if isinstance(body, dict) else {}, sender)


@router.get("/status")
async def hotdog_status(request: Request):
    """Watched resources, their subscribers, and the tabs with sessions"""
    status = get_service(request).status()
    status["timestamp"] = time.time()
    return status


@router.get("/hosts")
async def list_hosts(request: Request):
    return {"hosts": get_service(request).hosts.hosts()}


@router.post("/tabs/{tab_id}/toggle")
async def toggle_tab(tab_id: str, request: Request):
    """Flip hot reload for the host of a tab that has a session"""
    enabled = await get_service(request).toggle_tab(tab_id)
    if enabled is None:
        raise HTTPException(status_code=404, detail=f"No session for tab {tab_id}")
    return {"tab_id": tab_id, "enabled": enabled}
