from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, Depends, status
from typing import Any, Dict, List, Optional
import asyncio
import json
from datetime import datetime, timezone

from .models import (
    AlertEventResponse, AlertRuleModel, ApiResponse, IntervalUpdate, RuleListUpdate, StatusResponse
)
from ..core.daemon import MonitorDaemon
from ..core.exceptions import ConfigurationError, NotReadyError
from ..utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)

daemon_instance: Optional[MonitorDaemon] = None

WS_QUEUE_SIZE = 100


def get_daemon() -> MonitorDaemon:
    if daemon_instance is None:
        raise HTTPException(status_code=500, detail="Daemon not initialized")
    return daemon_instance


def set_daemon(daemon: Optional[MonitorDaemon]):
    global daemon_instance
    daemon_instance = daemon


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/snapshot")
async def get_snapshot(daemon: MonitorDaemon = Depends(get_daemon)) -> Dict[str, Any]:
    try:
        snapshot = daemon.get_current_snapshot()
    except NotReadyError:
        raise HTTPException(status_code=503, detail="loading")
    return snapshot.to_dict()


@router.post("/refresh")
async def refresh(daemon: MonitorDaemon = Depends(get_daemon)) -> Dict[str, Any]:
    snapshot = await daemon.refresh()
    return snapshot.to_dict()


@router.get("/status", response_model=StatusResponse)
async def get_status(daemon: MonitorDaemon = Depends(get_daemon)):
    return daemon.get_status()


@router.put("/interval", response_model=ApiResponse)
async def set_interval(update: IntervalUpdate, daemon: MonitorDaemon = Depends(get_daemon)):
    try:
        interval = daemon.set_interval(update.interval_ms)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse(success=True, message=f"Poll interval set to {interval} ms",
                       data={"interval_ms": interval})


@router.get("/rules", response_model=List[AlertRuleModel])
async def list_rules(daemon: MonitorDaemon = Depends(get_daemon)):
    return [AlertRuleModel.from_rule(rule) for rule in daemon.get_rules()]


@router.put("/rules", response_model=ApiResponse)
async def replace_rules(update: RuleListUpdate, daemon: MonitorDaemon = Depends(get_daemon)):
    events = await daemon.set_rules(model.to_rule() for model in update.rules)
    return ApiResponse(success=True, message=f"Installed {len(update.rules)} rule(s)",
                       data={"resolved": [event.rule.id for event in events]})


@router.post("/rules", response_model=ApiResponse)
async def create_rule(rule: AlertRuleModel, daemon: MonitorDaemon = Depends(get_daemon)):
    if any(existing.id == rule.id for existing in daemon.get_rules()):
        raise HTTPException(status_code=409, detail=f"Rule {rule.id} already exists")

    await daemon.add_rule(rule.to_rule())
    return ApiResponse(success=True, message=f"Rule {rule.id} created successfully")


@router.put("/rules/{rule_id}", response_model=ApiResponse)
async def update_rule(rule_id: str, rule: AlertRuleModel, daemon: MonitorDaemon = Depends(get_daemon)):
    if rule.id != rule_id:
        raise HTTPException(status_code=400, detail="Rule id does not match the URL")

    events = await daemon.update_rule(rule.to_rule())
    if events is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return ApiResponse(success=True, message=f"Rule {rule_id} updated successfully",
                       data={"resolved": [event.rule.id for event in events]})


@router.delete("/rules/{rule_id}", response_model=ApiResponse)
async def delete_rule(rule_id: str, daemon: MonitorDaemon = Depends(get_daemon)):
    if not await daemon.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return ApiResponse(success=True, message=f"Rule {rule_id} deleted successfully")


@router.get("/alerts", response_model=List[AlertEventResponse])
async def list_alerts(active_only: bool = True, limit: Optional[int] = None,
                      daemon: MonitorDaemon = Depends(get_daemon)):
    if active_only:
        events = daemon.get_active_alerts()
    else:
        events = daemon.get_alert_history(limit)
    return [AlertEventResponse.from_event(event) for event in events]


@router.websocket("/ws/metrics")
async def websocket_metrics(websocket: WebSocket):
    await websocket.accept()
    daemon = daemon_instance
    if daemon is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Daemon not initialized")
        return

    queue: asyncio.Queue = asyncio.Queue(maxsize=WS_QUEUE_SIZE)

    def enqueue(message: Dict[str, Any]):
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.debug("WebSocket client is falling behind, dropping message")

    unsubscribe_snapshots = daemon.on_snapshot(
        lambda snapshot: enqueue({"type": "snapshot", "data": snapshot.to_dict()})
    )
    unsubscribe_alerts = daemon.on_alert_event(
        lambda event: enqueue({"type": "alert", "data": event.to_dict()})
    )

    async def forward():
        while True:
            message = await queue.get()
            await websocket.send_text(json.dumps(message))

    current = daemon.cache.peek()
    if current is not None:
        enqueue({"type": "snapshot", "data": current.to_dict()})

    sender = asyncio.create_task(forward())
    try:
        # client messages are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        unsubscribe_snapshots()
        unsubscribe_alerts()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
