import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from compliance_app.exceptions import UnauthenticatedError
from compliance_app.models.users import AuthUser
from compliance_app.routes.auth.auth import get_current_user, get_identity_gateway
from compliance_app.routes.responses import failure, success
from compliance_app.services.dashboard_service import DashboardAggregator, get_dashboard_summary
from compliance_app.services.identity_service import IdentityGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/summary")
async def dashboard_summary(current_user: AuthUser = Depends(get_current_user)):
    """
    Point-in-time dashboard: profile, the active business, its items grouped
    by category and status, and the redirect target when onboarding is not
    finished.
    """
    try:
        return success(await get_dashboard_summary(current_user.id))
    except Exception as exc:
        return failure(exc)


async def _forward_views(websocket: WebSocket, aggregator: DashboardAggregator) -> None:
    async for view in aggregator.views.changes():
        await websocket.send_json({"event": "view", "data": jsonable_encoder(view)})


@router.websocket("/ws")
async def dashboard_socket(
    websocket: WebSocket,
    token: str = Query(...),
    gateway: IdentityGateway = Depends(get_identity_gateway),
):
    """
    Live dashboard. Connect with: ws://host/dashboard/ws?token=<access token>

    Events received by client:
    - view: the recomputed dashboard view
    - error: a rejected client message

    Events client can send:
    - {"action": "complete", "item_id": "..."}
    - {"action": "delete", "item_id": "..."}
    - {"action": "ping"}
    """
    await websocket.accept()
    try:
        await gateway.restore(token)
    except UnauthenticatedError:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    aggregator = DashboardAggregator(gateway)
    aggregator.start()
    sender = asyncio.create_task(_forward_views(websocket, aggregator))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON on dashboard socket: %s", data[:100])
                await websocket.send_json({"event": "error", "data": {"error": "Invalid JSON"}})
                continue

            action = message.get("action") if isinstance(message, dict) else None
            item_id = message.get("item_id") if isinstance(message, dict) else None
            if action == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
            elif action == "complete" and item_id:
                await aggregator.mark_complete(item_id)
            elif action == "delete" and item_id:
                await aggregator.delete_item(item_id)
            else:
                await websocket.send_json({"event": "error", "data": {"error": f"Unsupported action: {action}"}})
    except WebSocketDisconnect:
        logger.info("Dashboard socket closed for user %s", aggregator.user_id)
    finally:
        sender.cancel()
        results = await asyncio.gather(sender, return_exceptions=True)
        if results and isinstance(results[0], Exception):
            logger.warning("Dashboard view sender for user %s stopped: %s", aggregator.user_id, results[0])
        aggregator.close()
