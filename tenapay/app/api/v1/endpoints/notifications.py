"""
Notification API Endpoints.

In-app notification inbox plus the live WebSocket channel.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenapay.app.db.session import get_db, get_session_factory
from tenapay.app.core.dependencies import authenticate_token, get_current_user
from tenapay.app.services.connections import connection_directory
from tenapay.app.services.notification_service import NotificationService
from tenapay.app.schemas.notification import NotificationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List current user's notifications, newest first."""
    return await NotificationService.list_for_user(
        db, current_user["user_id"], unread_only=unread_only, limit=limit
    )


@router.patch("/read-all")
async def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await NotificationService.mark_all_read(db, current_user["user_id"])
    await db.commit()
    return {"status": "success", "count": count}


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    success = await NotificationService.mark_read(db, notification_id, current_user["user_id"])
    if not success:
        raise HTTPException(status_code=404, detail="Notification not found")

    await db.commit()
    return {"status": "success"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    success = await NotificationService.delete_notification(db, notification_id, current_user["user_id"])
    if not success:
        raise HTTPException(status_code=404, detail="Notification not found")

    await db.commit()
    return {"status": "success"}


@router.websocket("/ws")
async def notification_socket(
    websocket: WebSocket,
    token: str = Query(None),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Live notifications for the token's account.

    Server-push only; a client "ping" text frame is answered with "pong".
    """
    async with session_factory() as db:
        payload = await authenticate_token(token, db)

    if payload is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    user_id = payload["user_id"]
    await connection_directory.connect(user_id, websocket)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info("Notification socket for user %s closed by client", user_id)
    finally:
        connection_directory.disconnect(user_id, websocket)
