"""
Notification endpoints
"""

from fastapi import APIRouter, Depends

from .deps import get_banking_system
from .schemas import SendNotificationRequest, BroadcastRequest, notification_response
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=201)
async def send_notification(
    request: SendNotificationRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    notification = system.notifications.send(
        request.user_id, request.title, request.message, request.type
    )
    return notification_response(notification)


@router.post("/broadcast", status_code=201)
async def broadcast(
    request: BroadcastRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Send one notification to every user of a role"""
    sent = system.notifications.broadcast(
        request.title, request.message, request.type, request.role.upper()
    )
    return {"success": True, "count": len(sent)}


@router.get("/users/{user_id}")
async def list_user_notifications(
    user_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Feed for one user, newest first"""
    system.user_manager.require_user(user_id)
    notifications = system.notifications.list_for_user(user_id)
    return {
        "notifications": [notification_response(n) for n in notifications],
        "unread_count": system.notifications.unread_count(user_id)
    }


@router.get("/users/{user_id}/alerts")
async def list_unread_alerts(
    user_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Unacknowledged alerts, oldest first"""
    system.user_manager.require_user(user_id)
    alerts = system.notifications.unread_alerts(user_id)
    return {"alerts": [notification_response(n) for n in alerts]}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    notification = system.notifications.mark_read(notification_id)
    return {"success": True, "notification": notification_response(notification)}
