"""Notification inbox endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user
from ..database import get_session

router = APIRouter()


@router.get("")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.NotificationService(db).list_for(user, limit=limit, offset=offset)


@router.get("/real-time")
def realtime_events(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Drain the caller's buffered real-time events."""
    events = services.NotificationService(db).drain_realtime(user)
    return {"events": events, "count": len(events)}


@router.put("/read-all")
def mark_all_read(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    updated = services.NotificationService(db).mark_all_read(user)
    return {"message": "All notifications marked as read", "updated": updated}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    note = services.NotificationService(db).mark_read(user, notification_id)
    return {"message": "Notification marked as read", "notification": note.model_dump()}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.NotificationService(db).delete(user, notification_id)
    return {"message": "Notification deleted"}
