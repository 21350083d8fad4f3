# routers/notification_routes.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.notification import NotificationList, NotificationOut, SystemNotificationCreate
from services import notification_service
from services.notification_service import MAX_NOTIFICATIONS
from services.supabase_auth import get_current_db_user

router = APIRouter()


@router.get("/notifications", response_model=NotificationList)
def list_notifications(
    limit: int = Query(MAX_NOTIFICATIONS, ge=1, le=MAX_NOTIFICATIONS),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return {
        "items": notification_service.list_notifications(db, user.id, limit=limit),
        "unread": notification_service.unread_count(db, user.id),
    }


@router.get("/notifications/unread-count")
def unread_count(db: Session = Depends(get_db), user: User = Depends(get_current_db_user)):
    return {"unread": notification_service.unread_count(db, user.id)}


@router.post("/notifications/read-all")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_db_user)):
    return {"updated": notification_service.mark_all_read(db, user.id)}


@router.post("/notifications", response_model=NotificationOut, status_code=201)
def create_system_notification(
    payload: SystemNotificationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return notification_service.create_notification(db, user.id, message=payload.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
