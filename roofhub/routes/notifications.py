import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..errors import NotFound, ValidationError
from ..models.models import Notification, User, UserRole
from ..schemas.notifications import (
    NotificationCreate,
    NotificationListResponse,
    NotificationMarkRead,
    NotificationResponse,
)


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    base = db.query(Notification).filter(Notification.user_id == user.id)
    query = base.filter(Notification.read.is_(False)) if unread_only else base
    rows = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
    total = base.count()
    unread = base.filter(Notification.read.is_(False)).count()
    return {
        "notifications": rows,
        "total_count": total,
        "unread_count": unread,
        "has_more": offset + len(rows) < total,
    }


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def create_notification(
    body: NotificationCreate,
    db: Session = Depends(get_db),
    _=Depends(require_roles(UserRole.ADMIN, UserRole.DEVELOPER)),
):
    if not db.query(User).filter(User.id == body.user_id).first():
        raise NotFound("Target user not found")
    row = Notification(**body.model_dump(), read=False)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.patch("")
def mark_read(body: NotificationMarkRead, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    query = db.query(Notification).filter(Notification.user_id == user.id, Notification.read.is_(False))
    if body.mark_all_as_read:
        updated = query.update({Notification.read: True}, synchronize_session=False)
        db.commit()
        return {"message": "All notifications marked as read", "updated": updated}
    if body.notification_ids:
        updated = (
            query.filter(Notification.id.in_(body.notification_ids))
            .update({Notification.read: True}, synchronize_session=False)
        )
        db.commit()
        return {"message": "Notifications marked as read", "updated": updated}
    raise ValidationError("Either notification_ids or mark_all_as_read is required")


@router.delete("")
def delete_notifications(
    id: Optional[uuid.UUID] = None,
    delete_all_read: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Scoped to the caller; other users' ids are silently ignored
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if id:
        deleted = query.filter(Notification.id == id).delete(synchronize_session=False)
        db.commit()
        return {"message": "Notification deleted", "deleted": deleted}
    if delete_all_read:
        deleted = query.filter(Notification.read.is_(True)).delete(synchronize_session=False)
        db.commit()
        return {"message": f"{deleted} read notifications deleted", "deleted": deleted}
    raise ValidationError("Either id or delete_all_read is required")
