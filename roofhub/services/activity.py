"""
Activity logging service.
Append-only log of user actions; rows are never updated or deleted.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple, List

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ..models.models import Activity, User


class ActivityType:
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    LOGIN = "LOGIN"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_ARCHIVED = "PROJECT_ARCHIVED"
    PROJECT_DELETED = "PROJECT_DELETED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    PROPOSAL_RESPONDED = "PROPOSAL_RESPONDED"
    MATERIALS_RETURNED = "MATERIALS_RETURNED"
    STOCK_REPLENISHED = "STOCK_REPLENISHED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"


SORTABLE_FIELDS = {
    "created_at": Activity.created_at,
    "type": Activity.type,
    "description": Activity.description,
}


def log_activity(
    db: Session,
    user_id,
    type: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> Activity:
    """
    Append one activity row.

    Args:
        db: Database session
        user_id: Acting user
        type: Activity type (see ActivityType)
        description: Human-readable summary
        metadata: Free-form JSON context (project_id, from/to status, ...)
        commit: Commit immediately; pass False to join the caller's unit of work

    Returns:
        Created Activity object
    """
    activity = Activity(
        user_id=user_id,
        type=type,
        description=description,
        metadata_json=metadata,
        created_at=datetime.utcnow(),
    )
    db.add(activity)
    if commit:
        db.commit()
        db.refresh(activity)
    return activity


def list_activities(
    db: Session,
    user_id=None,
    type: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 25,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[Activity], int]:
    """
    Filtered, paginated activity listing.

    Returns:
        (activities for the page, total matching count)
    """
    query = db.query(Activity).join(User, User.id == Activity.user_id)
    if user_id:
        query = query.filter(Activity.user_id == user_id)
    if type:
        query = query.filter(Activity.type == type)
    if date_from:
        query = query.filter(Activity.created_at >= date_from)
    if date_to:
        query = query.filter(Activity.created_at <= date_to)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Activity.description.ilike(like),
            User.first_name.ilike(like),
            User.last_name.ilike(like),
            User.email.ilike(like),
        ))

    total = query.count()
    column = SORTABLE_FIELDS.get(sort_by, Activity.created_at)
    ordered = column.asc() if sort_order == "asc" else column.desc()
    rows = (
        query.options(joinedload(Activity.user))
        .order_by(ordered)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def activity_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)
    in_today = (Activity.created_at >= today, Activity.created_at < tomorrow)

    total_today = db.query(func.count(Activity.id)).filter(*in_today).scalar() or 0
    users_today = db.query(func.count(func.distinct(Activity.user_id))).filter(*in_today).scalar() or 0
    total = db.query(func.count(Activity.id)).scalar() or 0
    type_counts = (
        db.query(Activity.type, func.count(Activity.id).label("count"))
        .group_by(Activity.type)
        .order_by(func.count(Activity.id).desc(), Activity.type.asc())
        .all()
    )
    return {
        "total_activities_today": total_today,
        "unique_users_today": users_today,
        "total_activities": total,
        "most_common_activity_type": type_counts[0][0] if type_counts else "N/A",
        "activity_type_counts": [{"type": t, "count": c} for t, c in type_counts],
    }
