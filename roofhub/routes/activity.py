import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import Activity, User, UserRole
from ..services.activity import activity_stats, list_activities


router = APIRouter(prefix="/activity", tags=["activity"])

developer_only = require_roles(UserRole.DEVELOPER)


@router.get("")
def get_activities(
    user_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    _=Depends(developer_only),
):
    rows, total = list_activities(
        db,
        user_id=user_id,
        type=type,
        search=search,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    total_pages = (total + limit - 1) // limit
    return {
        "activities": [
            {
                "id": str(a.id),
                "type": a.type,
                "description": a.description,
                "metadata": a.metadata_json,
                "created_at": a.created_at.isoformat() if a.created_at else None,
                "user": {"id": str(a.user.id), "name": a.user.full_name, "email": a.user.email},
            }
            for a in rows
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.get("/stats")
def get_activity_stats(db: Session = Depends(get_db), _=Depends(developer_only)):
    return activity_stats(db)


@router.get("/users")
def get_activity_users(db: Session = Depends(get_db), _=Depends(developer_only)):
    users = (
        db.query(User)
        .filter(User.id.in_(db.query(Activity.user_id).distinct()))
        .order_by(User.first_name.asc())
        .all()
    )
    return [{"id": str(u.id), "name": u.full_name, "email": u.email, "role": u.role} for u in users]
