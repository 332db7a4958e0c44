from fastapi import APIRouter, Depends
from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Project, ProjectStatus, User, UserRole


router = APIRouter(prefix="/users", tags=["users"])


@router.get("/contractors")
def list_contractors(db: Session = Depends(get_db), _=Depends(get_current_user)):
    """Contractors (ADMIN users) with their completed project counts; clients use this to request quotes."""
    completed = func.count(Project.id)
    rows = (
        db.query(User, completed)
        .outerjoin(Project, and_(Project.contractor_id == User.id, Project.status == ProjectStatus.COMPLETED))
        .filter(User.role == UserRole.ADMIN, User.is_active.is_(True))
        .group_by(User.id)
        .order_by(User.created_at.desc())
        .all()
    )
    return {
        "contractors": [
            {
                "id": str(u.id),
                "first_name": u.first_name,
                "last_name": u.last_name,
                "email": u.email,
                "company_name": f"{u.full_name} Roofing",
                "completed_projects": count,
                "joined_date": u.created_at.isoformat() if u.created_at else None,
            }
            for u, count in rows
        ]
    }


@router.get("/clients")
def list_clients(db: Session = Depends(get_db), _=Depends(require_roles(UserRole.ADMIN, UserRole.DEVELOPER))):
    rows = (
        db.query(User, func.count(Project.id))
        .outerjoin(Project, Project.user_id == User.id)
        .filter(User.role == UserRole.CLIENT, User.is_active.is_(True))
        .group_by(User.id)
        .order_by(User.created_at.desc())
        .all()
    )
    return {
        "clients": [
            {
                "id": str(u.id),
                "first_name": u.first_name,
                "last_name": u.last_name,
                "email": u.email,
                "email_verified": u.email_verified,
                "total_projects": count,
                "joined_date": u.created_at.isoformat() if u.created_at else None,
            }
            for u, count in rows
        ]
    }
