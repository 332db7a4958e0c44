from typing import List

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_roles
from ..config import settings
from ..db import get_db
from ..errors import NotFound, RoleNotPermitted
from ..models.models import User, UserRole
from ..schemas.auth import AdminResetPasswordRequest, AdminUserResponse
from ..services.activity import ActivityType, log_activity
from ..services.mailer import send_email


router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger(__name__)

developer_only = require_roles(UserRole.DEVELOPER)


@router.get("/users", response_model=List[AdminUserResponse])
def list_users(db: Session = Depends(get_db), _=Depends(developer_only)):
    return db.query(User).order_by(User.role.asc(), User.last_name.asc(), User.first_name.asc()).all()


@router.post("/reset-password")
def admin_reset_password(
    body: AdminResetPasswordRequest,
    db: Session = Depends(get_db),
    developer: User = Depends(developer_only),
):
    """
    Set a new password for another account.

    Developer accounts other than the caller's own are off limits. The user
    is told by email that the password changed; the password itself is never
    mailed.
    """
    target = db.query(User).filter(User.id == body.user_id).first()
    if not target:
        raise NotFound("User not found")
    if target.role == UserRole.DEVELOPER and target.id != developer.id:
        raise RoleNotPermitted("Cannot reset another developer's password")

    target.password_hash = get_password_hash(body.new_password)
    target.password_change_required = body.require_password_change
    log_activity(
        db,
        developer.id,
        ActivityType.PASSWORD_CHANGE,
        f"Password reset for {target.email}",
        {
            "target_user_id": str(target.id),
            "target_email": target.email,
            "password_change_required": body.require_password_change,
        },
        commit=False,
    )
    db.commit()

    try:
        send_email(
            target.email,
            f"Your {settings.app_name} password was reset",
            f"Hello {target.full_name},\n\nAn administrator has reset your password. "
            "Ask them for the temporary password and change it after signing in.\n",
        )
    except Exception as e:
        logger.warning("password_reset_email_failed", user_id=str(target.id), error=str(e))

    logger.info("admin_password_reset", user_id=str(target.id), developer_id=str(developer.id))
    return {
        "message": f"Password reset for {target.full_name}",
        "user": {"id": str(target.id), "email": target.email, "name": target.full_name, "role": target.role},
    }
