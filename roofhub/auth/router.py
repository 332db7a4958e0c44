import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..errors import Conflict, EmailNotVerified, NotFound, Unauthenticated, ValidationError
from ..models.models import CodePurpose, User, UserRole, VerificationCode
from ..schemas.auth import (
    CreateAdminRequest,
    LoginRequest,
    MeResponse,
    RefreshRequest,
    RequestResetRequest,
    ResendCodeRequest,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
    VerifyCodeRequest,
)
from ..services.activity import ActivityType, log_activity
from ..services.mailer import send_email
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_verification_code,
    get_current_user,
    get_password_hash,
    require_roles,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


CODE_SUBJECTS = {
    CodePurpose.EMAIL_VERIFICATION: "verification code",
    CodePurpose.PASSWORD_RESET: "password reset code",
}


def _issue_code(db: Session, user: User, purpose: str = CodePurpose.EMAIL_VERIFICATION) -> VerificationCode:
    code = VerificationCode(
        user_id=user.id,
        code=generate_verification_code(),
        purpose=purpose,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.verification_code_ttl_minutes),
    )
    db.add(code)
    db.commit()
    subject = CODE_SUBJECTS[purpose]
    try:
        send_email(
            user.email,
            f"Your {settings.app_name} {subject}",
            f"Hello {user.full_name},\n\nYour {subject} is {code.code}. "
            f"It expires in {settings.verification_code_ttl_minutes} minutes.\n",
        )
    except Exception as e:
        logger.warning("code_email_failed", user_id=str(user.id), purpose=purpose, error=str(e))
    return code


def _consume_code(db: Session, user: User, raw_code: str, purpose: str) -> VerificationCode:
    """Mark the newest matching unused code as used; raises ValidationError if none is valid."""
    now = datetime.now(timezone.utc)
    code = (
        db.query(VerificationCode)
        .filter(
            VerificationCode.user_id == user.id,
            VerificationCode.code == raw_code,
            VerificationCode.purpose == purpose,
            VerificationCode.used_at.is_(None),
        )
        .order_by(VerificationCode.created_at.desc())
        .first()
    )
    if not code or _aware(code.expires_at) < now:
        raise ValidationError("Invalid or expired code")
    code.used_at = now
    return code


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(req: SignupRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already registered")
    user = User(
        email=email,
        password_hash=get_password_hash(req.password),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        role=UserRole.CLIENT,
        email_verified=False,
    )
    db.add(user)
    db.flush()
    log_activity(db, user.id, ActivityType.ACCOUNT_CREATED, f"Account created for {email}", {"role": user.role}, commit=False)
    db.commit()
    _issue_code(db, user)
    return {"user_id": str(user.id), "email": user.email, "verification_required": True}


@router.post("/verify-code")
def verify_code(req: VerifyCodeRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user:
        raise NotFound("User not found")
    if user.email_verified:
        return {"verified": True}
    _consume_code(db, user, req.code, CodePurpose.EMAIL_VERIFICATION)
    user.email_verified = True
    log_activity(db, user.id, ActivityType.EMAIL_VERIFIED, "Email address verified", commit=False)
    db.commit()
    return {"verified": True}


@router.post("/resend-code")
def resend_code(req: ResendCodeRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user:
        raise NotFound("User not found")
    if user.email_verified:
        raise ValidationError("Email already verified")
    _issue_code(db, user)
    return {"sent": True}


@router.post("/request-reset")
def request_reset(req: RequestResetRequest, db: Session = Depends(get_db)):
    # Same answer whether or not the address exists
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if user and user.is_active:
        _issue_code(db, user, CodePurpose.PASSWORD_RESET)
        log_activity(db, user.id, ActivityType.PASSWORD_RESET_REQUESTED, "Password reset requested")
    return {"message": "If the email exists, a reset code has been sent"}


@router.post("/reset-password")
def reset_password(req: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active:
        raise ValidationError("Invalid or expired code")
    _consume_code(db, user, req.code, CodePurpose.PASSWORD_RESET)
    user.password_hash = get_password_hash(req.new_password)
    user.password_change_required = False
    log_activity(db, user.id, ActivityType.PASSWORD_CHANGE, "Password reset with emailed code", commit=False)
    db.commit()
    logger.info("password_reset", user_id=str(user.id))
    return {"message": "Password updated successfully"}


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    if not user.email_verified:
        raise EmailNotVerified("Email address not verified")
    access = create_access_token(str(user.id), role=user.role)
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    log_activity(db, user.id, ActivityType.LOGIN, "User logged in", commit=False)
    db.commit()
    return TokenResponse(access_token=access, refresh_token=refresh, password_change_required=user.password_change_required)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise Unauthenticated("Invalid refresh token")
    user = db.query(User).filter(User.id == _uuid_or_401(payload.get("sub"))).first()
    if not user or not user.is_active:
        raise Unauthenticated("User not active")
    return TokenResponse(
        access_token=create_access_token(str(user.id), role=user.role),
        refresh_token=create_refresh_token(str(user.id)),
    )


def _uuid_or_401(raw):
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise Unauthenticated("Invalid subject")


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        email_verified=user.email_verified,
        password_change_required=user.password_change_required,
    )


@router.post("/admin-users", status_code=status.HTTP_201_CREATED)
def create_admin(
    req: CreateAdminRequest,
    db: Session = Depends(get_db),
    developer: User = Depends(require_roles(UserRole.DEVELOPER)),
):
    email = req.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already registered")
    admin = User(
        email=email,
        password_hash=get_password_hash(req.password),
        first_name=req.first_name,
        last_name=req.last_name,
        role=UserRole.ADMIN,
        email_verified=True,
    )
    db.add(admin)
    db.flush()
    log_activity(
        db,
        developer.id,
        ActivityType.ACCOUNT_CREATED,
        f"Admin account created for {email}",
        {"created_user_id": str(admin.id), "role": UserRole.ADMIN},
        commit=False,
    )
    db.commit()
    return {"id": str(admin.id), "email": admin.email, "role": admin.role}
