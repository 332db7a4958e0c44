import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..errors import NotFound, RoleNotPermitted, ValidationError
from ..models.models import Project, ProjectStatus, ProposalStatus, User, UserRole
from ..schemas.proposals import ProposalAction, ProposalListResponse, ProposalResponse, ProposalSend
from ..services.activity import ActivityType, log_activity
from ..services.lifecycle import transition_project
from ..services.notifications import NotificationType, notify_project_event


router = APIRouter(prefix="/proposals", tags=["proposals"])
logger = structlog.get_logger(__name__)


@router.get("", response_model=ProposalListResponse)
def list_proposals(
    type: Optional[str] = Query(default=None, pattern="^(sent|received)$"),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Proposals visible to the caller.

    Contractors see projects assigned to them; ``type=sent`` includes those
    still without a proposal. Clients see the projects they requested quotes
    for.
    """
    query = db.query(Project)
    if user.role == UserRole.ADMIN:
        query = query.filter(Project.contractor_id == user.id)
        if type != "sent":
            query = query.filter(Project.proposal_status.isnot(None))
    else:
        # Sent and received coincide for clients: every quote they requested
        query = query.filter(Project.client_id == user.id, Project.proposal_status.isnot(None))

    if status and status != "ALL":
        if status not in ProposalStatus.ALL:
            raise ValidationError(f"Unknown proposal status: {status}")
        query = query.filter(Project.proposal_status == status)

    projects = query.order_by(Project.proposal_sent.desc(), Project.updated_at.desc()).all()
    return {"proposals": projects}


@router.post("", response_model=ProposalResponse)
def send_proposal(body: ProposalSend, db: Session = Depends(get_db), user: User = Depends(require_roles(UserRole.ADMIN))):
    project = (
        db.query(Project)
        .filter(Project.id == body.project_id, Project.contractor_id == user.id)
        .first()
    )
    if not project:
        raise NotFound("Project not found or access denied")

    present = bool(body.proposal_text or body.custom_pricing)
    project = transition_project(
        db,
        project,
        ProjectStatus.PROPOSAL_SENT,
        user,
        updates={
            "proposal_text": body.proposal_text,
            "custom_pricing": body.custom_pricing,
            "proposal_sent": datetime.now(timezone.utc),
        },
        proposal_present=present,
    )
    log_activity(
        db,
        user.id,
        ActivityType.PROPOSAL_SENT,
        f'Proposal sent for project "{project.project_name}"',
        {"project_id": str(project.id), "has_custom_pricing": bool(body.custom_pricing)},
    )
    client = db.query(User).filter(User.id == (project.client_id or project.user_id)).first()
    notify_project_event(db, NotificationType.PROPOSAL_SENT, project, user, client)
    return project


@router.patch("/{project_id}")
def respond_to_proposal(
    project_id: uuid.UUID,
    body: ProposalAction,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = (
        db.query(Project)
        .filter(Project.id == project_id, or_(Project.client_id == user.id, Project.contractor_id == user.id))
        .first()
    )
    if not project:
        raise NotFound("Project not found or access denied")
    if not project.proposal_sent:
        raise ValidationError("This project does not have a proposal")

    if body.action == "accept":
        if user.role != UserRole.CLIENT or project.client_id != user.id:
            raise RoleNotPermitted("Only the client can accept proposals")
        target = ProjectStatus.ACCEPTED
        event = NotificationType.PROPOSAL_ACCEPTED
    else:
        target = ProjectStatus.REJECTED
        event = NotificationType.PROPOSAL_REJECTED

    project = transition_project(db, project, target, user)
    log_activity(
        db,
        user.id,
        ActivityType.PROPOSAL_RESPONDED,
        f'Proposal for project "{project.project_name}" {body.action}ed',
        {"project_id": str(project.id), "action": body.action},
    )
    contractor = db.query(User).filter(User.id == project.contractor_id).first() if project.contractor_id else None
    notify_project_event(db, event, project, user, contractor)
    return {
        "message": f"Proposal {body.action}ed successfully",
        "project": ProposalResponse.model_validate(project),
    }
