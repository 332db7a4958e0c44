"""
Project status changes with their ledger side effects.

Route handlers call ``transition_project`` after re-reading the project.
Accepting a proposal reserves materials, completing consumes them and
cancelling returns them.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import InvalidTransition, RoleNotPermitted
from ..models.models import Project, ProjectStatus, User, UserRole
from . import ledger
from .activity import ActivityType, log_activity
from .workflow import apply_transition, require_transition


logger = structlog.get_logger(__name__)

# Statuses from which a project may be cancelled (outside the workflow table)
CANCELLABLE_STATUSES = (
    ProjectStatus.CONTRACTOR_REVIEWING,
    ProjectStatus.ACCEPTED,
    ProjectStatus.IN_PROGRESS,
)


def has_proposal(project: Project) -> bool:
    return bool((project.proposal_text or "").strip() or project.custom_pricing)


def _reserve_on_accept(db: Session, project: Project) -> None:
    if not project.warehouse_id:
        logger.info("materials_reservation_skipped", project_id=str(project.id), reason="no_warehouse")
        return
    ledger.reserve_project_materials(db, project)


def transition_project(
    db: Session,
    project: Project,
    to_status: str,
    user: User,
    updates: Optional[Dict[str, Any]] = None,
    proposal_present: Optional[bool] = None,
) -> Project:
    """
    Move a project to ``to_status`` through the workflow table.

    Args:
        db: Database session
        project: Project freshly loaded by the caller
        to_status: Target status
        user: Acting user; their role is checked against the table
        updates: Extra column updates written together with the status
        proposal_present: Override for the proposal check, used when the
            proposal is being attached in the same request

    Returns:
        The updated project

    Raises:
        InvalidTransition, RoleNotPermitted, ProposalRequired,
        MissingAssignment, InsufficientMaterials
    """
    from_status = project.status
    if proposal_present is None:
        proposal_present = has_proposal(project)
    auto_updates = require_transition(from_status, to_status, user.role, proposal_present, project)

    if (from_status, to_status) == (ProjectStatus.PROPOSAL_SENT, ProjectStatus.ACCEPTED):
        _reserve_on_accept(db, project)
    elif (from_status, to_status) == (ProjectStatus.IN_PROGRESS, ProjectStatus.COMPLETED):
        ledger.consume_project_materials(db, project)

    now = datetime.now(timezone.utc)
    if to_status == ProjectStatus.ARCHIVED:
        project.archived_from_status = from_status
        project.deleted_at = now
    elif from_status == ProjectStatus.ARCHIVED:
        project.archived_from_status = None
        project.deleted_at = None

    apply_transition(project, to_status, auto_updates)
    for key, value in (updates or {}).items():
        setattr(project, key, value)
    project.updated_at = now
    log_activity(
        db,
        user.id,
        ActivityType.STATUS_CHANGED,
        f'Project "{project.project_name}" moved from {from_status} to {to_status}',
        {"project_id": str(project.id), "from": from_status, "to": to_status},
        commit=False,
    )
    db.commit()
    db.refresh(project)
    logger.info("project_transitioned", project_id=str(project.id), from_status=from_status, to_status=to_status, user_id=str(user.id))
    return project


def cancel_project(db: Session, project: Project, user: User, reason: Optional[str] = None) -> Project:
    """Cancel an in-flight project and return its materials to stock."""
    if project.status not in CANCELLABLE_STATUSES:
        raise InvalidTransition("Only projects under review, accepted, or in-progress can be cancelled")
    is_client = project.client_id == user.id or project.user_id == user.id
    is_contractor = project.contractor_id == user.id
    if not (is_client or is_contractor or user.role == UserRole.ADMIN):
        raise RoleNotPermitted("Only the client, the contractor or an admin can cancel this project")

    from_status = project.status
    ledger.return_project_materials(db, project, reason or "Project cancelled")

    if is_contractor:
        cancelled_by = "contractor"
    elif is_client:
        cancelled_by = "client"
    else:
        cancelled_by = "admin"
    line = f"Cancelled by {cancelled_by} ({user.full_name})"
    if reason:
        line = f"{line}: {reason}"
    project.notes = f"{project.notes}\n\n{line}" if project.notes else line
    project.status = ProjectStatus.CANCELLED
    project.updated_at = datetime.now(timezone.utc)
    log_activity(
        db,
        user.id,
        ActivityType.STATUS_CHANGED,
        f'Project "{project.project_name}" cancelled',
        {"project_id": str(project.id), "from": from_status, "to": ProjectStatus.CANCELLED, "reason": reason},
        commit=False,
    )
    db.commit()
    db.refresh(project)
    logger.info("project_cancelled", project_id=str(project.id), from_status=from_status, user_id=str(user.id))
    return project
