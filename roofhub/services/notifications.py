"""
Notification dispatcher for project workflow events.

Writes an in-app notification row and, for a subset of events, sends an
email. Dispatch is fire-and-forget: any failure is logged and swallowed so
it never undoes the state change that triggered it.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification, Project, User
from .mailer import send_email


logger = structlog.get_logger(__name__)


class NotificationType:
    STATUS_CHANGE = "status_change"
    PROPOSAL_SENT = "proposal_sent"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    PROJECT_ASSIGNED = "project_assigned"
    PROJECT_COMPLETED = "project_completed"
    PROJECT_CANCELLED = "project_cancelled"
    SYSTEM = "system"

    ALL = (
        STATUS_CHANGE,
        PROPOSAL_SENT,
        PROPOSAL_ACCEPTED,
        PROPOSAL_REJECTED,
        PROJECT_ASSIGNED,
        PROJECT_COMPLETED,
        PROJECT_CANCELLED,
        SYSTEM,
    )


# Events that also go out by email
EMAIL_EVENTS = {
    NotificationType.PROPOSAL_REJECTED,
    NotificationType.PROJECT_COMPLETED,
    NotificationType.PROJECT_CANCELLED,
    NotificationType.PROJECT_ASSIGNED,
}


@dataclass
class ProjectEvent:
    type: str
    project_id: str
    project_name: str
    from_user_name: str
    to_user_id: str
    to_user_name: str
    to_user_email: Optional[str]
    status: Optional[str] = None
    reason: Optional[str] = None


def _title(event: ProjectEvent) -> str:
    titles = {
        NotificationType.STATUS_CHANGE: "Project Status Updated",
        NotificationType.PROPOSAL_SENT: "New Proposal Received",
        NotificationType.PROPOSAL_ACCEPTED: "Proposal Accepted",
        NotificationType.PROPOSAL_REJECTED: "Proposal Update",
        NotificationType.PROJECT_ASSIGNED: "Project Ready for Review",
        NotificationType.PROJECT_COMPLETED: "Project Completed",
        NotificationType.PROJECT_CANCELLED: "Project Cancelled",
    }
    return f"{titles.get(event.type, 'Project Update')}: {event.project_name}"


def _message(event: ProjectEvent) -> str:
    name = event.project_name
    who = event.from_user_name
    if event.type == NotificationType.STATUS_CHANGE:
        return f'Project "{name}" status changed to {event.status}'
    if event.type == NotificationType.PROPOSAL_SENT:
        return f'New proposal received for "{name}" from {who}'
    if event.type == NotificationType.PROPOSAL_ACCEPTED:
        return f'Your proposal for "{name}" was accepted by {who}'
    if event.type == NotificationType.PROPOSAL_REJECTED:
        return f'Your proposal for "{name}" was not accepted by {who}'
    if event.type == NotificationType.PROJECT_ASSIGNED:
        return f'Project "{name}" ready for review from {who}'
    if event.type == NotificationType.PROJECT_COMPLETED:
        return f'Project "{name}" has been completed by {who}'
    if event.type == NotificationType.PROJECT_CANCELLED:
        suffix = f" Reason: {event.reason}" if event.reason else ""
        return f'Project "{name}" has been cancelled by {who}.{suffix}'
    return f'Update for project "{name}"'


def _action_url(event: ProjectEvent) -> str:
    if event.type in (NotificationType.PROJECT_ASSIGNED, NotificationType.PROJECT_CANCELLED):
        return "/dashboard?tab=contractor-projects"
    return "/dashboard?tab=proposals"


def _email_text(event: ProjectEvent, message: str) -> str:
    link = f"{settings.public_base_url}{_action_url(event)}"
    return f"Hello {event.to_user_name},\n\n{message}\n\nView project: {link}\n"


def dispatch(db: Session, event: ProjectEvent) -> Optional[Notification]:
    """
    Record and deliver one project event.

    Args:
        db: Database session; any pending work of the caller must already be
            committed
        event: Event description

    Returns:
        The created Notification, or None when recording failed
    """
    message = _message(event)
    title = _title(event)
    notification = None
    try:
        notification = Notification(
            user_id=event.to_user_id,
            type=event.type,
            title=title,
            message=message,
            project_id=event.project_id,
            project_name=event.project_name,
            action_url=_action_url(event),
            read=False,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except Exception as e:
        db.rollback()
        notification = None
        logger.warning("notification_create_failed", type=event.type, project_id=str(event.project_id), error=str(e))

    if event.type in EMAIL_EVENTS and event.to_user_email:
        try:
            send_email(event.to_user_email, title, _email_text(event, message))
        except Exception as e:
            logger.warning("notification_email_failed", type=event.type, project_id=str(event.project_id), error=str(e))
    return notification


def notify_project_event(
    db: Session,
    event_type: str,
    project: Project,
    from_user: User,
    to_user: Optional[User],
    status: Optional[str] = None,
    reason: Optional[str] = None,
) -> Optional[Notification]:
    """Dispatch an event from one party of a project to the other; no-op without a recipient."""
    if to_user is None:
        return None
    return dispatch(
        db,
        ProjectEvent(
            type=event_type,
            project_id=project.id,
            project_name=project.project_name,
            from_user_name=from_user.full_name,
            to_user_id=to_user.id,
            to_user_name=to_user.full_name,
            to_user_email=to_user.email,
            status=status,
            reason=reason,
        ),
    )
