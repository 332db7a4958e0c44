"""
Project workflow rule table.

Every project status change is gated here: a transition is legal only if the
exact (from, to) pair appears in ``WORKFLOW_TRANSITIONS`` and the caller's
role is one of the entry's allowed roles. Callers must re-read the project
from storage before validating; nothing here touches the database.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..errors import InvalidTransition, MissingAssignment, ProposalRequired, RoleNotPermitted
from ..models.models import ProjectStatus, ProposalStatus, UserRole


@dataclass(frozen=True)
class Transition:
    from_status: str
    to_status: str
    allowed_roles: Tuple[str, ...]
    description: str
    requires_proposal: bool = False
    auto_proposal_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_status,
            "to": self.to_status,
            "allowed_roles": list(self.allowed_roles),
            "description": self.description,
            "requires_proposal": self.requires_proposal,
            "auto_proposal_status": self.auto_proposal_status,
        }


def _t(from_status: str, to_status: str, roles: Tuple[str, ...], description: str, **kwargs) -> Tuple[Tuple[str, str], Transition]:
    return (from_status, to_status), Transition(from_status, to_status, roles, description, **kwargs)


S = ProjectStatus
P = ProposalStatus

WORKFLOW_TRANSITIONS: Dict[Tuple[str, str], Transition] = dict([
    # Creation
    _t(S.DRAFT, S.ACTIVE, (UserRole.CLIENT, UserRole.ADMIN), "Make project active for personal use"),
    # Quote request
    _t(S.DRAFT, S.CLIENT_PENDING, (UserRole.CLIENT,), "Request quote from contractor"),
    _t(S.CLIENT_PENDING, S.CONTRACTOR_REVIEWING, (UserRole.ADMIN,), "Start reviewing project details"),
    _t(S.CONTRACTOR_REVIEWING, S.PROPOSAL_SENT, (UserRole.ADMIN,), "Send proposal to client",
       requires_proposal=True, auto_proposal_status=P.SENT),
    # Proposal response
    _t(S.PROPOSAL_SENT, S.ACCEPTED, (UserRole.CLIENT,), "Accept contractor's proposal",
       auto_proposal_status=P.ACCEPTED),
    _t(S.PROPOSAL_SENT, S.REJECTED, (UserRole.CLIENT,), "Reject contractor's proposal",
       auto_proposal_status=P.REJECTED),
    # Execution
    _t(S.ACCEPTED, S.IN_PROGRESS, (UserRole.ADMIN,), "Start project work"),
    _t(S.IN_PROGRESS, S.COMPLETED, (UserRole.ADMIN,), "Mark project as completed"),
    # Revision
    _t(S.REJECTED, S.CONTRACTOR_REVIEWING, (UserRole.ADMIN,), "Revise proposal based on feedback"),
    _t(S.CONTRACTOR_REVIEWING, S.REJECTED, (UserRole.ADMIN,), "Withdraw from project",
       auto_proposal_status=P.REJECTED),
    # Archive
    _t(S.COMPLETED, S.ARCHIVED, (UserRole.CLIENT, UserRole.ADMIN), "Archive completed project"),
    _t(S.REJECTED, S.ARCHIVED, (UserRole.CLIENT, UserRole.ADMIN), "Archive rejected project"),
    _t(S.ARCHIVED, S.COMPLETED, (UserRole.CLIENT, UserRole.ADMIN), "Unarchive project"),
])

# Linear happy path used for progress reporting
WORKFLOW_STEPS: List[str] = [
    S.DRAFT,
    S.CLIENT_PENDING,
    S.CONTRACTOR_REVIEWING,
    S.PROPOSAL_SENT,
    S.ACCEPTED,
    S.IN_PROGRESS,
    S.COMPLETED,
]

STATUS_DISPLAY: Dict[str, Dict[str, str]] = {
    S.DRAFT: {"label": "Draft", "description": "Project is being prepared"},
    S.ACTIVE: {"label": "Active", "description": "Project is active for personal use"},
    S.CLIENT_PENDING: {"label": "Pending Review", "description": "Waiting for contractor to review"},
    S.CONTRACTOR_REVIEWING: {"label": "Under Review", "description": "Contractor is reviewing project"},
    S.PROPOSAL_SENT: {"label": "Proposal Sent", "description": "Waiting for client response"},
    S.ACCEPTED: {"label": "Accepted", "description": "Proposal accepted, ready to start"},
    S.IN_PROGRESS: {"label": "In Progress", "description": "Work is currently underway"},
    S.COMPLETED: {"label": "Completed", "description": "Project has been completed"},
    S.REJECTED: {"label": "Rejected", "description": "Proposal was rejected"},
    S.ARCHIVED: {"label": "Archived", "description": "Project has been archived"},
    S.CANCELLED: {"label": "Cancelled", "description": "Project was cancelled"},
}


@dataclass
class WorkflowValidation:
    is_valid: bool
    error_code: Optional[str] = None
    error: Optional[str] = None
    required_fields: List[str] = field(default_factory=list)
    auto_updates: Dict[str, Any] = field(default_factory=dict)


def validate_workflow_transition(
    from_status: str,
    to_status: str,
    user_role: str,
    has_proposal: bool = False,
    project: Optional[Any] = None,
) -> WorkflowValidation:
    """
    Validate a project status change against the transition table.

    Args:
        from_status: Current project status, freshly read from storage
        to_status: Requested project status
        user_role: Role of the caller (CLIENT|ADMIN|DEVELOPER)
        has_proposal: Whether a proposal exists for the project
        project: Project snapshot used for assignment rules (needs
            ``contractor_id`` and ``client_id`` attributes)

    Returns:
        WorkflowValidation; on success ``auto_updates`` holds the auxiliary
        field updates (e.g. ``proposal_status``) to apply with the status write
    """
    transition = WORKFLOW_TRANSITIONS.get((from_status, to_status))
    if transition is None:
        return WorkflowValidation(
            is_valid=False,
            error_code=InvalidTransition.code,
            error=f"Invalid transition from {from_status} to {to_status}",
        )

    if user_role not in transition.allowed_roles:
        return WorkflowValidation(
            is_valid=False,
            error_code=RoleNotPermitted.code,
            error=f"Only {' or '.join(transition.allowed_roles)} users can perform this action",
        )

    if transition.requires_proposal and not has_proposal:
        return WorkflowValidation(
            is_valid=False,
            error_code=ProposalRequired.code,
            error="A proposal must be sent before this transition",
            required_fields=["proposal_text"],
        )

    if (from_status, to_status) == (S.PROPOSAL_SENT, S.ACCEPTED):
        if project is None or not getattr(project, "contractor_id", None):
            return WorkflowValidation(
                is_valid=False,
                error_code=MissingAssignment.code,
                error="Project must be assigned to a contractor",
            )

    if (from_status, to_status) == (S.CONTRACTOR_REVIEWING, S.PROPOSAL_SENT):
        if project is None or not getattr(project, "client_id", None):
            return WorkflowValidation(
                is_valid=False,
                error_code=MissingAssignment.code,
                error="Project must be assigned to a client",
            )

    auto_updates: Dict[str, Any] = {}
    if transition.auto_proposal_status:
        auto_updates["proposal_status"] = transition.auto_proposal_status
    return WorkflowValidation(is_valid=True, auto_updates=auto_updates)


_ERROR_CLASSES = {
    InvalidTransition.code: InvalidTransition,
    RoleNotPermitted.code: RoleNotPermitted,
    ProposalRequired.code: ProposalRequired,
    MissingAssignment.code: MissingAssignment,
}


def require_transition(
    from_status: str,
    to_status: str,
    user_role: str,
    has_proposal: bool = False,
    project: Optional[Any] = None,
) -> Dict[str, Any]:
    """Validate and raise the matching domain error on failure; returns the auto updates."""
    result = validate_workflow_transition(from_status, to_status, user_role, has_proposal, project)
    if not result.is_valid:
        raise _ERROR_CLASSES[result.error_code](result.error)
    return result.auto_updates


def apply_transition(project: Any, to_status: str, auto_updates: Dict[str, Any]) -> None:
    project.status = to_status
    for key, value in auto_updates.items():
        setattr(project, key, value)


def get_available_transitions(current_status: str, user_role: str) -> List[Transition]:
    return [
        t for (from_status, _), t in WORKFLOW_TRANSITIONS.items()
        if from_status == current_status and user_role in t.allowed_roles
    ]


def get_status_display_info(status: str) -> Optional[Dict[str, str]]:
    return STATUS_DISPLAY.get(status)


def get_workflow_progress(current_status: str) -> Dict[str, int]:
    total = len(WORKFLOW_STEPS)
    if current_status not in WORKFLOW_STEPS:
        return {"step": 0, "total_steps": total, "percentage": 0}
    step = WORKFLOW_STEPS.index(current_status) + 1
    return {"step": step, "total_steps": total, "percentage": int(step * 100 / total + 0.5)}
