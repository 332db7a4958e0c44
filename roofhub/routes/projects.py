import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..errors import Conflict, NotFound, RoleNotPermitted, ValidationError
from ..models.models import Project, ProjectStatus, User, UserRole, Warehouse
from ..schemas.projects import (
    AssignRequest,
    CancelRequest,
    ContractorResponseRequest,
    MaterialReturnRequest,
    ProjectCreate,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdate,
    SendToContractorRequest,
    StatusUpdate,
)
from ..services import ledger
from ..services.activity import ActivityType, log_activity
from ..services.lifecycle import cancel_project, transition_project
from ..services.materials import calculate_project_materials
from ..services.notifications import NotificationType, notify_project_event
from ..services.stock import ACTIVE_PROJECT_STATUSES
from ..services.workflow import get_available_transitions, get_status_display_info, get_workflow_progress


router = APIRouter(prefix="/projects", tags=["projects"])
logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = {
    "created_at": Project.created_at,
    "updated_at": Project.updated_at,
    "project_name": Project.project_name,
    "total_cost": Project.total_cost,
    "status": Project.status,
}
INITIAL_STATUSES = (ProjectStatus.DRAFT, ProjectStatus.ACTIVE)


def _get_project(db: Session, project_id: uuid.UUID) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise NotFound("Project not found")
    return project


def _is_party(project: Project, user: User) -> bool:
    return user.id in (project.user_id, project.contractor_id, project.client_id)


def _get_visible_project(db: Session, project_id: uuid.UUID, user: User) -> Project:
    project = _get_project(db, project_id)
    # Projects outside the caller's reach look the same as missing ones
    if not _is_party(project, user):
        raise NotFound("Project not found")
    return project


def _get_owned_project(db: Session, project_id: uuid.UUID, user: User) -> Project:
    project = _get_project(db, project_id)
    if project.user_id != user.id:
        raise NotFound("Project not found")
    return project


def _get_contractor_project(db: Session, project_id: uuid.UUID, user: User) -> Project:
    project = _get_visible_project(db, project_id, user)
    if project.contractor_id != user.id:
        raise RoleNotPermitted("Only the assigned contractor can perform this action")
    return project


def _client_of(db: Session, project: Project) -> Optional[User]:
    client_id = project.client_id or project.user_id
    return db.query(User).filter(User.id == client_id).first()


def _contractor_of(db: Session, project: Project) -> Optional[User]:
    if not project.contractor_id:
        return None
    return db.query(User).filter(User.id == project.contractor_id).first()


def _counterparty(db: Session, project: Project, user: User) -> Optional[User]:
    if user.id == project.contractor_id:
        return _client_of(db, project)
    other = _contractor_of(db, project)
    if other is None or other.id == user.id:
        return None
    return other


def _check_warehouse(db: Session, warehouse_id: Optional[uuid.UUID]) -> None:
    if warehouse_id and not db.query(Warehouse).filter(Warehouse.id == warehouse_id).first():
        raise ValidationError("Warehouse not found")


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(body: ProjectCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    initial = body.status or ProjectStatus.DRAFT
    if initial not in INITIAL_STATUSES:
        raise ValidationError(f"New projects must start as {' or '.join(INITIAL_STATUSES)}")
    _check_warehouse(db, body.warehouse_id)
    data = body.model_dump(exclude_unset=True, exclude={"status"})
    data = {k: v for k, v in data.items() if v is not None}
    project = Project(user_id=user.id, status=initial, **data)
    db.add(project)
    db.flush()
    log_activity(
        db,
        user.id,
        ActivityType.PROJECT_CREATED,
        f'Project "{project.project_name}" created',
        {"project_id": str(project.id)},
        commit=False,
    )
    db.commit()
    db.refresh(project)
    return project


@router.get("", response_model=ProjectListResponse)
def list_projects(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Project).filter(Project.user_id == user.id, Project.deleted_at.is_(None))
    if status_filter and status_filter != "ALL":
        query = query.filter(Project.status == status_filter)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Project.project_name.ilike(like), Project.client_name.ilike(like)))
    total = query.count()
    column = SORTABLE_FIELDS.get(sort_by, Project.created_at)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    items = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


@router.get("/stats")
def project_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    base = db.query(Project).filter(Project.user_id == user.id)
    total = base.count()
    by_status = dict(
        db.query(Project.status, func.count(Project.id))
        .filter(Project.user_id == user.id)
        .group_by(Project.status)
        .all()
    )
    total_value = db.query(func.coalesce(func.sum(Project.total_cost), 0.0)).filter(Project.user_id == user.id).scalar() or 0.0
    return {
        "total_projects": total,
        "active_projects": by_status.get(ProjectStatus.ACTIVE, 0),
        "completed_projects": by_status.get(ProjectStatus.COMPLETED, 0),
        "by_status": by_status,
        "total_value": float(total_value),
        "average_value": float(total_value) / total if total else 0.0,
    }


@router.get("/archived", response_model=ProjectListResponse)
def list_archived(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Project).filter(Project.user_id == user.id, Project.status == ProjectStatus.ARCHIVED)
    total = query.count()
    items = query.order_by(Project.deleted_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": items, "total": total, "page": page, "limit": limit, "total_pages": (total + limit - 1) // limit}


@router.get("/assigned", response_model=ProjectListResponse)
def list_assigned(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.ADMIN)),
):
    # Drafts never reach the contractor view
    query = db.query(Project).filter(Project.contractor_id == user.id, Project.status != ProjectStatus.DRAFT)
    if status_filter and status_filter != "ALL":
        query = query.filter(Project.status == status_filter)
    total = query.count()
    items = query.order_by(Project.updated_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": items, "total": total, "page": page, "limit": limit, "total_pages": (total + limit - 1) // limit}


def _hand_off(db: Session, project: Project, contractor_id: uuid.UUID, user: User, note: Optional[str] = None) -> Project:
    contractor = db.query(User).filter(User.id == contractor_id, User.role == UserRole.ADMIN, User.is_active.is_(True)).first()
    if not contractor:
        raise NotFound("Contractor not found")
    if project.contractor_id and project.contractor_id != contractor.id:
        raise Conflict("Project is already assigned to a contractor")
    now = datetime.now(timezone.utc)
    project.contractor_id = contractor.id
    project.client_id = project.user_id
    project = transition_project(
        db,
        project,
        ProjectStatus.CLIENT_PENDING,
        user,
        updates={
            "assigned_at": now,
            "sent_to_contractor_at": now,
            "contractor_status": "pending",
            "proposal_status": "DRAFT",
            "handoff_note": note,
        },
    )
    notify_project_event(db, NotificationType.PROJECT_ASSIGNED, project, user, contractor)
    return project


@router.post("/assign", response_model=ProjectResponse)
def assign_project(body: AssignRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_owned_project(db, body.project_id, user)
    try:
        return _hand_off(db, project, body.contractor_id, user)
    except Exception:
        db.rollback()
        raise


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_visible_project(db, project_id, user)


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(project_id: uuid.UUID, body: ProjectUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    if user.id not in (project.user_id, project.contractor_id):
        raise NotFound("Project not found")
    if project.status == ProjectStatus.ARCHIVED:
        raise ValidationError("Archived projects cannot be edited")
    data = body.model_dump(exclude_unset=True)
    if "warehouse_id" in data:
        _check_warehouse(db, data["warehouse_id"])
    for key, value in data.items():
        setattr(project, key, value)
    project.updated_at = datetime.now(timezone.utc)
    log_activity(
        db,
        user.id,
        ActivityType.PROJECT_UPDATED,
        f'Project "{project.project_name}" updated',
        {"project_id": str(project.id), "fields": sorted(data.keys())},
        commit=False,
    )
    db.commit()
    db.refresh(project)
    return project


@router.delete("/{project_id}")
def archive_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_owned_project(db, project_id, user)
    if project.status == ProjectStatus.ARCHIVED:
        raise ValidationError("Project is already archived")
    if project.status in ACTIVE_PROJECT_STATUSES:
        raise ValidationError("Projects in progress with a contractor must be cancelled before archiving")
    project.archived_from_status = project.status
    project.status = ProjectStatus.ARCHIVED
    project.deleted_at = datetime.now(timezone.utc)
    log_activity(
        db,
        user.id,
        ActivityType.PROJECT_ARCHIVED,
        f'Project "{project.project_name}" archived',
        {"project_id": str(project.id), "from": project.archived_from_status},
        commit=False,
    )
    db.commit()
    return {"message": "Project archived successfully"}


@router.post("/{project_id}/unarchive", response_model=ProjectResponse)
def unarchive_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.ARCHIVED:
        raise ValidationError("Project is not archived")
    project.status = project.archived_from_status or ProjectStatus.ACTIVE
    project.archived_from_status = None
    project.deleted_at = None
    db.commit()
    db.refresh(project)
    return project


@router.delete("/{project_id}/permanent")
def permanently_delete_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.ARCHIVED:
        raise ValidationError("Only archived projects can be permanently deleted")
    name = project.project_name
    db.delete(project)
    log_activity(
        db,
        user.id,
        ActivityType.PROJECT_DELETED,
        f'Project "{name}" permanently deleted',
        {"project_id": str(project_id)},
        commit=False,
    )
    db.commit()
    return {"message": "Project permanently deleted"}


@router.patch("/{project_id}/status", response_model=ProjectResponse)
def update_project_status(project_id: uuid.UUID, body: StatusUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_visible_project(db, project_id, user)
    project = transition_project(db, project, body.status, user)
    notify_project_event(
        db,
        NotificationType.STATUS_CHANGE,
        project,
        user,
        _counterparty(db, project, user),
        status=project.status,
    )
    return project


@router.get("/{project_id}/transitions")
def project_transitions(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_visible_project(db, project_id, user)
    return {
        "status": project.status,
        "display": get_status_display_info(project.status),
        "progress": get_workflow_progress(project.status),
        "available": [t.to_dict() for t in get_available_transitions(project.status, user.role)],
    }


@router.post("/{project_id}/send-to-contractor", response_model=ProjectResponse)
def send_to_contractor(project_id: uuid.UUID, body: SendToContractorRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_owned_project(db, project_id, user)
    try:
        return _hand_off(db, project, body.contractor_id, user, note=body.note)
    except Exception:
        db.rollback()
        raise


def _approve(db: Session, project: Project, user: User) -> Project:
    project = transition_project(db, project, ProjectStatus.CONTRACTOR_REVIEWING, user, updates={"contractor_status": "reviewing"})
    notify_project_event(db, NotificationType.STATUS_CHANGE, project, user, _client_of(db, project), status=project.status)
    return project


def _decline(db: Session, project: Project, user: User) -> Project:
    project = transition_project(db, project, ProjectStatus.REJECTED, user, updates={"contractor_status": "declined"})
    notify_project_event(db, NotificationType.STATUS_CHANGE, project, user, _client_of(db, project), status=project.status)
    return project


@router.post("/{project_id}/approve", response_model=ProjectResponse)
def approve_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _approve(db, _get_contractor_project(db, project_id, user), user)


@router.post("/{project_id}/decline", response_model=ProjectResponse)
def decline_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _decline(db, _get_contractor_project(db, project_id, user), user)


@router.post("/{project_id}/contractor-response", response_model=ProjectResponse)
def contractor_response(
    project_id: uuid.UUID,
    body: ContractorResponseRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = _get_contractor_project(db, project_id, user)
    if body.action == "accept":
        return _approve(db, project, user)
    return _decline(db, project, user)


@router.post("/{project_id}/start-contract", response_model=ProjectResponse)
def start_contract(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_contractor_project(db, project_id, user)
    project = transition_project(db, project, ProjectStatus.IN_PROGRESS, user, updates={"contractor_status": "in_progress"})
    notify_project_event(db, NotificationType.STATUS_CHANGE, project, user, _client_of(db, project), status=project.status)
    return project


@router.post("/{project_id}/finish", response_model=ProjectResponse)
def finish_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_contractor_project(db, project_id, user)
    project = transition_project(db, project, ProjectStatus.COMPLETED, user, updates={"contractor_status": "completed"})
    notify_project_event(db, NotificationType.PROJECT_COMPLETED, project, user, _client_of(db, project))
    return project


@router.post("/{project_id}/cancel", response_model=ProjectResponse)
def cancel(project_id: uuid.UUID, body: CancelRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    if not _is_party(project, user) and user.role != UserRole.ADMIN:
        raise NotFound("Project not found")
    project = cancel_project(db, project, user, body.reason)
    notify_project_event(
        db,
        NotificationType.PROJECT_CANCELLED,
        project,
        user,
        _counterparty(db, project, user),
        reason=body.reason,
    )
    return project


@router.get("/{project_id}/materials")
def project_materials(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_visible_project(db, project_id, user)
    return ledger.get_project_material_summary(db, project.id)


@router.get("/{project_id}/materials/requirements")
def project_material_requirements(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_visible_project(db, project_id, user)
    calculation = calculate_project_materials(db, project)
    availability = ledger.validate_material_availability(db, project) if project.warehouse_id else None
    return {
        "materials": [r.to_dict() for r in calculation["materials"]],
        "total_cost": calculation["total_cost"],
        "warehouse_id": calculation["warehouse_id"],
        "availability": availability,
    }


@router.post("/{project_id}/materials/return")
def return_materials(project_id: uuid.UUID, body: MaterialReturnRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    if user.role != UserRole.ADMIN and project.contractor_id != user.id:
        raise RoleNotPermitted("Only the assigned contractor or an admin can return materials")
    returned = ledger.return_project_materials(db, project, body.reason)
    log_activity(
        db,
        user.id,
        ActivityType.MATERIALS_RETURNED,
        f'Materials returned for project "{project.project_name}"',
        {"project_id": str(project.id), "reason": body.reason, "lines": len(returned)},
    )
    return {
        "message": "Materials returned" if returned else "No materials to return for project",
        "returned": returned,
    }
