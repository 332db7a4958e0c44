import uuid
from datetime import datetime, timezone
from typing import List

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, joinedload

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..errors import Conflict, NotFound, RoleNotPermitted, ValidationError
from ..models.models import (
    MaterialStatus,
    PricingConfig,
    Project,
    ProjectMaterial,
    User,
    UserRole,
    Warehouse,
    WarehouseMaterial,
)
from ..schemas.warehouses import (
    StockSuggestionApplyRequest,
    WarehouseCreate,
    WarehouseMaterialCreate,
    WarehouseMaterialResponse,
    WarehouseMaterialUpdate,
    WarehouseResponse,
    WarehouseUpdate,
)
from ..services.activity import ActivityType, log_activity
from ..services.stock import (
    ACTIVE_PROJECT_STATUSES,
    apply_stock_suggestions,
    capacity_report,
    replenish_material,
    scan_low_stock,
    smart_stock_suggestions,
)


router = APIRouter(prefix="/warehouses", tags=["warehouses"])
logger = structlog.get_logger(__name__)

stock_roles = require_roles(UserRole.ADMIN, UserRole.CLIENT)


def _get_warehouse(db: Session, warehouse_id: uuid.UUID) -> Warehouse:
    warehouse = db.query(Warehouse).filter(Warehouse.id == warehouse_id).first()
    if not warehouse:
        raise NotFound("Warehouse not found")
    return warehouse


def _require_manager(warehouse: Warehouse, user: User) -> None:
    if warehouse.created_by != user.id and user.role != UserRole.ADMIN:
        raise RoleNotPermitted("Only the warehouse creator or an admin can manage this warehouse")


def _clear_other_defaults(db: Session, keep_id=None) -> None:
    query = db.query(Warehouse).filter(Warehouse.is_default.is_(True))
    if keep_id is not None:
        query = query.filter(Warehouse.id != keep_id)
    query.update({Warehouse.is_default: False}, synchronize_session=False)


# ---------- WAREHOUSES ----------
@router.get("", response_model=List[WarehouseResponse])
def list_warehouses(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return db.query(Warehouse).order_by(Warehouse.is_default.desc(), Warehouse.name.asc()).all()


@router.post("", response_model=WarehouseResponse, status_code=201)
def create_warehouse(body: WarehouseCreate, db: Session = Depends(get_db), user: User = Depends(stock_roles)):
    if body.is_default:
        _clear_other_defaults(db)
    warehouse = Warehouse(**body.model_dump(exclude_none=True), created_by=user.id)
    db.add(warehouse)
    db.commit()
    db.refresh(warehouse)
    logger.info("warehouse_created", warehouse_id=str(warehouse.id), user_id=str(user.id))
    return warehouse


@router.get("/warnings")
def stock_warnings(db: Session = Depends(get_db), _=Depends(stock_roles)):
    warehouses = scan_low_stock(db)
    return {
        "warehouses": warehouses,
        "total_warnings": sum(len(w["warnings"]) for w in warehouses),
        "critical_warnings": sum(1 for w in warehouses for m in w["warnings"] if m["critical_level"]),
    }


@router.get("/{warehouse_id}", response_model=WarehouseResponse)
def get_warehouse(warehouse_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return _get_warehouse(db, warehouse_id)


@router.put("/{warehouse_id}", response_model=WarehouseResponse)
def update_warehouse(warehouse_id: uuid.UUID, body: WarehouseUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    warehouse = _get_warehouse(db, warehouse_id)
    _require_manager(warehouse, user)
    data = body.model_dump(exclude_unset=True)
    if data.get("is_default"):
        _clear_other_defaults(db, keep_id=warehouse.id)
    for key, value in data.items():
        setattr(warehouse, key, value)
    warehouse.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(warehouse)
    return warehouse


@router.delete("/{warehouse_id}")
def delete_warehouse(warehouse_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    warehouse = _get_warehouse(db, warehouse_id)
    _require_manager(warehouse, user)
    in_flight = (
        db.query(Project.id, Project.project_name)
        .join(ProjectMaterial, ProjectMaterial.project_id == Project.id)
        .join(WarehouseMaterial, WarehouseMaterial.id == ProjectMaterial.warehouse_material_id)
        .filter(
            WarehouseMaterial.warehouse_id == warehouse_id,
            ProjectMaterial.status == MaterialStatus.RESERVED,
            Project.status.in_(ACTIVE_PROJECT_STATUSES),
        )
        .distinct()
        .all()
    )
    if in_flight:
        raise Conflict(
            "Warehouse has materials reserved for active projects",
            extra={"projects": [{"project_id": str(pid), "project_name": name} for pid, name in in_flight]},
        )
    db.query(Project).filter(Project.warehouse_id == warehouse_id).update(
        {Project.warehouse_id: None}, synchronize_session=False
    )
    db.delete(warehouse)
    db.commit()
    logger.info("warehouse_deleted", warehouse_id=str(warehouse_id), user_id=str(user.id))
    return {"message": "Warehouse deleted successfully"}


@router.get("/{warehouse_id}/capacity")
def warehouse_capacity(warehouse_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(stock_roles)):
    return capacity_report(db, _get_warehouse(db, warehouse_id))


# ---------- STOCK ----------
@router.get("/{warehouse_id}/materials", response_model=List[WarehouseMaterialResponse])
def list_warehouse_materials(warehouse_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(stock_roles)):
    _get_warehouse(db, warehouse_id)
    return (
        db.query(WarehouseMaterial)
        .options(joinedload(WarehouseMaterial.material))
        .filter(WarehouseMaterial.warehouse_id == warehouse_id)
        .order_by(WarehouseMaterial.created_at.desc())
        .all()
    )


@router.post("/{warehouse_id}/materials", response_model=WarehouseMaterialResponse, status_code=201)
def add_warehouse_material(
    warehouse_id: uuid.UUID,
    body: WarehouseMaterialCreate,
    db: Session = Depends(get_db),
    _=Depends(stock_roles),
):
    _get_warehouse(db, warehouse_id)
    if not db.query(PricingConfig).filter(PricingConfig.id == body.material_id).first():
        raise NotFound("Material not found")

    existing = (
        db.query(WarehouseMaterial)
        .filter(WarehouseMaterial.warehouse_id == warehouse_id, WarehouseMaterial.material_id == body.material_id)
        .first()
    )
    if existing and existing.is_active:
        raise ValidationError("Material already exists in this warehouse")
    if existing:
        # Reactivate the soft-deleted row instead of violating the unique pair
        existing.quantity = body.quantity
        existing.location_adjustment = body.location_adjustment
        existing.is_active = True
        existing.updated_at = datetime.now(timezone.utc)
        row = existing
    else:
        row = WarehouseMaterial(
            warehouse_id=warehouse_id,
            material_id=body.material_id,
            quantity=body.quantity,
            location_adjustment=body.location_adjustment,
            is_active=True,
        )
        db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.put("/{warehouse_id}/materials/{warehouse_material_id}", response_model=WarehouseMaterialResponse)
def update_warehouse_material(
    warehouse_id: uuid.UUID,
    warehouse_material_id: uuid.UUID,
    body: WarehouseMaterialUpdate,
    db: Session = Depends(get_db),
    _=Depends(stock_roles),
):
    _get_warehouse(db, warehouse_id)
    row = (
        db.query(WarehouseMaterial)
        .filter(WarehouseMaterial.id == warehouse_material_id, WarehouseMaterial.warehouse_id == warehouse_id)
        .first()
    )
    if not row:
        raise NotFound("Warehouse material not found")
    row.quantity = body.quantity
    row.location_adjustment = body.location_adjustment
    if body.is_active is not None:
        row.is_active = body.is_active
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    return row


@router.post("/{warehouse_id}/materials/{material_id}/replenish")
def replenish(warehouse_id: uuid.UUID, material_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    warehouse = _get_warehouse(db, warehouse_id)
    _require_manager(warehouse, user)
    row = (
        db.query(WarehouseMaterial)
        .filter(WarehouseMaterial.warehouse_id == warehouse_id, WarehouseMaterial.material_id == material_id)
        .first()
    )
    if not row:
        raise NotFound("Material not found in warehouse")
    result = replenish_material(db, warehouse, row)
    log_activity(
        db,
        user.id,
        ActivityType.STOCK_REPLENISHED,
        result["message"],
        {"warehouse_id": str(warehouse.id), "material_id": str(material_id), "quantity": result["quantity"]},
    )
    return result


# ---------- SUGGESTIONS ----------
@router.get("/{warehouse_id}/stock-suggestions")
def get_stock_suggestions(warehouse_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(stock_roles)):
    return smart_stock_suggestions(db, _get_warehouse(db, warehouse_id))


@router.post("/{warehouse_id}/stock-suggestions")
def apply_suggestions(
    warehouse_id: uuid.UUID,
    body: StockSuggestionApplyRequest,
    db: Session = Depends(get_db),
    user: User = Depends(stock_roles),
):
    warehouse = _get_warehouse(db, warehouse_id)
    result = apply_stock_suggestions(db, warehouse, [s.model_dump() for s in body.suggestions])
    if result["summary"]["successful"]:
        log_activity(
            db,
            user.id,
            ActivityType.STOCK_REPLENISHED,
            f"{result['message']} for {warehouse.name}",
            {"warehouse_id": str(warehouse.id), **result["summary"]},
        )
    return result
