"""
Material reservation and consumption ledger.

One ProjectMaterial row tracks one (project, warehouse material) pairing
through RESERVED -> CONSUMED -> RETURNED (or RESERVED -> CANCELLED).
Reserving does not touch warehouse stock; consuming decrements it and
returning consumed material puts it back.

Each step reads and then writes in separate statements without row locks,
so two concurrent acceptances can both pass the sufficiency check.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import InsufficientMaterials, ValidationError
from ..models.models import MaterialStatus, PricingConfig, Project, ProjectMaterial, WarehouseMaterial
from .materials import calculate_project_materials, physical_requirements


logger = structlog.get_logger(__name__)


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def check_sufficiency(
    db: Session,
    warehouse_id,
    required: Dict[str, int],
    names: Optional[Dict[str, str]] = None,
) -> List[Dict]:
    """
    Compare required quantities against current warehouse stock.

    Args:
        db: Database session
        warehouse_id: Warehouse to check
        required: Mapping of material id -> required quantity
        names: Optional mapping of material id -> display name

    Returns:
        One shortage record per material with ``available < required``.
        Materials absent from the warehouse, or inactive there, count as
        zero available.
    """
    rows = (
        db.query(WarehouseMaterial)
        .filter(
            WarehouseMaterial.warehouse_id == _as_uuid(warehouse_id),
            WarehouseMaterial.is_active.is_(True),
        )
        .all()
    )
    available_by_material = {str(wm.material_id): wm for wm in rows}
    names = names or {}

    shortages = []
    for material_id, quantity in required.items():
        wm = available_by_material.get(str(material_id))
        available = wm.quantity if wm else 0
        if available < quantity:
            name = names.get(str(material_id))
            if name is None and wm is not None and wm.material is not None:
                name = wm.material.label
            if name is None:
                config = db.query(PricingConfig).filter(PricingConfig.id == _as_uuid(material_id)).first()
                name = config.label if config else str(material_id)
            shortages.append({
                "material_id": str(material_id),
                "material_name": name,
                "required": quantity,
                "available": available,
                "shortage": quantity - available,
            })
    return shortages


def validate_material_availability(db: Session, project: Project, warehouse_id=None) -> Dict:
    """Check whether the project's warehouse can supply every physical material it needs."""
    target = warehouse_id or project.warehouse_id
    if not target:
        return {"is_available": False, "shortages": [], "warehouse_id": None}

    requirements = physical_requirements(calculate_project_materials(db, project)["materials"])
    required: Dict[str, int] = {}
    names: Dict[str, str] = {}
    for r in requirements:
        required[r.material_id] = required.get(r.material_id, 0) + r.quantity
        names[r.material_id] = r.label

    shortages = check_sufficiency(db, target, required, names)
    return {"is_available": not shortages, "shortages": shortages, "warehouse_id": str(target)}


def reserve_project_materials(db: Session, project: Project, warehouse_id=None) -> List[Dict]:
    """
    Reserve the project's materials in a warehouse.

    Creates or refreshes one RESERVED ledger row per physical material.
    Warehouse stock is left untouched until consumption. The project's
    ``materials_consumed`` flag is set here already: it means "reserved or
    consumed" and is cleared again when materials are returned.

    Raises:
        ValidationError: no warehouse is given or assigned to the project
        InsufficientMaterials: the warehouse cannot cover the requirement
    """
    target = warehouse_id or project.warehouse_id
    if not target:
        raise ValidationError("No warehouse assigned to project")
    target = _as_uuid(target)

    availability = validate_material_availability(db, project, target)
    if not availability["is_available"]:
        raise InsufficientMaterials(availability["shortages"])

    requirements = physical_requirements(calculate_project_materials(db, project)["materials"])
    now = datetime.now(timezone.utc)
    reserved = []
    for r in requirements:
        material_id = _as_uuid(r.material_id)
        wm = (
            db.query(WarehouseMaterial)
            .filter(WarehouseMaterial.warehouse_id == target, WarehouseMaterial.material_id == material_id)
            .first()
        )
        if wm is None:
            wm = WarehouseMaterial(warehouse_id=target, material_id=material_id, quantity=0, location_adjustment=0.0, is_active=True)
            db.add(wm)
            db.flush()

        line = (
            db.query(ProjectMaterial)
            .filter(ProjectMaterial.project_id == project.id, ProjectMaterial.warehouse_material_id == wm.id)
            .first()
        )
        if line is None:
            line = ProjectMaterial(project_id=project.id, warehouse_material_id=wm.id)
            db.add(line)
        line.quantity = r.quantity
        line.status = MaterialStatus.RESERVED
        line.reserved_at = now
        line.consumed_at = None
        line.returned_at = None
        reserved.append({"material_id": r.material_id, "quantity": r.quantity, "remaining_stock": wm.quantity})

    project.materials_consumed = True
    project.materials_consumed_at = now
    db.commit()
    logger.info("materials_reserved", project_id=str(project.id), warehouse_id=str(target), lines=len(reserved))
    return reserved


def consume_project_materials(db: Session, project: Project) -> List[Dict]:
    """
    Consume every RESERVED ledger row of a project, decrementing stock.

    All rows are checked before any stock is touched, so a shortfall leaves
    the ledger and stock unchanged.

    Raises:
        InsufficientMaterials: a reserved quantity exceeds current stock
    """
    lines = (
        db.query(ProjectMaterial)
        .filter(ProjectMaterial.project_id == project.id, ProjectMaterial.status == MaterialStatus.RESERVED)
        .all()
    )
    if not lines:
        logger.info("materials_consume_skipped", project_id=str(project.id), reason="no_reserved_materials")
        return []

    shortages = []
    for line in lines:
        wm = line.warehouse_material
        if wm.quantity < line.quantity:
            shortages.append({
                "material_id": str(wm.material_id),
                "material_name": wm.material.label if wm.material else str(wm.material_id),
                "required": line.quantity,
                "available": wm.quantity,
                "shortage": line.quantity - wm.quantity,
            })
    if shortages:
        raise InsufficientMaterials(shortages, message="Insufficient stock to consume reserved materials")

    now = datetime.now(timezone.utc)
    consumed = []
    for line in lines:
        wm = line.warehouse_material
        wm.quantity = wm.quantity - line.quantity
        line.status = MaterialStatus.CONSUMED
        line.consumed_at = now
        consumed.append({"material_id": str(wm.material_id), "quantity": line.quantity, "remaining_stock": wm.quantity})
    db.commit()
    logger.info("materials_consumed", project_id=str(project.id), lines=len(consumed))
    return consumed


def return_project_materials(db: Session, project: Project, reason: Optional[str] = None) -> List[Dict]:
    """
    Return a project's materials to stock.

    CONSUMED rows become RETURNED and their quantity goes back to the
    warehouse; RESERVED rows become CANCELLED. ``reason`` is stored on each
    row for the audit trail.
    """
    lines = (
        db.query(ProjectMaterial)
        .filter(
            ProjectMaterial.project_id == project.id,
            ProjectMaterial.status.in_([MaterialStatus.RESERVED, MaterialStatus.CONSUMED]),
        )
        .all()
    )
    if not lines:
        return []

    now = datetime.now(timezone.utc)
    returned = []
    for line in lines:
        wm = line.warehouse_material
        if line.status == MaterialStatus.CONSUMED:
            wm.quantity = wm.quantity + line.quantity
            new_status = MaterialStatus.RETURNED
        else:
            new_status = MaterialStatus.CANCELLED
        line.status = new_status
        line.returned_at = now
        line.notes = reason or f"Materials {new_status.lower()} on {now.isoformat()}"
        returned.append({
            "material_id": str(wm.material_id),
            "quantity": line.quantity,
            "status": new_status,
            "remaining_stock": wm.quantity,
        })

    project.materials_consumed = False
    project.materials_consumed_at = None
    db.commit()
    logger.info("materials_returned", project_id=str(project.id), lines=len(returned), reason=reason)
    return returned


def get_project_material_summary(db: Session, project_id) -> Dict:
    lines = db.query(ProjectMaterial).filter(ProjectMaterial.project_id == _as_uuid(project_id)).all()

    def _count(status: str) -> int:
        return sum(1 for line in lines if line.status == status)

    return {
        "total_materials": len(lines),
        "reserved_materials": _count(MaterialStatus.RESERVED),
        "consumed_materials": _count(MaterialStatus.CONSUMED),
        "returned_materials": _count(MaterialStatus.RETURNED),
        "cancelled_materials": _count(MaterialStatus.CANCELLED),
        "materials": [
            {
                "id": str(line.id),
                "material_name": line.warehouse_material.material.label if line.warehouse_material.material else None,
                "category": line.warehouse_material.material.category if line.warehouse_material.material else None,
                "quantity": line.quantity,
                "status": line.status,
                "reserved_at": line.reserved_at.isoformat() if line.reserved_at else None,
                "consumed_at": line.consumed_at.isoformat() if line.consumed_at else None,
                "returned_at": line.returned_at.isoformat() if line.returned_at else None,
                "notes": line.notes,
            }
            for line in lines
        ],
    }
