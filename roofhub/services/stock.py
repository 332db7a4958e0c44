"""
Warehouse capacity, replenishment sizing and low-stock warnings.

Capacity is volumetric and soft: it only sizes replenishment, it never
blocks a write.
"""
import math
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.models import (
    MaterialStatus,
    PricingConfig,
    Project,
    ProjectMaterial,
    ProjectStatus,
    Warehouse,
    WarehouseMaterial,
)
from .materials import (
    GUTTER,
    HARDWARE,
    INSULATION,
    LABOR,
    MATERIAL,
    SCREWS,
    VENTILATION,
    category_key,
    is_labor,
)


logger = structlog.get_logger(__name__)

# Share of the remaining capacity a single replenishment may fill
REPLENISH_CAPACITY_SHARE = 0.5

REPLENISH_SUGGESTIONS = {
    LABOR: 1,
    MATERIAL: 50,
    GUTTER: 25,
    INSULATION: 15,
    VENTILATION: 15,
    SCREWS: 150,
    HARDWARE: 150,
}
DEFAULT_REPLENISH = 10

# (warning, critical)
STOCK_THRESHOLDS: Dict[str, Tuple[int, int]] = {
    INSULATION: (5, 2),
    VENTILATION: (5, 2),
    GUTTER: (15, 8),
    SCREWS: (20, 10),
    HARDWARE: (20, 10),
}
DEFAULT_THRESHOLDS = (10, 5)

# Projects whose reservations still hold stock
ACTIVE_PROJECT_STATUSES = (
    ProjectStatus.CLIENT_PENDING,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.CONTRACTOR_REVIEWING,
    ProjectStatus.PROPOSAL_SENT,
    ProjectStatus.ACCEPTED,
)


def unit_volume(config: Optional[PricingConfig]) -> float:
    """Volume of one unit: explicit volume, else length*width*height, else 1."""
    if config is None:
        return 1.0
    if config.volume and config.volume > 0:
        return float(config.volume)
    if config.length and config.width and config.height:
        return float(config.length) * float(config.width) * float(config.height)
    return 1.0


def used_capacity(db: Session, warehouse_id) -> float:
    rows = (
        db.query(WarehouseMaterial)
        .filter(WarehouseMaterial.warehouse_id == warehouse_id, WarehouseMaterial.is_active.is_(True))
        .all()
    )
    return sum(wm.quantity * unit_volume(wm.material) for wm in rows)


def capacity_report(db: Session, warehouse: Warehouse) -> Dict:
    used = used_capacity(db, warehouse.id)
    capacity = warehouse.capacity if warehouse.capacity and warehouse.capacity > 0 else None
    return {
        "warehouse_id": str(warehouse.id),
        "capacity": capacity,
        "used_capacity": used,
        "available_capacity": (capacity - used) if capacity is not None else None,
        "utilization": round(used / capacity * 100, 2) if capacity else None,
    }


def thresholds_for(category: Optional[str]) -> Tuple[int, int]:
    return STOCK_THRESHOLDS.get(category_key(category), DEFAULT_THRESHOLDS)


def suggest_replenishment(db: Session, warehouse: Warehouse, wm: WarehouseMaterial) -> Dict:
    """
    Size a restock for one warehouse material.

    The per-category suggestion is clamped to half of what still fits in the
    warehouse. Warehouses without a positive capacity are not clamped.

    Raises:
        ValidationError: the warehouse has no room left for even one unit
            within the allowed share
    """
    suggested = REPLENISH_SUGGESTIONS.get(category_key(wm.material.category if wm.material else None), DEFAULT_REPLENISH)
    per_unit = unit_volume(wm.material)

    if not warehouse.capacity or warehouse.capacity <= 0:
        return {
            "suggested": suggested,
            "quantity": suggested,
            "unit_volume": per_unit,
            "available_capacity": None,
            "max_by_capacity": None,
        }

    available = float(warehouse.capacity) - used_capacity(db, warehouse.id)
    max_by_capacity = math.floor(available / per_unit) if available > 0 else 0
    safe = math.floor(max_by_capacity * REPLENISH_CAPACITY_SHARE)
    if safe <= 0:
        raise ValidationError(
            "Warehouse capacity exhausted for this material",
        )
    return {
        "suggested": suggested,
        "quantity": min(suggested, safe),
        "unit_volume": per_unit,
        "available_capacity": available,
        "max_by_capacity": max_by_capacity,
    }


def replenish_material(db: Session, warehouse: Warehouse, wm: WarehouseMaterial) -> Dict:
    sizing = suggest_replenishment(db, warehouse, wm)
    quantity = sizing["quantity"]
    wm.quantity = wm.quantity + quantity
    db.commit()
    db.refresh(wm)
    name = wm.material.name if wm.material else str(wm.material_id)
    logger.info("material_replenished", warehouse_id=str(warehouse.id), material_id=str(wm.material_id), quantity=quantity, new_stock=wm.quantity)
    return {
        "quantity": quantity,
        "new_stock": wm.quantity,
        "message": f"Replenished {quantity} units of {name}",
        **{k: v for k, v in sizing.items() if k != "quantity"},
    }


def _reservations_by_warehouse_material(db: Session) -> Dict[str, List[Dict]]:
    rows = (
        db.query(ProjectMaterial, Project)
        .join(Project, Project.id == ProjectMaterial.project_id)
        .filter(
            Project.status.in_(ACTIVE_PROJECT_STATUSES),
            ProjectMaterial.status == MaterialStatus.RESERVED,
        )
        .all()
    )
    by_wm: Dict[str, List[Dict]] = {}
    for line, project in rows:
        by_wm.setdefault(str(line.warehouse_material_id), []).append({
            "project_id": str(project.id),
            "project_name": project.project_name or f"Project {project.id}",
            "quantity": line.quantity,
        })
    return by_wm


def scan_low_stock(db: Session) -> List[Dict]:
    """
    Low-stock warnings for every warehouse.

    Labor materials are skipped. A material is reported when its current
    stock is at or below its category's warning threshold; ``critical_level``
    marks stock at or below the critical threshold. Reserved stock only
    counts RESERVED ledger rows of projects still in flight.

    Returns:
        One entry per warehouse with at least one warning, default warehouse
        first then by name
    """
    warehouses = db.query(Warehouse).order_by(Warehouse.is_default.desc(), Warehouse.name.asc()).all()
    reservations = _reservations_by_warehouse_material(db)

    results = []
    for warehouse in warehouses:
        materials = (
            db.query(WarehouseMaterial)
            .filter(WarehouseMaterial.warehouse_id == warehouse.id, WarehouseMaterial.is_active.is_(True))
            .all()
        )
        warnings = []
        for wm in materials:
            category = wm.material.category if wm.material else None
            if is_labor(category):
                continue
            warning_threshold, critical_threshold = thresholds_for(category)
            current = wm.quantity
            if current > warning_threshold and current > critical_threshold:
                continue
            projects_using = reservations.get(str(wm.id), [])
            reserved = sum(p["quantity"] for p in projects_using)
            warnings.append({
                "material_id": str(wm.material_id),
                "material_name": wm.material.name if wm.material else str(wm.material_id),
                "category": category,
                "current_stock": current,
                "warning_threshold": warning_threshold,
                "critical_threshold": critical_threshold,
                "reserved_for_projects": reserved,
                "projected_stock": max(0, current - reserved),
                "critical_level": current <= critical_threshold,
                "projects_using": projects_using,
            })
        if warnings:
            results.append({
                "warehouse_id": str(warehouse.id),
                "warehouse_name": warehouse.name,
                "warnings": warnings,
            })
    return results


# Demand planning: 2x reserved plus one average project as buffer, then 20% growth
SAFETY_RESERVED_FACTOR = 2
GROWTH_FACTOR = 0.2
MIN_STOCK_RESERVED_FACTOR = 1.5
MIN_STOCK_FLOOR = 10
PRIORITY_ORDER = {"critical": 0, "warning": 1}


def _demand_based_stock(reserved: int, projects_using: List[Dict]) -> int:
    average = sum(p["quantity"] for p in projects_using) / len(projects_using) if projects_using else 0
    buffer = reserved * SAFETY_RESERVED_FACTOR + average
    return math.ceil(reserved + buffer + buffer * GROWTH_FACTOR)


def _suggestion_reason(critical: bool, reserved: int, projects: int, utilization: Optional[float]) -> str:
    reasons = []
    if critical:
        reasons.append("Critical stock level detected")
    if reserved > 0:
        reasons.append(f"{reserved} units reserved for active projects")
    if projects:
        reasons.append(f"Used by {projects} project(s)")
    if utilization is not None and utilization > 80:
        reasons.append("High warehouse capacity utilization")
    return ", ".join(reasons) or "Stock at or below warning level"


def _confidence(critical: bool, projects: int, utilization: Optional[float]) -> float:
    confidence = 0.5
    if critical:
        confidence += 0.3
    if projects:
        confidence += 0.2
    if utilization is not None and utilization > 90:
        confidence -= 0.2
    return round(max(0.0, min(1.0, confidence)), 2)


def smart_stock_suggestions(db: Session, warehouse: Warehouse) -> Dict:
    """
    Restock plan for the low-stock materials of one warehouse.

    Each warned material gets a target stock sized from its reserved demand,
    capped by what still fits in the warehouse and floored at
    ``max(1.5 * reserved, 10)``. Only materials that need stock added are
    returned, critical ones first, then by confidence.
    """
    report = capacity_report(db, warehouse)
    available = max(0.0, report["available_capacity"]) if report["capacity"] is not None else None
    utilization = report["utilization"]
    reservations = _reservations_by_warehouse_material(db)

    rows = (
        db.query(WarehouseMaterial)
        .filter(WarehouseMaterial.warehouse_id == warehouse.id, WarehouseMaterial.is_active.is_(True))
        .all()
    )
    suggestions = []
    for wm in rows:
        category = wm.material.category if wm.material else None
        if is_labor(category):
            continue
        warning_threshold, critical_threshold = thresholds_for(category)
        current = wm.quantity
        if current > warning_threshold:
            continue

        projects_using = reservations.get(str(wm.id), [])
        reserved = sum(p["quantity"] for p in projects_using)
        critical = current <= critical_threshold

        target = _demand_based_stock(reserved, projects_using)
        if available is not None:
            target = min(target, math.floor(available / unit_volume(wm.material)))
        target = max(target, math.ceil(max(reserved * MIN_STOCK_RESERVED_FACTOR, MIN_STOCK_FLOOR)))

        to_add = max(0, target - current)
        if to_add <= 0:
            continue
        suggestions.append({
            "material_id": str(wm.material_id),
            "material_name": wm.material.label if wm.material else str(wm.material_id),
            "current_stock": current,
            "reserved_for_projects": reserved,
            "suggested_stock": target,
            "stock_to_add": to_add,
            "reason": _suggestion_reason(critical, reserved, len(projects_using), utilization),
            "priority": "critical" if critical else "warning",
            "confidence": _confidence(critical, len(projects_using), utilization),
        })

    suggestions.sort(key=lambda s: (PRIORITY_ORDER[s["priority"]], -s["confidence"]))
    return {
        "warehouse_id": str(warehouse.id),
        "warehouse_name": warehouse.name,
        "suggestions": suggestions,
        "total_suggestions": len(suggestions),
        "total_stock_to_add": sum(s["stock_to_add"] for s in suggestions),
    }


def apply_stock_suggestions(db: Session, warehouse: Warehouse, suggestions: List[Dict]) -> Dict:
    """
    Set each suggested material's stock to its ``suggested_stock``.

    Materials missing from the warehouse (or inactive there) are reported as
    failures; the rest are written in one commit.
    """
    results = []
    for suggestion in suggestions:
        wm = (
            db.query(WarehouseMaterial)
            .filter(
                WarehouseMaterial.warehouse_id == warehouse.id,
                WarehouseMaterial.material_id == suggestion["material_id"],
                WarehouseMaterial.is_active.is_(True),
            )
            .first()
        )
        if wm is None:
            results.append({
                "material_id": str(suggestion["material_id"]),
                "success": False,
                "error": "Material not found in warehouse",
            })
            continue
        previous = wm.quantity
        wm.quantity = suggestion["suggested_stock"]
        results.append({
            "material_id": str(wm.material_id),
            "material_name": wm.material.label if wm.material else None,
            "previous_stock": previous,
            "new_stock": wm.quantity,
            "stock_added": wm.quantity - previous,
            "success": True,
        })
    db.commit()

    successful = sum(1 for r in results if r["success"])
    failed = len(results) - successful
    logger.info("stock_suggestions_applied", warehouse_id=str(warehouse.id), successful=successful, failed=failed)
    message = f"Successfully applied {successful} stock suggestions"
    if failed:
        message = f"{message}, {failed} failed"
    return {
        "results": results,
        "summary": {"total_processed": len(results), "successful": successful, "failed": failed},
        "message": message,
    }
