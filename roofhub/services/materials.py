"""
Material requirement calculation for a project.

Quantities are derived from the project's measurements and the active
pricing catalogue. Category names are matched case-insensitively and in
either singular or plural form.
"""
import math
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.models import PricingConfig, Project


# Canonical category keys
MATERIAL = "material"
GUTTER = "gutter"
RIDGE = "ridge"
SCREWS = "screws"
HARDWARE = "hardware"
INSULATION = "insulation"
VENTILATION = "ventilation"
LABOR = "labor"

_CATEGORY_ALIASES = {
    "material": MATERIAL,
    "materials": MATERIAL,
    "gutter": GUTTER,
    "gutters": GUTTER,
    "ridge": RIDGE,
    "ridges": RIDGE,
    "screw": SCREWS,
    "screws": SCREWS,
    "screw_types": SCREWS,
    "hardware": HARDWARE,
    "insulation": INSULATION,
    "ventilation": VENTILATION,
    "labor": LABOR,
    "labour": LABOR,
}

KNOWN_CATEGORIES = frozenset(_CATEGORY_ALIASES.values())

MAIN_WASTE = 1.10
LINEAR_WASTE = 1.05
SCREWS_PER_SQM = 4


def category_key(category: Optional[str]) -> str:
    raw = (category or "").strip().lower()
    return _CATEGORY_ALIASES.get(raw, raw)


def is_labor(category: Optional[str]) -> bool:
    return category_key(category) == LABOR


@dataclass
class MaterialRequirement:
    material_id: str
    category: str
    name: str
    label: str
    quantity: int
    unit: str
    price: float
    total_cost: float

    def to_dict(self) -> dict:
        return asdict(self)


def _requirement(config: PricingConfig, quantity: int) -> MaterialRequirement:
    price = float(config.price or 0)
    return MaterialRequirement(
        material_id=str(config.id),
        category=config.category,
        name=config.name,
        label=config.label,
        quantity=quantity,
        unit=config.unit,
        price=price,
        total_cost=quantity * price,
    )


def _find(configs: List[PricingConfig], key: str, name_hint: Optional[str] = None) -> Optional[PricingConfig]:
    hint = (name_hint or "").strip().lower()
    for config in configs:
        if category_key(config.category) != key:
            continue
        if name_hint is not None and hint not in (config.name or "").lower():
            continue
        return config
    return None


def calculate_project_materials(db: Session, project: Project) -> Dict:
    """
    Calculate the materials a project needs.

    Args:
        db: Database session
        project: Project with measurements and calculated area

    Returns:
        Dict with ``materials`` (list of MaterialRequirement), ``total_cost``
        and ``warehouse_id``
    """
    configs = (
        db.query(PricingConfig)
        .filter(PricingConfig.is_active.is_(True))
        .order_by(PricingConfig.category.asc(), PricingConfig.name.asc())
        .all()
    )

    area = float(project.area or 0)
    gutter_length = float(project.gutter_length_a or 0) + float(project.gutter_length_c or 0)
    ridge_length = float(project.ridge_length or 0)
    requirements: List[MaterialRequirement] = []

    if project.material:
        main = _find(configs, MATERIAL, project.material)
        if main:
            requirements.append(_requirement(main, math.ceil(area * MAIN_WASTE)))

    if gutter_length > 0:
        gutter = _find(configs, GUTTER, project.gutter_size or "")
        if gutter:
            requirements.append(_requirement(gutter, math.ceil(gutter_length * LINEAR_WASTE)))

    if ridge_length > 0:
        ridge = _find(configs, RIDGE, project.ridge_type or "")
        if ridge:
            requirements.append(_requirement(ridge, math.ceil(ridge_length * LINEAR_WASTE)))

    screws = _find(configs, SCREWS)
    if screws:
        requirements.append(_requirement(screws, math.ceil(area * SCREWS_PER_SQM * MAIN_WASTE)))

    thickness = (project.insulation_thickness or "").strip()
    if thickness and thickness.lower() != "none":
        insulation = _find(configs, INSULATION, thickness)
        if insulation:
            requirements.append(_requirement(insulation, math.ceil(area * MAIN_WASTE)))

    if (project.ventilation_pieces or 0) > 0:
        ventilation = _find(configs, VENTILATION)
        if ventilation:
            requirements.append(_requirement(ventilation, int(project.ventilation_pieces)))

    labor = _find(configs, LABOR)
    if labor:
        requirements.append(_requirement(labor, 1))

    return {
        "materials": requirements,
        "total_cost": sum(r.total_cost for r in requirements),
        "warehouse_id": str(project.warehouse_id) if project.warehouse_id else None,
    }


def physical_requirements(requirements: List[MaterialRequirement]) -> List[MaterialRequirement]:
    """Requirements that draw on warehouse stock; labor is a cost line only."""
    return [r for r in requirements if not is_labor(r.category)]
