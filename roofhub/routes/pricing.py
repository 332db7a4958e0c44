import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..errors import Conflict, NotFound, ValidationError
from ..models.models import PricingConfig, UserRole
from ..schemas.pricing import PricingConfigCreate, PricingConfigResponse, PricingConfigUpdate
from ..services.materials import KNOWN_CATEGORIES, category_key


router = APIRouter(prefix="/pricing", tags=["pricing"])


def _get_config(db: Session, config_id: uuid.UUID) -> PricingConfig:
    row = db.query(PricingConfig).filter(PricingConfig.id == config_id).first()
    if not row:
        raise NotFound("Pricing configuration not found")
    return row


@router.get("", response_model=List[PricingConfigResponse])
def list_pricing(category: Optional[str] = None, include_inactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(PricingConfig)
    if category:
        key = category_key(category)
        if key not in KNOWN_CATEGORIES:
            raise ValidationError("Invalid category parameter")
        query = query.filter(PricingConfig.category == key)
    if not include_inactive:
        query = query.filter(PricingConfig.is_active.is_(True))
    return query.order_by(PricingConfig.category.asc(), PricingConfig.name.asc()).all()


@router.post("", response_model=PricingConfigResponse, status_code=201)
def create_pricing(body: PricingConfigCreate, db: Session = Depends(get_db), _=Depends(require_roles(UserRole.ADMIN))):
    if body.category not in KNOWN_CATEGORIES:
        raise ValidationError(f"Unknown pricing category: {body.category}")
    exists = (
        db.query(PricingConfig)
        .filter(PricingConfig.category == body.category, PricingConfig.name == body.name)
        .first()
    )
    if exists:
        raise Conflict("A pricing entry with this category and name already exists")
    data = body.model_dump(exclude={"metadata"})
    data = {k: v for k, v in data.items() if v is not None}
    row = PricingConfig(**data, metadata_json=body.metadata)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.put("/{config_id}", response_model=PricingConfigResponse)
def update_pricing(config_id: uuid.UUID, body: PricingConfigUpdate, db: Session = Depends(get_db), _=Depends(require_roles(UserRole.ADMIN))):
    row = _get_config(db, config_id)
    data = body.model_dump(exclude_unset=True)
    if "metadata" in data:
        row.metadata_json = data.pop("metadata")
    for key, value in data.items():
        setattr(row, key, value)
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    return row


@router.delete("/{config_id}")
def deactivate_pricing(config_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles(UserRole.ADMIN))):
    # Stock rows and past projects keep pointing at the entry
    row = _get_config(db, config_id)
    row.is_active = False
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    return {"message": "Pricing configuration deactivated"}
