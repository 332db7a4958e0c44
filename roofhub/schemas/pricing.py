import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..services.materials import category_key


class PricingConfigBase(BaseModel):
    label: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    length: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)
    volume: Optional[float] = Field(default=None, ge=0)


class PricingConfigCreate(PricingConfigBase):
    category: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    label: str = Field(min_length=1, max_length=255)
    price: float = Field(ge=0)
    unit: str = "unit"

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str):
        return category_key(v)


class PricingConfigUpdate(PricingConfigBase):
    pass


class PricingConfigResponse(PricingConfigBase):
    id: uuid.UUID
    category: str
    name: str
    label: str
    price: float
    unit: str
    is_active: bool = True
    # ORM attribute is metadata_json; the column itself is "metadata"
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("metadata_json", "metadata"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
