import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .pricing import PricingConfigResponse


class WarehouseBase(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: Optional[bool] = None
    length: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)
    capacity: Optional[float] = Field(default=None, ge=0)


class WarehouseCreate(WarehouseBase):
    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    latitude: float
    longitude: float
    is_default: bool = False


class WarehouseUpdate(WarehouseBase):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class WarehouseResponse(WarehouseBase):
    id: uuid.UUID
    name: str
    is_default: bool = False
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WarehouseMaterialCreate(BaseModel):
    material_id: uuid.UUID
    quantity: int = Field(ge=0)
    location_adjustment: float = 0.0


class WarehouseMaterialUpdate(BaseModel):
    quantity: int = Field(ge=0)
    location_adjustment: float = 0.0
    is_active: Optional[bool] = None


class WarehouseMaterialResponse(BaseModel):
    id: uuid.UUID
    warehouse_id: uuid.UUID
    material_id: uuid.UUID
    quantity: int
    location_adjustment: float = 0.0
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    material: Optional[PricingConfigResponse] = None

    class Config:
        from_attributes = True


class StockSuggestionApply(BaseModel):
    material_id: uuid.UUID
    suggested_stock: int = Field(ge=0)
    material_name: Optional[str] = None


class StockSuggestionApplyRequest(BaseModel):
    suggestions: List[StockSuggestionApply]
