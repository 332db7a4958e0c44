import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ProjectFields(BaseModel):
    client_name: Optional[str] = None
    notes: Optional[str] = None

    # Location / delivery
    warehouse_id: Optional[uuid.UUID] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    delivery_cost: Optional[float] = Field(default=None, ge=0)
    delivery_distance: Optional[float] = Field(default=None, ge=0)

    # Measurements
    length: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    pitch: Optional[str] = None
    roof_type: Optional[str] = None
    floors: Optional[int] = Field(default=None, ge=1)
    material_thickness: Optional[str] = None
    ridge_type: Optional[str] = None
    gutter_size: Optional[str] = None
    budget_level: Optional[str] = None
    budget_amount: Optional[float] = Field(default=None, ge=0)
    construction_mode: Optional[str] = None
    gutter_length_a: Optional[float] = Field(default=None, ge=0)
    gutter_slope: Optional[float] = None
    gutter_length_c: Optional[float] = Field(default=None, ge=0)
    insulation_thickness: Optional[str] = None
    ventilation_pieces: Optional[int] = Field(default=None, ge=0)
    material: Optional[str] = None

    # Calculated costs
    area: Optional[float] = Field(default=None, ge=0)
    material_cost: Optional[float] = None
    gutter_cost: Optional[float] = None
    ridge_cost: Optional[float] = None
    screws_cost: Optional[float] = None
    insulation_cost: Optional[float] = None
    ventilation_cost: Optional[float] = None
    total_materials_cost: Optional[float] = None
    labor_cost: Optional[float] = None
    removal_cost: Optional[float] = None
    total_cost: Optional[float] = None
    gutter_pieces: Optional[int] = None
    ridge_length: Optional[float] = Field(default=None, ge=0)

    # Decision support
    complexity_score: Optional[int] = None
    complexity_level: Optional[str] = None
    recommended_material: Optional[str] = None
    optimization_tips: Optional[str] = None

    @field_validator("client_name", "notes", "address", "city", "state", "zip_code", "material", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ProjectCreate(ProjectFields):
    project_name: str = Field(min_length=1, max_length=255)
    # New projects start as a draft or as a personal active project
    status: Optional[str] = None


class ProjectUpdate(ProjectFields):
    project_name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ProjectResponse(ProjectFields):
    id: uuid.UUID
    user_id: uuid.UUID
    project_name: str
    status: str
    proposal_status: Optional[str] = None
    contractor_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
    assigned_at: Optional[datetime] = None
    contractor_status: Optional[str] = None
    sent_to_contractor_at: Optional[datetime] = None
    handoff_note: Optional[str] = None
    proposal_sent: Optional[datetime] = None
    proposal_text: Optional[str] = None
    custom_pricing: Optional[Dict[str, Any]] = None
    materials_consumed: bool = False
    materials_consumed_at: Optional[datetime] = None
    archived_from_status: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectListResponse(BaseModel):
    items: List[ProjectResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class StatusUpdate(BaseModel):
    status: str


class AssignRequest(BaseModel):
    project_id: uuid.UUID
    contractor_id: uuid.UUID


class SendToContractorRequest(BaseModel):
    contractor_id: uuid.UUID
    note: Optional[str] = None


class ContractorResponseRequest(BaseModel):
    action: str

    @field_validator("action")
    @classmethod
    def valid_action(cls, v: str):
        v = (v or "").strip().lower()
        if v not in ("accept", "decline"):
            raise ValueError("action must be 'accept' or 'decline'")
        return v


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class MaterialReturnRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v):
        return v.strip() if isinstance(v, str) else v
