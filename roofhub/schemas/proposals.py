import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from .projects import ProjectResponse


class PartySummary(BaseModel):
    id: uuid.UUID
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str

    class Config:
        from_attributes = True


class ProposalResponse(ProjectResponse):
    contractor: Optional[PartySummary] = None
    client: Optional[PartySummary] = None


class ProposalListResponse(BaseModel):
    proposals: List[ProposalResponse]


class ProposalSend(BaseModel):
    project_id: uuid.UUID
    proposal_text: Optional[str] = None
    custom_pricing: Optional[Dict[str, Any]] = None

    @field_validator("proposal_text", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ProposalAction(BaseModel):
    action: str

    @field_validator("action")
    @classmethod
    def valid_action(cls, v: str):
        v = (v or "").strip().lower()
        if v not in ("accept", "reject"):
            raise ValueError("action must be 'accept' or 'reject'")
        return v
