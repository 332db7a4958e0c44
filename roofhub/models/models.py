import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class UserRole:
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"
    DEVELOPER = "DEVELOPER"

    ALL = (CLIENT, ADMIN, DEVELOPER)


class ProjectStatus:
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLIENT_PENDING = "CLIENT_PENDING"
    CONTRACTOR_REVIEWING = "CONTRACTOR_REVIEWING"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"
    CANCELLED = "CANCELLED"

    ALL = (
        DRAFT,
        ACTIVE,
        CLIENT_PENDING,
        CONTRACTOR_REVIEWING,
        PROPOSAL_SENT,
        ACCEPTED,
        IN_PROGRESS,
        COMPLETED,
        REJECTED,
        ARCHIVED,
        CANCELLED,
    )


class ProposalStatus:
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    REVISED = "REVISED"

    ALL = (DRAFT, SENT, ACCEPTED, REJECTED, REVISED)


class CodePurpose:
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class MaterialStatus:
    RESERVED = "RESERVED"
    CONSUMED = "CONSUMED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(20), default=UserRole.CLIENT, index=True)  # CLIENT|ADMIN|DEVELOPER
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    password_change_required: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(6))
    purpose: Mapped[str] = mapped_column(String(30), default=CodePurpose.EMAIL_VERIFICATION, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Warehouse(Base):
    __tablename__ = "warehouses"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip_code: Mapped[Optional[str]] = mapped_column(String(20))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    # Volumetric storage; capacity is a soft bound used only for replenishment sizing
    length: Mapped[Optional[float]] = mapped_column(Float)
    width: Mapped[Optional[float]] = mapped_column(Float)
    height: Mapped[Optional[float]] = mapped_column(Float)
    capacity: Mapped[Optional[float]] = mapped_column(Float)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    materials = relationship("WarehouseMaterial", back_populates="warehouse", cascade="all, delete-orphan")


class PricingConfig(Base):
    __tablename__ = "pricing_configs"
    __table_args__ = (UniqueConstraint("category", "name", name="uq_pricing_category_name"),)

    id: Mapped[uuid.UUID] = uuid_pk()
    category: Mapped[str] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(100))
    label: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    unit: Mapped[str] = mapped_column(String(50), default="unit")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    length: Mapped[Optional[float]] = mapped_column(Float)
    width: Mapped[Optional[float]] = mapped_column(Float)
    height: Mapped[Optional[float]] = mapped_column(Float)
    volume: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class WarehouseMaterial(Base):
    __tablename__ = "warehouse_materials"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "material_id", name="uq_warehouse_material"),
        CheckConstraint("quantity >= 0", name="ck_warehouse_material_quantity"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("warehouses.id", ondelete="CASCADE"), index=True)
    material_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("pricing_configs.id", ondelete="CASCADE"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    location_adjustment: Mapped[float] = mapped_column(Float, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    warehouse = relationship("Warehouse", back_populates="materials")
    material = relationship("PricingConfig")
    # Ledger lines go with their stock row, matching the ON DELETE CASCADE foreign key
    project_materials = relationship("ProjectMaterial", back_populates="warehouse_material", cascade="all, delete-orphan")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    project_name: Mapped[str] = mapped_column(String(255))
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(30), default=ProjectStatus.DRAFT, index=True)
    proposal_status: Mapped[Optional[str]] = mapped_column(String(20))

    # Assignment
    contractor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    contractor_status: Mapped[Optional[str]] = mapped_column(String(30))
    sent_to_contractor_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    handoff_note: Mapped[Optional[str]] = mapped_column(Text)

    # Proposal
    proposal_sent: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    proposal_text: Mapped[Optional[str]] = mapped_column(Text)
    custom_pricing: Mapped[Optional[dict]] = mapped_column(JSON)

    # Location / delivery
    warehouse_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("warehouses.id", ondelete="SET NULL"))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip_code: Mapped[Optional[str]] = mapped_column(String(20))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    delivery_cost: Mapped[Optional[float]] = mapped_column(Float)
    delivery_distance: Mapped[Optional[float]] = mapped_column(Float)

    # Measurements
    length: Mapped[float] = mapped_column(Float, default=0.0)
    width: Mapped[float] = mapped_column(Float, default=0.0)
    pitch: Mapped[Optional[str]] = mapped_column(String(20))
    roof_type: Mapped[Optional[str]] = mapped_column(String(50))
    floors: Mapped[int] = mapped_column(Integer, default=1)
    material_thickness: Mapped[Optional[str]] = mapped_column(String(50))
    ridge_type: Mapped[Optional[str]] = mapped_column(String(50))
    gutter_size: Mapped[Optional[str]] = mapped_column(String(50))
    budget_level: Mapped[Optional[str]] = mapped_column(String(20))
    budget_amount: Mapped[Optional[float]] = mapped_column(Float)
    construction_mode: Mapped[Optional[str]] = mapped_column(String(20))
    gutter_length_a: Mapped[Optional[float]] = mapped_column(Float)
    gutter_slope: Mapped[Optional[float]] = mapped_column(Float)
    gutter_length_c: Mapped[Optional[float]] = mapped_column(Float)
    insulation_thickness: Mapped[Optional[str]] = mapped_column(String(50))
    ventilation_pieces: Mapped[int] = mapped_column(Integer, default=0)
    material: Mapped[Optional[str]] = mapped_column(String(100))

    # Calculated costs
    area: Mapped[float] = mapped_column(Float, default=0.0)
    material_cost: Mapped[float] = mapped_column(Float, default=0.0)
    gutter_cost: Mapped[float] = mapped_column(Float, default=0.0)
    ridge_cost: Mapped[float] = mapped_column(Float, default=0.0)
    screws_cost: Mapped[float] = mapped_column(Float, default=0.0)
    insulation_cost: Mapped[float] = mapped_column(Float, default=0.0)
    ventilation_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_materials_cost: Mapped[float] = mapped_column(Float, default=0.0)
    labor_cost: Mapped[float] = mapped_column(Float, default=0.0)
    removal_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    gutter_pieces: Mapped[int] = mapped_column(Integer, default=0)
    ridge_length: Mapped[float] = mapped_column(Float, default=0.0)

    # Decision support
    complexity_score: Mapped[Optional[int]] = mapped_column(Integer)
    complexity_level: Mapped[Optional[str]] = mapped_column(String(20))
    recommended_material: Mapped[Optional[str]] = mapped_column(String(100))
    optimization_tips: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Ledger / archival
    materials_consumed: Mapped[bool] = mapped_column(Boolean, default=False)
    materials_consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archived_from_status: Mapped[Optional[str]] = mapped_column(String(30))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", foreign_keys=[user_id])
    contractor = relationship("User", foreign_keys=[contractor_id])
    client = relationship("User", foreign_keys=[client_id])
    warehouse = relationship("Warehouse")
    project_materials = relationship("ProjectMaterial", back_populates="project", cascade="all, delete-orphan")


class ProjectMaterial(Base):
    """Reservation/consumption ledger line for one project and one warehouse material"""
    __tablename__ = "project_materials"
    __table_args__ = (
        UniqueConstraint("project_id", "warehouse_material_id", name="uq_project_warehouse_material"),
        Index("idx_project_materials_status", "status"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    warehouse_material_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("warehouse_materials.id", ondelete="CASCADE"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=MaterialStatus.RESERVED)  # RESERVED|CONSUMED|RETURNED|CANCELLED
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="project_materials")
    warehouse_material = relationship("WarehouseMaterial", back_populates="project_materials")


class Notification(Base):
    """In-app notification for one user"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"))
    project_name: Mapped[Optional[str]] = mapped_column(String(255))
    action_url: Mapped[Optional[str]] = mapped_column(String(500))
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'read'),
        Index('idx_notifications_created', 'created_at'),
    )


class Activity(Base):
    """Append-only activity log"""
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(50), index=True)
    description: Mapped[str] = mapped_column(Text)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)

    user = relationship("User")
