"""Pytest configuration and fixtures."""

import os

# Must be set before the app (and its settings) are imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roofhub.auth.security import create_access_token, get_password_hash
from roofhub.db import Base, get_db
from roofhub.main import app
from roofhub.models.models import (
    PricingConfig,
    Project,
    ProjectStatus,
    User,
    UserRole,
    Warehouse,
    WarehouseMaterial,
)


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)

PASSWORD = "Sup3r-secret!"


@pytest.fixture
def db_session():
    """Fresh schema per test on a shared in-memory connection."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=UserRole.CLIENT, email=None, first_name="Test", last_name=None, verified=True):
        counter["n"] += 1
        user = User(
            email=email or f"{role.lower()}{counter['n']}@example.com",
            password_hash=get_password_hash(PASSWORD),
            first_name=first_name,
            last_name=last_name or f"{role.title()}{counter['n']}",
            role=role,
            email_verified=verified,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), role=user.role)}"}


@pytest.fixture
def client_user(make_user):
    return make_user(UserRole.CLIENT)


@pytest.fixture
def contractor(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def developer(make_user):
    return make_user(UserRole.DEVELOPER)


@pytest.fixture
def catalog(db_session):
    """Minimal pricing catalog: one roofing sheet, one gutter and a labor line."""
    rows = {
        "metal": PricingConfig(category="material", name="metal_sheet", label="Metal Sheet", price=25.0, unit="sqm"),
        "gutter": PricingConfig(category="gutter", name="gutter_150", label="Gutter 150mm", price=12.0, unit="m"),
        "labor": PricingConfig(category="labor", name="install", label="Installation", price=500.0, unit="job"),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture
def warehouse(db_session, contractor):
    row = Warehouse(
        name="Main Yard",
        address="1 Depot Rd",
        city="Springfield",
        state="IL",
        zip_code="62701",
        latitude=39.78,
        longitude=-89.65,
        is_default=True,
        capacity=None,
        created_by=contractor.id,
    )
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture
def stock(db_session, warehouse, catalog):
    """Put ``quantity`` units of a catalog entry into the warehouse."""
    def _stock(key, quantity):
        row = WarehouseMaterial(warehouse_id=warehouse.id, material_id=catalog[key].id, quantity=quantity)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _stock


@pytest.fixture
def make_project(db_session):
    def _make(owner, status=ProjectStatus.DRAFT, **fields):
        fields.setdefault("project_name", "Smith residence")
        project = Project(user_id=owner.id, status=status, **fields)
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project

    return _make
