import pytest

from roofhub.errors import ValidationError
from roofhub.models.models import MaterialStatus, PricingConfig, ProjectMaterial, ProjectStatus, Warehouse, WarehouseMaterial
from roofhub.services.stock import capacity_report, replenish_material, scan_low_stock, suggest_replenishment, unit_volume


def test_unit_volume_prefers_explicit_volume():
    assert unit_volume(PricingConfig(volume=0.5, length=2, width=2, height=2)) == 0.5
    assert unit_volume(PricingConfig(length=2, width=0.5, height=0.1)) == pytest.approx(0.1)
    assert unit_volume(PricingConfig()) == 1.0
    assert unit_volume(None) == 1.0


def test_capacity_report(db_session, warehouse, stock):
    warehouse.capacity = 200.0
    db_session.commit()
    stock("metal", 50)

    report = capacity_report(db_session, warehouse)

    assert report["used_capacity"] == 50
    assert report["available_capacity"] == 150
    assert report["utilization"] == 25.0


def test_unbounded_warehouse_takes_full_suggestion(db_session, warehouse, stock):
    wm = stock("metal", 5)
    sizing = suggest_replenishment(db_session, warehouse, wm)
    assert sizing["quantity"] == 50
    assert sizing["available_capacity"] is None


def test_suggestion_clamped_to_half_of_free_space(db_session, warehouse, stock):
    warehouse.capacity = 100.0
    db_session.commit()
    wm = stock("metal", 20)

    sizing = suggest_replenishment(db_session, warehouse, wm)

    assert sizing["max_by_capacity"] == 80
    assert sizing["quantity"] == 40


def test_full_warehouse_refuses_replenishment(db_session, warehouse, stock):
    warehouse.capacity = 21.0
    db_session.commit()
    wm = stock("metal", 20)

    with pytest.raises(ValidationError):
        suggest_replenishment(db_session, warehouse, wm)


def test_replenish_adds_stock(db_session, warehouse, stock):
    wm = stock("gutter", 3)
    result = replenish_material(db_session, warehouse, wm)
    assert result["quantity"] == 25
    assert result["new_stock"] == 28
    assert result["message"] == "Replenished 25 units of gutter_150"


def test_low_stock_scan(db_session, warehouse, stock, make_project, client_user):
    metal = stock("metal", 8)
    stock("gutter", 5)
    stock("labor", 0)
    accepted = make_project(client_user, status=ProjectStatus.ACCEPTED, project_name="Busy roof")
    done = make_project(client_user, status=ProjectStatus.COMPLETED, project_name="Old roof")
    db_session.add_all([
        ProjectMaterial(project_id=accepted.id, warehouse_material_id=metal.id, quantity=3, status=MaterialStatus.RESERVED),
        ProjectMaterial(project_id=done.id, warehouse_material_id=metal.id, quantity=4, status=MaterialStatus.RESERVED),
    ])
    db_session.commit()

    results = scan_low_stock(db_session)

    assert len(results) == 1
    warnings = {w["material_name"]: w for w in results[0]["warnings"]}
    assert set(warnings) == {"metal_sheet", "gutter_150"}
    assert warnings["metal_sheet"]["critical_level"] is False
    assert warnings["metal_sheet"]["reserved_for_projects"] == 3
    assert warnings["metal_sheet"]["projected_stock"] == 5
    assert warnings["metal_sheet"]["projects_using"][0]["project_name"] == "Busy roof"
    assert warnings["gutter_150"]["critical_level"] is True
    assert warnings["gutter_150"]["warning_threshold"] == 15


def test_low_stock_scan_orders_default_warehouse_first(db_session, warehouse, stock, catalog):
    stock("metal", 1)
    other = Warehouse(name="A Annex", address="2 Side St", city="Springfield", state="IL", zip_code="62702", latitude=0, longitude=0)
    db_session.add(other)
    db_session.commit()
    db_session.add(WarehouseMaterial(warehouse_id=other.id, material_id=catalog["metal"].id, quantity=0))
    db_session.commit()

    names = [w["warehouse_name"] for w in scan_low_stock(db_session)]

    assert names == ["Main Yard", "A Annex"]


def _sku(db_session, category, name, volume):
    config = PricingConfig(category=category, name=name, label=name.title(), price=1.0, unit="unit", volume=volume)
    db_session.add(config)
    db_session.commit()
    return config


def test_insulation_below_warning_is_not_critical(db_session, warehouse):
    warehouse.capacity = 1000.0
    insulation = _sku(db_session, "insulation", "wool_100", 10.0)
    db_session.add(WarehouseMaterial(warehouse_id=warehouse.id, material_id=insulation.id, quantity=3))
    db_session.commit()

    warnings = scan_low_stock(db_session)[0]["warnings"]

    assert len(warnings) == 1
    assert warnings[0]["material_name"] == "wool_100"
    assert warnings[0]["warning_threshold"] == 5
    assert warnings[0]["critical_level"] is False


@pytest.mark.parametrize(
    "category,volume,capacity,current",
    [
        ("material", 1.0, 100.0, 20),
        ("material", 0.5, 100.0, 150),
        ("material", 2.5, 1000.0, 100),
        ("gutter", 7.0, 200.0, 10),
        ("insulation", 0.3, 60.0, 0),
        ("screws", 0.01, 5.0, 100),
    ],
)
def test_replenishment_stays_within_half_of_free_space(db_session, warehouse, category, volume, capacity, current):
    warehouse.capacity = capacity
    config = _sku(db_session, category, "sku", volume)
    wm = WarehouseMaterial(warehouse_id=warehouse.id, material_id=config.id, quantity=current)
    db_session.add(wm)
    db_session.commit()
    remaining = capacity - current * volume

    result = replenish_material(db_session, warehouse, wm)

    assert result["quantity"] > 0
    assert result["quantity"] * volume <= 0.5 * remaining + 1e-9
    assert result["new_stock"] == current + result["quantity"]
