from roofhub.models.models import (
    MaterialStatus,
    PricingConfig,
    Project,
    ProjectMaterial,
    ProjectStatus,
    UserRole,
    Warehouse,
    WarehouseMaterial,
)

from conftest import auth_headers


WAREHOUSE = {
    "name": "North Depot",
    "address": "9 Quarry Ln",
    "city": "Peoria",
    "state": "IL",
    "zip_code": "61602",
    "latitude": 40.69,
    "longitude": -89.59,
}


def test_create_and_list(client, contractor, warehouse):
    r = client.post("/warehouses", json={**WAREHOUSE, "is_default": True, "capacity": 500}, headers=auth_headers(contractor))
    assert r.status_code == 201
    created = r.json()
    assert created["created_by"] == str(contractor.id)

    listed = client.get("/warehouses", headers=auth_headers(contractor)).json()
    # Only one default at a time
    assert [w["name"] for w in listed] == ["North Depot", "Main Yard"]
    assert [w["is_default"] for w in listed] == [True, False]


def test_create_validates_required_fields(client, contractor):
    r = client.post("/warehouses", json={"name": "Half done"}, headers=auth_headers(contractor))
    assert r.status_code == 400


def test_developer_cannot_create(client, developer):
    r = client.post("/warehouses", json=WAREHOUSE, headers=auth_headers(developer))
    assert r.status_code == 403


def test_only_creator_or_admin_can_update(client, client_user, make_user, db_session):
    r = client.post("/warehouses", json=WAREHOUSE, headers=auth_headers(client_user))
    wid = r.json()["id"]

    stranger = make_user(UserRole.CLIENT)
    assert client.put(f"/warehouses/{wid}", json={"name": "Mine now"}, headers=auth_headers(stranger)).status_code == 403

    r = client.put(f"/warehouses/{wid}", json={"capacity": 120.5}, headers=auth_headers(client_user))
    assert r.status_code == 200
    assert r.json()["capacity"] == 120.5
    assert r.json()["name"] == "North Depot"

    admin = make_user(UserRole.ADMIN)
    assert client.delete(f"/warehouses/{wid}", headers=auth_headers(admin)).status_code == 200
    assert db_session.query(Warehouse).count() == 0


def test_missing_warehouse(client, contractor):
    r = client.get("/warehouses/00000000-0000-0000-0000-000000000000", headers=auth_headers(contractor))
    assert r.status_code == 404


def test_stock_rows(client, contractor, warehouse, catalog):
    headers = auth_headers(contractor)
    r = client.post(
        f"/warehouses/{warehouse.id}/materials",
        json={"material_id": str(catalog["metal"].id), "quantity": 40},
        headers=headers,
    )
    assert r.status_code == 201
    row = r.json()
    assert row["material"]["label"] == "Metal Sheet"

    dup = client.post(
        f"/warehouses/{warehouse.id}/materials",
        json={"material_id": str(catalog["metal"].id), "quantity": 1},
        headers=headers,
    )
    assert dup.status_code == 400

    r = client.put(f"/warehouses/{warehouse.id}/materials/{row['id']}", json={"quantity": 7, "is_active": False}, headers=headers)
    assert r.json()["quantity"] == 7
    assert r.json()["is_active"] is False

    # Inactive rows are revived rather than duplicated
    r = client.post(
        f"/warehouses/{warehouse.id}/materials",
        json={"material_id": str(catalog["metal"].id), "quantity": 12},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json()["id"] == row["id"]
    assert r.json()["quantity"] == 12

    listed = client.get(f"/warehouses/{warehouse.id}/materials", headers=headers).json()
    assert len(listed) == 1


def test_negative_quantity_rejected(client, contractor, warehouse, catalog):
    r = client.post(
        f"/warehouses/{warehouse.id}/materials",
        json={"material_id": str(catalog["metal"].id), "quantity": -1},
        headers=auth_headers(contractor),
    )
    assert r.status_code == 400


def test_unknown_material(client, contractor, warehouse):
    r = client.post(
        f"/warehouses/{warehouse.id}/materials",
        json={"material_id": "00000000-0000-0000-0000-000000000000", "quantity": 1},
        headers=auth_headers(contractor),
    )
    assert r.status_code == 404


def test_replenish_and_capacity(client, contractor, warehouse, stock, db_session, make_user):
    warehouse.capacity = 100.0
    db_session.commit()
    stock("metal", 20)
    headers = auth_headers(contractor)

    cap = client.get(f"/warehouses/{warehouse.id}/capacity", headers=headers).json()
    assert cap["available_capacity"] == 80

    metal_id = db_session.query(PricingConfig).filter(PricingConfig.name == "metal_sheet").one().id
    r = client.post(f"/warehouses/{warehouse.id}/materials/{metal_id}/replenish", headers=headers)
    assert r.status_code == 200
    assert r.json()["quantity"] == 40
    assert r.json()["new_stock"] == 60

    outsider = make_user(UserRole.CLIENT)
    r = client.post(f"/warehouses/{warehouse.id}/materials/{metal_id}/replenish", headers=auth_headers(outsider))
    assert r.status_code == 403


def test_warnings(client, contractor, warehouse, stock):
    stock("metal", 3)
    stock("gutter", 100)
    r = client.get("/warehouses/warnings", headers=auth_headers(contractor))
    body = r.json()
    assert body["total_warnings"] == 1
    assert body["critical_warnings"] == 1
    assert body["warehouses"][0]["warnings"][0]["material_name"] == "metal_sheet"


def test_pricing_crud(client, contractor, client_user):
    admin_headers = auth_headers(contractor)
    body = {"category": "gutters", "name": "gutter_200", "label": "Gutter 200mm", "price": 18.5, "unit": "m", "metadata": {"color": "white"}}

    assert client.post("/pricing", json=body, headers=auth_headers(client_user)).status_code == 403

    r = client.post("/pricing", json=body, headers=admin_headers)
    assert r.status_code == 201
    created = r.json()
    assert created["category"] == "gutter"
    assert created["metadata"] == {"color": "white"}

    assert client.post("/pricing", json=body, headers=admin_headers).status_code == 409

    r = client.put(f"/pricing/{created['id']}", json={"price": 20.0}, headers=admin_headers)
    assert r.json()["price"] == 20.0

    listed = client.get("/pricing", params={"category": "gutters"}).json()
    assert [p["name"] for p in listed] == ["gutter_200"]

    assert client.delete(f"/pricing/{created['id']}", headers=admin_headers).status_code == 200
    assert client.get("/pricing").json() == []
    assert len(client.get("/pricing", params={"include_inactive": True}).json()) == 1


def test_pricing_rejects_unknown_category(client, contractor):
    assert client.get("/pricing", params={"category": "bricks"}).status_code == 400
    r = client.post(
        "/pricing",
        json={"category": "bricks", "name": "red", "label": "Red brick", "price": 1},
        headers=auth_headers(contractor),
    )
    assert r.status_code == 400


def test_deleting_warehouse_drops_its_stock(client, contractor, warehouse, stock, db_session):
    stock("metal", 5)
    client.delete(f"/warehouses/{warehouse.id}", headers=auth_headers(contractor))
    assert db_session.query(WarehouseMaterial).count() == 0


def _ledger_line(db_session, project, wm, quantity, status):
    db_session.add(ProjectMaterial(project_id=project.id, warehouse_material_id=wm.id, quantity=quantity, status=status))
    db_session.commit()


def test_warehouse_with_active_reservations_cannot_be_deleted(client, contractor, client_user, warehouse, stock, make_project, db_session):
    wm = stock("metal", 5)
    project = make_project(client_user, status=ProjectStatus.ACCEPTED, warehouse_id=warehouse.id, project_name="Busy roof")
    _ledger_line(db_session, project, wm, 3, MaterialStatus.RESERVED)

    r = client.delete(f"/warehouses/{warehouse.id}", headers=auth_headers(contractor))

    assert r.status_code == 409
    assert r.json()["detail"]["projects"][0]["project_name"] == "Busy roof"
    assert db_session.query(Warehouse).count() == 1
    assert db_session.query(ProjectMaterial).count() == 1


def test_deleting_warehouse_drops_finished_ledger_lines(client, contractor, client_user, warehouse, stock, make_project, db_session):
    wm = stock("metal", 5)
    project = make_project(client_user, status=ProjectStatus.COMPLETED, warehouse_id=warehouse.id)
    _ledger_line(db_session, project, wm, 3, MaterialStatus.CONSUMED)
    project_id = project.id

    r = client.delete(f"/warehouses/{warehouse.id}", headers=auth_headers(contractor))

    assert r.status_code == 200
    db_session.expire_all()
    assert db_session.query(ProjectMaterial).count() == 0
    assert db_session.query(WarehouseMaterial).count() == 0
    assert db_session.query(Project).filter(Project.id == project_id).one().warehouse_id is None


def test_stock_suggestions(client, contractor, client_user, warehouse, stock, make_project, db_session):
    metal = stock("metal", 3)
    stock("gutter", 9)
    stock("labor", 0)
    project = make_project(client_user, status=ProjectStatus.ACCEPTED, project_name="Busy roof")
    _ledger_line(db_session, project, metal, 4, MaterialStatus.RESERVED)

    r = client.get(f"/warehouses/{warehouse.id}/stock-suggestions", headers=auth_headers(client_user))

    assert r.status_code == 200
    body = r.json()
    assert body["warehouse_name"] == "Main Yard"
    assert [s["material_name"] for s in body["suggestions"]] == ["Metal Sheet", "Gutter 150mm"]
    first, second = body["suggestions"]
    # 4 reserved: ceil(4 + 12 + 2.4)
    assert first["suggested_stock"] == 19
    assert first["stock_to_add"] == 16
    assert first["priority"] == "critical"
    assert first["confidence"] == 1.0
    assert first["reason"] == "Critical stock level detected, 4 units reserved for active projects, Used by 1 project(s)"
    assert second["suggested_stock"] == 10
    assert second["priority"] == "warning"
    assert body["total_suggestions"] == 2
    assert body["total_stock_to_add"] == 17


def test_stock_suggestions_respect_capacity_with_a_floor(client, contractor, client_user, warehouse, stock, make_project, db_session):
    warehouse.capacity = 10.0
    db_session.commit()
    metal = stock("metal", 3)
    project = make_project(client_user, status=ProjectStatus.ACCEPTED)
    _ledger_line(db_session, project, metal, 4, MaterialStatus.RESERVED)

    body = client.get(f"/warehouses/{warehouse.id}/stock-suggestions", headers=auth_headers(contractor)).json()

    # Capped to the 7 free units, then lifted to the minimum of 10
    assert body["suggestions"][0]["suggested_stock"] == 10


def test_apply_stock_suggestions(client, contractor, warehouse, stock, catalog, developer, db_session):
    stock("metal", 3)
    body = {
        "suggestions": [
            {"material_id": str(catalog["metal"].id), "suggested_stock": 19},
            {"material_id": str(catalog["gutter"].id), "suggested_stock": 5},
        ]
    }

    assert client.post(f"/warehouses/{warehouse.id}/stock-suggestions", json=body, headers=auth_headers(developer)).status_code == 403

    r = client.post(f"/warehouses/{warehouse.id}/stock-suggestions", json=body, headers=auth_headers(contractor))

    assert r.status_code == 200
    result = r.json()
    assert result["summary"] == {"total_processed": 2, "successful": 1, "failed": 1}
    assert result["message"] == "Successfully applied 1 stock suggestions, 1 failed"
    assert result["results"][0]["stock_added"] == 16
    db_session.expire_all()
    assert db_session.query(WarehouseMaterial).filter(WarehouseMaterial.material_id == catalog["metal"].id).one().quantity == 19


def test_apply_stock_suggestions_rejects_negative_stock(client, contractor, warehouse, catalog):
    body = {"suggestions": [{"material_id": str(catalog["metal"].id), "suggested_stock": -2}]}
    r = client.post(f"/warehouses/{warehouse.id}/stock-suggestions", json=body, headers=auth_headers(contractor))
    assert r.status_code == 400
