import math
import uuid

import pytest

from roofhub.models.models import (
    Activity,
    MaterialStatus,
    Notification,
    Project,
    ProjectMaterial,
    ProjectStatus,
    UserRole,
)
from roofhub.services.materials import MAIN_WASTE

from conftest import auth_headers


AREA = 30.0
SHEETS = math.ceil(AREA * MAIN_WASTE)


def _create(client, user, **fields):
    body = {"project_name": "Smith residence", "area": AREA, "material": "metal"}
    body.update(fields)
    r = client.post("/projects", json=body, headers=auth_headers(user))
    assert r.status_code == 201, r.text
    return r.json()


def _advance_to_proposal_sent(client, client_user, contractor, warehouse):
    project = _create(client, client_user, warehouse_id=str(warehouse.id))
    pid = project["id"]
    r = client.post(f"/projects/{pid}/send-to-contractor", json={"contractor_id": str(contractor.id)}, headers=auth_headers(client_user))
    assert r.status_code == 200, r.text
    r = client.post(f"/projects/{pid}/approve", headers=auth_headers(contractor))
    assert r.status_code == 200, r.text
    r = client.post(
        "/proposals",
        json={"project_id": pid, "proposal_text": "Full metal re-roof, two weeks."},
        headers=auth_headers(contractor),
    )
    assert r.status_code == 200, r.text
    return pid


def test_create_and_get(client, client_user):
    project = _create(client, client_user)
    assert project["status"] == ProjectStatus.DRAFT
    assert project["user_id"] == str(client_user.id)

    r = client.get(f"/projects/{project['id']}", headers=auth_headers(client_user))
    assert r.status_code == 200
    assert r.json()["project_name"] == "Smith residence"


def test_create_rejects_non_initial_status(client, client_user):
    r = client.post("/projects", json={"project_name": "Shortcut", "status": "COMPLETED"}, headers=auth_headers(client_user))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "validation_error"


def test_create_requires_auth(client):
    r = client.post("/projects", json={"project_name": "Anon"})
    assert r.status_code == 401


def test_other_users_project_is_not_found(client, client_user, make_user):
    project = _create(client, client_user)
    stranger = make_user(UserRole.CLIENT)
    r = client.get(f"/projects/{project['id']}", headers=auth_headers(stranger))
    assert r.status_code == 404


def test_list_filters_and_paginates(client, client_user, make_user):
    for i in range(3):
        _create(client, client_user, project_name=f"Roof {i}", client_name="Smith" if i else "Jones")
    _create(client, make_user(UserRole.CLIENT), project_name="Not mine")

    r = client.get("/projects", params={"limit": 2, "sort_by": "project_name", "sort_order": "asc"}, headers=auth_headers(client_user))
    body = r.json()
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert [p["project_name"] for p in body["items"]] == ["Roof 0", "Roof 1"]

    r = client.get("/projects", params={"search": "jones"}, headers=auth_headers(client_user))
    assert [p["project_name"] for p in r.json()["items"]] == ["Roof 0"]


def test_stats(client, client_user):
    _create(client, client_user, total_cost=1000.0)
    _create(client, client_user, status=ProjectStatus.ACTIVE, total_cost=3000.0)

    r = client.get("/projects/stats", headers=auth_headers(client_user))

    stats = r.json()
    assert stats["total_projects"] == 2
    assert stats["active_projects"] == 1
    assert stats["total_value"] == 4000.0
    assert stats["average_value"] == 2000.0


def test_update_leaves_status_alone(client, client_user):
    project = _create(client, client_user)
    r = client.patch(
        f"/projects/{project['id']}",
        json={"notes": "Steep pitch", "status": "COMPLETED"},
        headers=auth_headers(client_user),
    )
    assert r.status_code == 200
    assert r.json()["notes"] == "Steep pitch"
    assert r.json()["status"] == ProjectStatus.DRAFT


def test_archive_unarchive_and_purge(client, client_user, db_session):
    project = _create(client, client_user, status=ProjectStatus.ACTIVE)
    pid = project["id"]
    headers = auth_headers(client_user)

    # Permanent delete only works on archived projects
    assert client.delete(f"/projects/{pid}/permanent", headers=headers).status_code == 400

    assert client.delete(f"/projects/{pid}", headers=headers).status_code == 200
    archived = client.get("/projects/archived", headers=headers).json()
    assert [p["id"] for p in archived["items"]] == [pid]
    assert client.get("/projects", headers=headers).json()["total"] == 0

    r = client.post(f"/projects/{pid}/unarchive", headers=headers)
    assert r.json()["status"] == ProjectStatus.ACTIVE
    assert r.json()["deleted_at"] is None

    client.delete(f"/projects/{pid}", headers=headers)
    assert client.delete(f"/projects/{pid}/permanent", headers=headers).status_code == 200
    assert db_session.query(Project).count() == 0


def test_archiving_in_flight_project_is_refused(client, client_user, contractor):
    project = _create(client, client_user)
    client.post(f"/projects/{project['id']}/send-to-contractor", json={"contractor_id": str(contractor.id)}, headers=auth_headers(client_user))
    r = client.delete(f"/projects/{project['id']}", headers=auth_headers(client_user))
    assert r.status_code == 400


def test_status_patch_goes_through_workflow(client, client_user):
    project = _create(client, client_user)
    headers = auth_headers(client_user)

    r = client.patch(f"/projects/{project['id']}/status", json={"status": "COMPLETED"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_transition"

    r = client.patch(f"/projects/{project['id']}/status", json={"status": "ACTIVE"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == ProjectStatus.ACTIVE


def test_transitions_endpoint(client, client_user):
    project = _create(client, client_user)
    r = client.get(f"/projects/{project['id']}/transitions", headers=auth_headers(client_user))
    body = r.json()
    assert body["display"]["label"] == "Draft"
    assert body["progress"]["step"] == 1
    assert {t["to"] for t in body["available"]} == {ProjectStatus.ACTIVE, ProjectStatus.CLIENT_PENDING}


def test_send_to_contractor_assigns_and_notifies(client, client_user, contractor, db_session):
    project = _create(client, client_user)
    r = client.post(
        f"/projects/{project['id']}/send-to-contractor",
        json={"contractor_id": str(contractor.id), "note": "Gate code 1234"},
        headers=auth_headers(client_user),
    )
    body = r.json()
    assert body["status"] == ProjectStatus.CLIENT_PENDING
    assert body["contractor_id"] == str(contractor.id)
    assert body["client_id"] == str(client_user.id)
    assert body["proposal_status"] == "DRAFT"
    assert body["handoff_note"] == "Gate code 1234"

    note = db_session.query(Notification).filter(Notification.user_id == contractor.id).one()
    assert note.type == "project_assigned"

    assigned = client.get("/projects/assigned", headers=auth_headers(contractor)).json()
    assert [p["id"] for p in assigned["items"]] == [project["id"]]


def test_assign_requires_a_contractor_account(client, client_user, make_user):
    project = _create(client, client_user)
    other_client = make_user(UserRole.CLIENT)
    r = client.post(
        "/projects/assign",
        json={"project_id": project["id"], "contractor_id": str(other_client.id)},
        headers=auth_headers(client_user),
    )
    assert r.status_code == 404


def test_drafts_do_not_show_in_assigned(client, client_user, contractor, make_project):
    make_project(client_user, contractor_id=contractor.id)
    r = client.get("/projects/assigned", headers=auth_headers(contractor))
    assert r.json()["total"] == 0


def test_only_assigned_contractor_can_approve(client, client_user, contractor, make_user):
    project = _create(client, client_user)
    client.post(f"/projects/{project['id']}/send-to-contractor", json={"contractor_id": str(contractor.id)}, headers=auth_headers(client_user))

    r = client.post(f"/projects/{project['id']}/approve", headers=auth_headers(client_user))
    assert r.status_code == 403

    other = make_user(UserRole.ADMIN)
    r = client.post(f"/projects/{project['id']}/approve", headers=auth_headers(other))
    assert r.status_code == 404


def test_decline_needs_review_first(client, client_user, contractor):
    project = _create(client, client_user)
    pid = project["id"]
    client.post(f"/projects/{pid}/send-to-contractor", json={"contractor_id": str(contractor.id)}, headers=auth_headers(client_user))

    r = client.post(f"/projects/{pid}/contractor-response", json={"action": "decline"}, headers=auth_headers(contractor))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_transition"

    client.post(f"/projects/{pid}/contractor-response", json={"action": "accept"}, headers=auth_headers(contractor))
    r = client.post(f"/projects/{pid}/decline", headers=auth_headers(contractor))
    assert r.status_code == 200
    assert r.json()["status"] == ProjectStatus.REJECTED
    assert r.json()["contractor_status"] == "declined"


def test_full_lifecycle_moves_stock(client, client_user, contractor, warehouse, stock, db_session):
    wm = stock("metal", SHEETS + 10)
    pid = _advance_to_proposal_sent(client, client_user, contractor, warehouse)

    r = client.patch(f"/proposals/{pid}", json={"action": "accept"}, headers=auth_headers(client_user))
    assert r.status_code == 200, r.text
    assert r.json()["project"]["status"] == ProjectStatus.ACCEPTED
    line = db_session.query(ProjectMaterial).one()
    assert line.status == MaterialStatus.RESERVED
    db_session.refresh(wm)
    assert wm.quantity == SHEETS + 10

    r = client.post(f"/projects/{pid}/start-contract", headers=auth_headers(contractor))
    assert r.json()["status"] == ProjectStatus.IN_PROGRESS

    r = client.post(f"/projects/{pid}/finish", headers=auth_headers(contractor))
    assert r.status_code == 200
    assert r.json()["status"] == ProjectStatus.COMPLETED
    assert r.json()["contractor_status"] == "completed"
    db_session.refresh(wm)
    assert wm.quantity == 10
    db_session.refresh(line)
    assert line.status == MaterialStatus.CONSUMED

    types = {n.type for n in db_session.query(Notification).filter(Notification.user_id == client_user.id)}
    assert {"proposal_sent", "project_completed"} <= types

    r = client.get(f"/projects/{pid}/materials", headers=auth_headers(client_user))
    assert r.json()["consumed_materials"] == 1


def test_accept_with_short_stock_keeps_project_pending(client, client_user, contractor, warehouse, stock, db_session):
    stock("metal", SHEETS - 1)
    pid = _advance_to_proposal_sent(client, client_user, contractor, warehouse)

    r = client.patch(f"/proposals/{pid}", json={"action": "accept"}, headers=auth_headers(client_user))

    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "insufficient_materials"
    assert detail["shortages"][0]["shortage"] == 1
    assert db_session.get(Project, uuid.UUID(pid)).status == ProjectStatus.PROPOSAL_SENT


def test_material_requirements_endpoint(client, client_user, contractor, warehouse, stock):
    stock("metal", SHEETS)
    project = _create(client, client_user, warehouse_id=str(warehouse.id))
    r = client.get(f"/projects/{project['id']}/materials/requirements", headers=auth_headers(client_user))
    body = r.json()
    names = {m["name"]: m["quantity"] for m in body["materials"]}
    assert names["metal_sheet"] == SHEETS
    assert body["availability"]["is_available"] is True


def test_cancel_in_progress_returns_materials(client, client_user, contractor, warehouse, stock, db_session):
    wm = stock("metal", SHEETS)
    pid = _advance_to_proposal_sent(client, client_user, contractor, warehouse)
    client.patch(f"/proposals/{pid}", json={"action": "accept"}, headers=auth_headers(client_user))
    client.post(f"/projects/{pid}/start-contract", headers=auth_headers(contractor))

    r = client.post(f"/projects/{pid}/cancel", json={"reason": "Budget cut"}, headers=auth_headers(client_user))

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == ProjectStatus.CANCELLED
    assert body["notes"].endswith("Budget cut")
    assert "Cancelled by client" in body["notes"]
    assert db_session.query(ProjectMaterial).one().status == MaterialStatus.CANCELLED
    db_session.refresh(wm)
    assert wm.quantity == SHEETS
    note = db_session.query(Notification).filter(Notification.user_id == contractor.id, Notification.type == "project_cancelled").one()
    assert "Budget cut" in note.message


def test_cancel_from_draft_is_refused(client, client_user):
    project = _create(client, client_user)
    r = client.post(f"/projects/{project['id']}/cancel", json={}, headers=auth_headers(client_user))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_transition"


def test_return_materials_after_completion(client, client_user, contractor, warehouse, stock, db_session):
    wm = stock("metal", SHEETS)
    pid = _advance_to_proposal_sent(client, client_user, contractor, warehouse)
    client.patch(f"/proposals/{pid}", json={"action": "accept"}, headers=auth_headers(client_user))
    client.post(f"/projects/{pid}/start-contract", headers=auth_headers(contractor))
    client.post(f"/projects/{pid}/finish", headers=auth_headers(contractor))
    db_session.refresh(wm)
    assert wm.quantity == 0

    r = client.post(f"/projects/{pid}/materials/return", json={"reason": "   "}, headers=auth_headers(contractor))
    assert r.status_code == 400

    r = client.post(f"/projects/{pid}/materials/return", json={"reason": "Leftover sheets"}, headers=auth_headers(client_user))
    assert r.status_code == 403

    r = client.post(f"/projects/{pid}/materials/return", json={"reason": "Leftover sheets"}, headers=auth_headers(contractor))
    assert r.status_code == 200
    assert r.json()["returned"][0]["status"] == MaterialStatus.RETURNED
    db_session.refresh(wm)
    assert wm.quantity == SHEETS
    assert db_session.query(Activity).filter(Activity.type == "MATERIALS_RETURNED").count() == 1


@pytest.mark.parametrize("status", [ProjectStatus.COMPLETED, ProjectStatus.REJECTED])
def test_archive_edges_from_terminal_states(client, client_user, make_project, status):
    project = make_project(client_user, status=status)
    r = client.patch(f"/projects/{project.id}/status", json={"status": "ARCHIVED"}, headers=auth_headers(client_user))
    assert r.status_code == 200
    assert r.json()["archived_from_status"] == status
