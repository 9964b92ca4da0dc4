import pytest

from app.senexus.bindings import install
from app.senexus.errors import Forbidden, ModuleNotInstalled, ValidationError
from app.senexus.modules.crm.service import create_client, list_clients


def test_crm_requires_installation(ctx_for, seeded):
    with pytest.raises(ModuleNotInstalled):
        list_clients(ctx_for("staff@example.com"), seeded["alpha"])


def test_staff_can_create_and_list_clients(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm")
    staff = ctx_for("staff@example.com")
    create_client(staff, seeded["alpha"], {"name": "Sonatel", "contactEmail": "RH@Sonatel.sn"})
    create_client(staff, seeded["alpha"], {"name": "Orange", "status": "prospect"})
    clients = list_clients(staff, seeded["alpha"])
    assert [c.name for c in clients] == ["Orange", "Sonatel"]
    assert clients[1].contact_email == "rh@sonatel.sn"
    assert [c.name for c in list_clients(staff, seeded["alpha"], status="PROSPECT")] == ["Orange"]


def test_viewer_is_outside_crm_roles(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm")
    with pytest.raises(Forbidden):
        list_clients(ctx_for("viewer@example.com"), seeded["alpha"])


def test_invalid_client(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm")
    with pytest.raises(ValidationError) as exc:
        create_client(ctx_for("staff@example.com"), seeded["alpha"], {"name": "X", "status": "LOST"})
    assert set(exc.value.details) == {"name", "status"}


def test_http_clients(client, login, seeded):
    owner_headers = login("owner@example.com")
    client.post("/firms/alpha/modules", json={"moduleId": "crm"}, headers=owner_headers)
    r = client.post("/firms/alpha/crm/clients", json={"name": "Sonatel"}, headers=owner_headers)
    assert r.status_code == 201
    r = client.get("/firms/alpha/crm/clients?q=sona", headers=owner_headers)
    assert [c["name"] for c in r.json] == ["Sonatel"]


def test_http_disabled_crm_is_403(client, login, seeded):
    headers = login("owner@example.com")
    client.post("/firms/alpha/modules", json={"moduleId": "crm", "isEnabled": False}, headers=headers)
    r = client.get("/firms/alpha/crm/clients", headers=headers)
    assert r.status_code == 403
    assert r.json["error"] == "Module is disabled for this firm"
