from sqlalchemy.exc import OperationalError

from app.senexus import bindings
from app.senexus.bindings import install
from app.senexus.models import FirmRole
from app.senexus.navigation import Composed, Fallback, compose_navigation, static_navigation


def _titles(sections):
    return [s["title"] for s in sections]


def test_manager_sees_hr_but_not_disabled_crm(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm", is_enabled=False)
    result = compose_navigation(ctx_for("manager@example.com"), seeded["alpha"], "alpha", FirmRole.MANAGER)
    assert isinstance(result, Composed)
    assert _titles(result.sections) == ["Tableau de bord", "Ressources Humaines", "Compte"]

    hr = result.sections[1]
    assert hr["url"] == "/alpha/hr"
    urls = [i["url"] for i in hr["items"]]
    assert urls[0] == "/alpha/hr"
    assert "/alpha/hr/employees" in urls
    # payroll and departments are OWNER/ADMIN only
    assert "/alpha/hr/payroll" not in urls
    assert "/alpha/hr/departments" not in urls


def test_admin_sees_admin_routes_and_enabled_crm(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm")
    result = compose_navigation(ctx_for("admin@example.com"), seeded["alpha"], "alpha", FirmRole.ADMIN)
    assert _titles(result.sections) == ["Tableau de bord", "CRM", "Ressources Humaines", "Compte"]
    hr_urls = [i["url"] for i in result.sections[2]["items"]]
    assert "/alpha/hr/payroll" in hr_urls


def test_staff_sees_no_hr_section(ctx_for, seeded):
    install(ctx_for("owner@example.com"), seeded["alpha"], "crm")
    result = compose_navigation(ctx_for("staff@example.com"), seeded["alpha"], "alpha", FirmRole.STAFF)
    assert _titles(result.sections) == ["Tableau de bord", "CRM", "Compte"]
    crm_urls = [i["url"] for i in result.sections[1]["items"]]
    assert "/alpha/crm/clients" in crm_urls
    assert "/alpha/crm/reports" not in crm_urls


def test_store_failure_returns_static_fallback(ctx_for, seeded, monkeypatch):
    def _boom(s, firm_id):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(bindings, "enabled_bindings", _boom)
    result = compose_navigation(ctx_for("manager@example.com"), seeded["alpha"], "alpha", FirmRole.MANAGER)
    assert isinstance(result, Fallback)
    assert result.reason == "OperationalError"
    assert result.sections == static_navigation("alpha")


def test_static_navigation_shape():
    sections = static_navigation("acme")
    assert _titles(sections) == ["Tableau de bord", "Compte", "Ressources Humaines"]
    assert sections[0]["url"] == "/acme/dashboard/overview"


def test_route_requires_firm_id(client, login):
    headers = login("manager@example.com")
    r = client.get("/navigation", headers=headers)
    assert r.status_code == 400


def test_route_composes(client, login, seeded):
    headers = login("manager@example.com")
    r = client.get(f"/navigation?firmId={seeded['alpha']}", headers=headers)
    assert r.status_code == 200
    assert r.json["firmSlug"] == "alpha"
    assert r.json["userRole"] == "MANAGER"
    assert "fallback" not in r.json
    assert _titles(r.json["navigation"]) == ["Tableau de bord", "Ressources Humaines", "Compte"]


def test_route_non_member_is_403(client, login, seeded):
    headers = login("outsider@example.com")
    assert client.get(f"/navigation?firmId={seeded['alpha']}", headers=headers).status_code == 403


def test_route_anonymous_is_401(client, seeded):
    assert client.get(f"/navigation?firmId={seeded['alpha']}").status_code == 401


def test_route_fallback(client, login, seeded, monkeypatch):
    def _boom(s, firm_id):
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    monkeypatch.setattr(bindings, "enabled_bindings", _boom)
    headers = login("manager@example.com")
    r = client.get("/navigation?firmId=alpha", headers=headers)
    assert r.status_code == 200
    assert r.json["fallback"] is True
    assert r.json["firmSlug"] == "alpha"
    assert r.json["navigation"] == static_navigation("alpha")
