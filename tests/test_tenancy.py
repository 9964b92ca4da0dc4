import pytest
from sqlalchemy import select
from werkzeug.security import check_password_hash

from app.senexus.errors import Conflict, Forbidden, ValidationError
from app.senexus.models import AuditLog, Firm, FirmModule, User, UserFirm
from app.senexus.tenancy import (
    change_password,
    create_firm,
    create_user,
    delete_firm,
    delete_user,
    get_user,
    list_users,
    remove_membership,
    resolve_firm,
    set_membership,
    update_firm,
    update_user,
)


def _firm_payload(seeded, **kw):
    return {"name": "Gamma", "slug": "gamma", "holdingId": seeded["holding"], **kw}


def _user_payload(seeded, **kw):
    return {
        "name": "Fatou Ndiaye",
        "email": "fatou@example.com",
        "password": "s3cret-pass",
        "confirmPassword": "s3cret-pass",
        "role": "MANAGER",
        "firmIds": [seeded["alpha"]],
        **kw,
    }


# ---------- Firms ----------


def test_create_firm_binds_system_modules_and_owner(ctx_for, db, seeded):
    ctx = ctx_for("admin@example.com")
    firm = create_firm(ctx, _firm_payload(seeded))
    db.flush()
    membership = db.execute(select(UserFirm).where(UserFirm.firm_id == firm.id)).scalar_one()
    assert membership.user_id == seeded["users"]["admin@example.com"]
    assert membership.role == "OWNER"
    slugs = [b.module.slug for b in db.execute(select(FirmModule).where(FirmModule.firm_id == firm.id)).scalars()]
    assert slugs == ["hr"]


def test_create_firm_requires_platform_admin(ctx_for, seeded):
    with pytest.raises(Forbidden):
        create_firm(ctx_for("manager@example.com"), _firm_payload(seeded))


def test_create_firm_validation(ctx_for, seeded):
    with pytest.raises(ValidationError) as exc:
        create_firm(ctx_for("owner@example.com"), _firm_payload(seeded, slug="Bad Slug", themeColor="pink", logo="ftp://x"))
    assert set(exc.value.details) == {"slug", "themeColor", "logo"}


def test_duplicate_firm_slug_is_400(client, login, seeded):
    headers = login("owner@example.com")
    r = client.post("/firms", json=_firm_payload(seeded, slug="alpha"), headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "A firm with this slug already exists"


def test_http_create_firm(client, login, seeded):
    headers = login("owner@example.com")
    r = client.post("/firms", json=_firm_payload(seeded), headers=headers)
    assert r.status_code == 201
    assert r.json["role"] == "OWNER"
    r = client.get("/firms/gamma/modules", headers=headers)
    assert [b["module"]["slug"] for b in r.json] == ["hr"]
    r = client.get("/user/firms", headers=headers)
    assert [f["slug"] for f in r.json] == ["alpha", "beta", "gamma"]


def test_update_firm(ctx_for, seeded):
    firm = update_firm(ctx_for("admin@example.com"), seeded["alpha"], {"name": "Alpha SA", "themeColor": "green"})
    assert firm.name == "Alpha SA"
    assert firm.theme_color == "green"
    with pytest.raises(Forbidden):
        update_firm(ctx_for("manager@example.com"), seeded["alpha"], {"name": "Nope"})


def test_update_firm_slug_collision(ctx_for, seeded):
    with pytest.raises(Conflict) as exc:
        update_firm(ctx_for("owner@example.com"), seeded["alpha"], {"slug": "beta"})
    assert exc.value.status_code == 400


def test_delete_firm_is_owner_only(ctx_for, db, seeded):
    with pytest.raises(Forbidden):
        delete_firm(ctx_for("admin@example.com"), seeded["beta"])
    delete_firm(ctx_for("owner@example.com"), seeded["beta"])
    db.commit()
    assert db.get(Firm, seeded["beta"]) is None
    assert db.execute(select(FirmModule).where(FirmModule.firm_id == seeded["beta"])).first() is None


def test_resolve_firm_by_id_or_slug(ctx_for, seeded):
    viewer = ctx_for("viewer@example.com")
    assert resolve_firm(viewer, "alpha").id == seeded["alpha"]
    assert resolve_firm(viewer, str(seeded["alpha"])).slug == "alpha"
    with pytest.raises(Forbidden):
        resolve_firm(viewer, "beta")
    with pytest.raises(Forbidden):
        resolve_firm(viewer, "no-such-firm")


def test_firm_by_slug_and_detail(client, login, seeded):
    headers = login("viewer@example.com")
    r = client.get("/firms/by-slug/alpha", headers=headers)
    assert r.status_code == 200
    assert r.json["role"] == "VIEWER"
    r = client.get(f"/firms/{seeded['alpha']}", headers=headers)
    assert r.json["holding"]["name"] == "Groupe Test"
    assert client.get("/firms/by-slug/beta", headers=headers).status_code == 403


# ---------- Holdings ----------


def test_holding_firms_with_module_filter(client, login, seeded):
    headers = login("owner@example.com")
    client.post("/firms/beta/modules", json={"moduleId": "crm"}, headers=headers)
    r = client.get(f"/holdings/{seeded['holding']}/firms", headers=headers)
    assert [f["slug"] for f in r.json] == ["alpha", "beta"]
    r = client.get(f"/holdings/{seeded['holding']}/firms?module=crm", headers=headers)
    assert [f["slug"] for f in r.json] == ["beta"]
    assert [h["name"] for h in client.get("/holdings", headers=headers).json] == ["Groupe Test"]


def test_holding_firms_outsider_is_403(client, login, seeded):
    headers = login("outsider@example.com")
    r = client.get(f"/holdings/{seeded['holding']}/firms", headers=headers)
    assert r.status_code == 403


# ---------- Users & memberships ----------


def test_create_user(client, login, db, seeded):
    headers = login("admin@example.com")
    r = client.post("/users", json=_user_payload(seeded), headers=headers)
    assert r.status_code == 201
    assert r.json["memberships"] == [{"firmId": seeded["alpha"], "role": "MANAGER"}]
    user = db.execute(select(User).where(User.email == "fatou@example.com")).scalar_one()
    assert check_password_hash(user.password_hash, "s3cret-pass")

    r = client.post("/users", json=_user_payload(seeded), headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "A user with this email already exists"


def test_only_owner_grants_owner(ctx_for, seeded):
    with pytest.raises(Forbidden):
        create_user(ctx_for("admin@example.com"), _user_payload(seeded, role="OWNER"))
    user = create_user(ctx_for("owner@example.com"), _user_payload(seeded, role="OWNER"))
    assert user.memberships[0].role == "OWNER"


def test_create_user_in_foreign_firm_is_forbidden(ctx_for, seeded):
    with pytest.raises(Forbidden):
        create_user(ctx_for("admin@example.com"), _user_payload(seeded, firmIds=[seeded["beta"]]))


def test_last_owner_is_protected(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    owner_id = seeded["users"]["owner@example.com"]
    with pytest.raises(ValidationError):
        set_membership(owner, seeded["alpha"], owner_id, "ADMIN")
    with pytest.raises(ValidationError):
        remove_membership(owner, seeded["alpha"], owner_id)
    with pytest.raises(Forbidden):
        set_membership(ctx_for("admin@example.com"), seeded["alpha"], owner_id, "STAFF")


def test_set_and_remove_membership(client, login, seeded):
    headers = login("admin@example.com")
    outsider = seeded["users"]["outsider@example.com"]
    r = client.put(f"/firms/alpha/members/{outsider}", json={"role": "STAFF"}, headers=headers)
    assert r.status_code == 200
    assert r.json["role"] == "STAFF"
    emails = [m["user"]["email"] for m in client.get("/firms/alpha/members", headers=headers).json]
    assert "outsider@example.com" in emails
    assert client.delete(f"/firms/alpha/members/{outsider}", headers=headers).status_code == 200
    assert client.delete(f"/firms/alpha/members/{outsider}", headers=headers).status_code == 404


def test_change_password(ctx_for, seeded):
    staff_id = seeded["users"]["staff@example.com"]
    with pytest.raises(ValidationError) as exc:
        change_password(ctx_for("staff@example.com"), staff_id, {"password": "new-password"})
    assert "confirmPassword" in exc.value.details
    user = change_password(
        ctx_for("staff@example.com"), staff_id, {"password": "new-password", "confirmPassword": "new-password"}
    )
    assert check_password_hash(user.password_hash, "new-password")

    admin_id = seeded["users"]["admin@example.com"]
    with pytest.raises(Forbidden):
        change_password(ctx_for("staff@example.com"), admin_id, {"password": "hijacked!", "confirmPassword": "hijacked!"})
    change_password(ctx_for("admin@example.com"), staff_id, {"password": "reset-by-admin", "confirmPassword": "reset-by-admin"})


ALPHA_EMAILS = [
    "admin@example.com",
    "manager@example.com",
    "owner@example.com",
    "staff@example.com",
    "viewer@example.com",
]


def test_list_users_covers_managed_firms_only(ctx_for, seeded):
    assert [u.email for u in list_users(ctx_for("admin@example.com"))] == ALPHA_EMAILS
    with pytest.raises(Forbidden):
        list_users(ctx_for("manager@example.com"))
    with pytest.raises(Forbidden):
        list_users(ctx_for("outsider@example.com"))


def test_get_user_visibility(ctx_for, seeded):
    outsider_id = seeded["users"]["outsider@example.com"]
    assert get_user(ctx_for("outsider@example.com"), outsider_id).email == "outsider@example.com"
    assert get_user(ctx_for("admin@example.com"), seeded["users"]["staff@example.com"]).email == "staff@example.com"
    with pytest.raises(Forbidden):
        get_user(ctx_for("admin@example.com"), outsider_id)
    with pytest.raises(Forbidden):
        get_user(ctx_for("staff@example.com"), seeded["users"]["viewer@example.com"])


def test_update_user(ctx_for, db, seeded):
    admin = ctx_for("admin@example.com")
    manager_id = seeded["users"]["manager@example.com"]
    user = update_user(admin, manager_id, {"name": "Mamadou Sy", "email": " Mamadou@Example.com "})
    assert (user.name, user.email) == ("Mamadou Sy", "mamadou@example.com")
    events = db.execute(select(AuditLog).where(AuditLog.action == "user.update")).scalars().all()
    assert [e.entity_id for e in events] == [str(manager_id)]

    with pytest.raises(Conflict) as exc:
        update_user(admin, manager_id, {"email": "staff@example.com"})
    assert exc.value.status_code == 400
    with pytest.raises(ValidationError) as exc:
        update_user(admin, manager_id, {"email": "not-an-email", "name": "x", "isActive": "no"})
    assert set(exc.value.details) == {"email", "name", "isActive"}


def test_deactivate_user(ctx_for, seeded):
    admin = ctx_for("admin@example.com")
    with pytest.raises(ValidationError):
        update_user(admin, seeded["users"]["admin@example.com"], {"isActive": False})
    assert update_user(admin, seeded["users"]["viewer@example.com"], {"isActive": False}).is_active is False


def test_user_can_rename_self_without_a_firm(ctx_for, seeded):
    outsider_id = seeded["users"]["outsider@example.com"]
    assert update_user(ctx_for("outsider@example.com"), outsider_id, {"name": "Ousmane"}).name == "Ousmane"
    with pytest.raises(Forbidden):
        update_user(ctx_for("admin@example.com"), outsider_id, {"name": "Hijack"})


def test_delete_user_rules(ctx_for, db, seeded):
    admin = ctx_for("admin@example.com")
    owner = ctx_for("owner@example.com")
    with pytest.raises(ValidationError):
        delete_user(admin, seeded["users"]["admin@example.com"])
    # The owner also belongs to beta, which the admin does not manage.
    with pytest.raises(Forbidden):
        delete_user(admin, seeded["users"]["owner@example.com"])
    with pytest.raises(Forbidden):
        delete_user(admin, seeded["users"]["outsider@example.com"])

    second_owner = create_user(owner, _user_payload(seeded, role="OWNER"))
    with pytest.raises(Forbidden):
        delete_user(admin, second_owner.id)
    delete_user(owner, second_owner.id)

    staff_id = seeded["users"]["staff@example.com"]
    delete_user(admin, staff_id)
    db.commit()
    assert db.get(User, staff_id) is None
    assert db.execute(select(UserFirm).where(UserFirm.user_id == staff_id)).first() is None
    deleted = db.execute(select(AuditLog.entity_id).where(AuditLog.action == "user.delete")).scalars().all()
    assert sorted(deleted) == sorted([str(second_owner.id), str(staff_id)])


def test_http_user_admin(client, login, seeded):
    headers = login("admin@example.com")
    r = client.get("/users", headers=headers)
    assert r.status_code == 200
    assert [u["email"] for u in r.json] == ALPHA_EMAILS

    viewer_id = seeded["users"]["viewer@example.com"]
    r = client.get(f"/users/{viewer_id}", headers=headers)
    assert r.json["memberships"] == [{"firmId": seeded["alpha"], "role": "VIEWER"}]
    r = client.patch(f"/users/{viewer_id}", json={"name": "Viewer Two"}, headers=headers)
    assert r.status_code == 200
    assert r.json["name"] == "Viewer Two"
    assert client.get(f"/users/{seeded['users']['outsider@example.com']}", headers=headers).status_code == 403

    assert client.delete(f"/users/{viewer_id}", headers=headers).status_code == 200
    assert client.get(f"/users/{viewer_id}", headers=headers).status_code == 404
    assert client.get("/users", headers=login("manager@example.com")).status_code == 403


def test_firm_audit_log(client, login, seeded):
    headers = login("admin@example.com")
    client.patch("/firms/alpha", json={"name": "Alpha SA"}, headers=headers)
    r = client.get("/firms/alpha/audit", headers=headers)
    assert r.status_code == 200
    assert r.json[0]["action"] == "firm.update"
    assert r.json[0]["actorEmail"] == "admin@example.com"
    assert client.get("/firms/alpha/audit", headers=login("staff@example.com")).status_code == 403
