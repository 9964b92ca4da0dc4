from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select

from app.senexus.constants import IMAGE_CONTENT_TYPES
from app.senexus.errors import ValidationError
from app.senexus.models import Firm, Holding, UserFirm
from app.senexus.rbac import authorize, current_context, require_login
from app.senexus.serializers import audit_to_dict, firm_to_dict, holding_to_dict, membership_to_dict, user_to_dict
from app.senexus.storage import StorageError, storage_from_config
from app.senexus.tenancy import (
    change_password,
    create_firm,
    create_user,
    delete_firm,
    delete_user,
    get_user,
    list_firm_audit,
    list_holding_firms,
    list_members,
    list_user_firms,
    list_users,
    remove_membership,
    set_membership,
    update_firm,
    update_user,
)
from app.senexus.utils import require_json_object

bp = Blueprint("admin", __name__)


def _json_body() -> dict:
    return require_json_object(request.get_json(silent=True))


# ---------- Firms ----------
@bp.get("/user/firms")
@bp.get("/firms")
@require_login
def firms_list():
    ctx = current_context()
    return jsonify([firm_to_dict(f, role=role) for f, role in list_user_firms(ctx)])


@bp.post("/firms")
@require_login
def firms_create():
    ctx = current_context()
    firm = create_firm(ctx, _json_body())
    ctx.session.commit()
    return jsonify(firm_to_dict(firm, role="OWNER")), 201


@bp.get("/firms/by-slug/<slug>")
@require_login
def firm_by_slug(slug: str):
    ctx = current_context()
    auth = authorize(ctx, slug.strip().lower(), capability="firm.view")
    return jsonify(firm_to_dict(auth.firm, role=auth.role.value))


@bp.get("/firms/<firm_ref>")
@require_login
def firm_detail(firm_ref: str):
    ctx = current_context()
    auth = authorize(ctx, firm_ref, capability="firm.view")
    out = firm_to_dict(auth.firm, role=auth.role.value)
    out["holding"] = holding_to_dict(auth.firm.holding)
    return jsonify(out)


@bp.patch("/firms/<firm_ref>")
@require_login
def firm_update(firm_ref: str):
    ctx = current_context()
    firm = update_firm(ctx, firm_ref, _json_body())
    ctx.session.commit()
    return jsonify(firm_to_dict(firm))


@bp.delete("/firms/<firm_ref>")
@require_login
def firm_delete(firm_ref: str):
    ctx = current_context()
    delete_firm(ctx, firm_ref)
    ctx.session.commit()
    return jsonify({"success": True})


@bp.get("/firms/<firm_ref>/audit")
@require_login
def firm_audit(firm_ref: str):
    ctx = current_context()
    return jsonify([audit_to_dict(ev) for ev in list_firm_audit(ctx, firm_ref)])


# ---------- Members ----------
@bp.get("/firms/<firm_ref>/members")
@require_login
def members_list(firm_ref: str):
    ctx = current_context()
    return jsonify(
        [
            {"userId": m.user_id, "role": m.role, "user": user_to_dict(m.user)}
            for m in list_members(ctx, firm_ref)
        ]
    )


@bp.put("/firms/<firm_ref>/members/<int:user_id>")
@require_login
def members_set(firm_ref: str, user_id: int):
    ctx = current_context()
    body = _json_body()
    membership = set_membership(ctx, firm_ref, user_id, str(body.get("role") or ""))
    ctx.session.commit()
    return jsonify(membership_to_dict(membership))


@bp.delete("/firms/<firm_ref>/members/<int:user_id>")
@require_login
def members_remove(firm_ref: str, user_id: int):
    ctx = current_context()
    remove_membership(ctx, firm_ref, user_id)
    ctx.session.commit()
    return jsonify({"success": True})


# ---------- Holdings ----------
@bp.get("/holdings")
@require_login
def holdings_list():
    ctx = current_context()
    user = ctx.require_user()
    holdings = ctx.session.execute(
        select(Holding)
        .join(Firm, Firm.holding_id == Holding.id)
        .join(UserFirm, UserFirm.firm_id == Firm.id)
        .where(UserFirm.user_id == user.id)
        .distinct()
        .order_by(Holding.name.asc())
    ).scalars()
    return jsonify([holding_to_dict(h) for h in holdings])


@bp.get("/holdings/<int:holding_id>/firms")
@require_login
def holding_firms(holding_id: int):
    ctx = current_context()
    module_slug = (request.args.get("module") or "").strip() or None
    firms = list_holding_firms(ctx, holding_id, module_slug)
    return jsonify([firm_to_dict(f) for f in firms])


# ---------- Users ----------
def _user_with_memberships(user) -> dict:
    out = user_to_dict(user)
    out["memberships"] = [{"firmId": m.firm_id, "role": m.role} for m in user.memberships]
    return out


@bp.post("/users")
@require_login
def users_create():
    ctx = current_context()
    user = create_user(ctx, _json_body())
    ctx.session.commit()
    return jsonify(_user_with_memberships(user)), 201


@bp.get("/users")
@require_login
def users_list():
    ctx = current_context()
    return jsonify([_user_with_memberships(u) for u in list_users(ctx)])


@bp.get("/users/<int:user_id>")
@require_login
def users_get(user_id: int):
    ctx = current_context()
    return jsonify(_user_with_memberships(get_user(ctx, user_id)))


@bp.patch("/users/<int:user_id>")
@require_login
def users_update(user_id: int):
    ctx = current_context()
    user = update_user(ctx, user_id, _json_body())
    ctx.session.commit()
    return jsonify(_user_with_memberships(user))


@bp.delete("/users/<int:user_id>")
@require_login
def users_delete(user_id: int):
    ctx = current_context()
    delete_user(ctx, user_id)
    ctx.session.commit()
    return jsonify({"success": True})


@bp.patch("/users/<int:user_id>/password")
@require_login
def users_password(user_id: int):
    ctx = current_context()
    change_password(ctx, user_id, _json_body())
    ctx.session.commit()
    return jsonify({"success": True})


# ---------- Uploads ----------
@bp.post("/upload-image")
@require_login
def upload_image():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("No file provided", details={"file": "Required."})
    storage = storage_from_config(current_app.config)
    try:
        url = storage.upload(
            f.read(),
            f.filename,
            content_type=f.mimetype,
            max_size=int(current_app.config.get("UPLOAD_MAX_BYTES") or 5 * 1024 * 1024),
            allowed_types=IMAGE_CONTENT_TYPES,
        )
    except StorageError as e:
        current_app.logger.error("upload-image failed: %s", e)
        return jsonify({"error": "Failed to upload image"}), 502
    return jsonify({"url": url})
