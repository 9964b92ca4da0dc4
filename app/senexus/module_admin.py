from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.senexus.bindings import install, list_bindings, module_status, uninstall, update_binding
from app.senexus.errors import ValidationError
from app.senexus.navigation import Fallback, compose_navigation, static_navigation
from app.senexus.rbac import authorize, current_context, require_login, require_platform_admin
from app.senexus.registry import get_module, install_counts, list_modules, register_module, validate_module_payload
from app.senexus.serializers import binding_to_dict, module_to_dict
from app.senexus.utils import find_firm, require_json_object

bp = Blueprint("module_admin", __name__)


def _json_body() -> dict:
    return require_json_object(request.get_json(silent=True))


def _optional_bool(body: dict, key: str) -> bool | None:
    if key not in body or body[key] is None:
        return None
    if not isinstance(body[key], bool):
        raise ValidationError("Invalid body", details={key: "Expected true or false."})
    return body[key]


# ---------- Catalog ----------
@bp.get("/modules")
@require_login
def modules_list():
    ctx = current_context()
    return jsonify(
        [module_to_dict(m, counts=(installs, enabled)) for m, installs, enabled in list_modules(ctx)]
    )


@bp.post("/modules")
@require_login
def modules_register():
    ctx = current_context()
    # Platform-admin check precedes validation: non-admins learn nothing about the body.
    require_platform_admin(ctx)
    fields, errors = validate_module_payload(_json_body())
    if errors:
        raise ValidationError("Invalid module", details=errors)
    module = register_module(ctx, **fields)
    ctx.session.commit()
    return jsonify(module_to_dict(module, counts=install_counts(ctx.session).get(module.id, (0, 0)))), 201


# ---------- Firm bindings ----------
@bp.get("/firms/<firm_ref>/modules")
@require_login
def firm_modules_list(firm_ref: str):
    ctx = current_context()
    return jsonify([binding_to_dict(b) for b in list_bindings(ctx, firm_ref)])


@bp.post("/firms/<firm_ref>/modules")
@require_login
def firm_modules_install(firm_ref: str):
    ctx = current_context()
    # Role check first: a caller without modules.manage gets 403 whatever the body holds.
    authorize(ctx, firm_ref, capability="modules.manage")
    body = _json_body()
    is_enabled = _optional_bool(body, "isEnabled")
    binding = install(
        ctx,
        firm_ref,
        body.get("moduleId"),
        is_enabled=True if is_enabled is None else is_enabled,
        settings=body.get("settings"),
    )
    ctx.session.commit()
    return jsonify(binding_to_dict(binding)), 201


@bp.patch("/firms/<firm_ref>/modules/<module_ref>")
@require_login
def firm_modules_update(firm_ref: str, module_ref: str):
    ctx = current_context()
    authorize(ctx, firm_ref, capability="modules.manage")
    body = _json_body()
    binding = update_binding(
        ctx,
        firm_ref,
        module_ref,
        is_enabled=_optional_bool(body, "isEnabled"),
        settings=body.get("settings"),
    )
    ctx.session.commit()
    return jsonify(binding_to_dict(binding))


@bp.delete("/firms/<firm_ref>/modules/<module_ref>")
@require_login
def firm_modules_uninstall(firm_ref: str, module_ref: str):
    ctx = current_context()
    uninstall(ctx, firm_ref, module_ref)
    ctx.session.commit()
    return jsonify({"success": True})


@bp.get("/firms/<firm_ref>/modules/<module_ref>/status")
@require_login
def firm_module_status(firm_ref: str, module_ref: str):
    ctx = current_context()
    auth = authorize(ctx, firm_ref, capability="modules.view")
    module = get_module(ctx.session, module_ref)
    return jsonify(module_status(ctx.session, auth.firm_id, module.slug))


# ---------- Navigation ----------
@bp.get("/navigation")
@require_login
def navigation():
    firm_ref = (request.args.get("firmId") or "").strip()
    if not firm_ref:
        return jsonify({"error": "firmId is required"}), 400

    ctx = current_context()
    try:
        auth = authorize(ctx, firm_ref, capability="navigation.view")
        result = compose_navigation(ctx, auth.firm_id, auth.firm.slug, auth.role)
    except SQLAlchemyError:
        current_app.logger.exception("navigation: store unavailable for firm %s", firm_ref)
        ctx.session.rollback()
        try:
            firm = find_firm(ctx.session, firm_ref)
        except SQLAlchemyError:
            ctx.session.rollback()
            return (
                jsonify({"error": "Failed to load navigation", "navigation": static_navigation("[firmSlug]"), "fallback": True}),
                500,
            )
        slug = firm.slug if firm is not None else "[firmSlug]"
        return jsonify({"navigation": static_navigation(slug), "firmSlug": slug, "fallback": True})

    if isinstance(result, Fallback):
        return jsonify({"navigation": result.sections, "firmSlug": auth.firm.slug, "fallback": True})
    return jsonify({"navigation": result.sections, "firmSlug": auth.firm.slug, "userRole": auth.role.value})
