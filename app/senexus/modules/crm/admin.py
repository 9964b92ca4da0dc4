from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.senexus.modules.crm.models import Client
from app.senexus.modules.crm.service import create_client, list_clients
from app.senexus.rbac import current_context, require_login
from app.senexus.utils import require_json_object

bp = Blueprint("crm", __name__)


def client_to_dict(c: Client) -> dict:
    return {
        "id": c.id,
        "firmId": c.firm_id,
        "name": c.name,
        "status": c.status,
        "industry": c.industry,
        "contactName": c.contact_name,
        "contactEmail": c.contact_email,
        "contactPhone": c.contact_phone,
        "address": c.address,
        "notes": c.notes,
        "createdAt": c.created_at.isoformat() if c.created_at else None,
    }


@bp.get("/firms/<firm_ref>/crm/clients")
@require_login
def clients_list(firm_ref: str):
    ctx = current_context()
    clients = list_clients(
        ctx,
        firm_ref,
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
    )
    return jsonify([client_to_dict(c) for c in clients])


@bp.post("/firms/<firm_ref>/crm/clients")
@require_login
def clients_create(firm_ref: str):
    ctx = current_context()
    client = create_client(ctx, firm_ref, require_json_object(request.get_json(silent=True)))
    ctx.session.commit()
    return jsonify(client_to_dict(client)), 201
