from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import select

from app.senexus.audit import record_event
from app.senexus.errors import ValidationError
from app.senexus.modules.crm.models import CLIENT_STATUSES, Client
from app.senexus.rbac import RequestContext, authorize
from app.senexus.utils import clean_str

MODULE = "crm"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_client_payload(payload: dict) -> tuple[dict[str, Any], dict[str, str]]:
    errors: dict[str, str] = {}
    name = clean_str(payload.get("name"))
    if not name or len(name) < 2:
        errors["name"] = "Name must be at least 2 characters."
    status = (clean_str(payload.get("status")) or "ACTIVE").upper()
    if status not in CLIENT_STATUSES:
        errors["status"] = f"Status must be one of: {', '.join(CLIENT_STATUSES)}"
    email = clean_str(payload.get("contactEmail"))
    if email and not _EMAIL_RE.match(email):
        errors["contactEmail"] = "Invalid email address."
    return {
        "name": name,
        "status": status,
        "industry": clean_str(payload.get("industry")),
        "contact_name": clean_str(payload.get("contactName")),
        "contact_email": email.lower() if email else None,
        "contact_phone": clean_str(payload.get("contactPhone")),
        "address": clean_str(payload.get("address")),
        "notes": clean_str(payload.get("notes")),
    }, errors


def list_clients(ctx: RequestContext, firm_ref: str | int, *, status: str | None = None, search: str | None = None) -> list[Client]:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="crm.clients.view")
    q = select(Client).where(Client.firm_id == auth.firm_id)
    if status:
        q = q.where(Client.status == status.upper())
    if search:
        q = q.where(Client.name.ilike(f"%{search}%"))
    return list(ctx.session.execute(q.order_by(Client.name.asc())).scalars())


def create_client(ctx: RequestContext, firm_ref: str | int, payload: dict) -> Client:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="crm.clients.create")
    s = ctx.session
    fields, errors = validate_client_payload(payload)
    if errors:
        raise ValidationError("Invalid client", details=errors)

    now = datetime.utcnow()
    client = Client(firm_id=auth.firm_id, created_by_user_id=auth.user.id, created_at=now, updated_at=now, **fields)
    s.add(client)
    s.flush()
    record_event(
        s,
        actor=auth.user,
        action="client.create",
        firm_id=auth.firm_id,
        entity="Client",
        entity_id=client.id,
        metadata={"name": client.name, "status": client.status},
        request_id=ctx.request_id,
    )
    return client
