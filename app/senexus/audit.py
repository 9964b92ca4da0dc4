import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.senexus.models import AuditLog, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    firm_id: int | None = None,
    entity: str | None = None,
    entity_id: str | int | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog:
    """
    Append-only audit event helper.

    The row is added to the caller's session; it commits (or rolls back) together
    with the mutation it describes.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditLog(
        request_id=rid,
        firm_id=firm_id,
        actor_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
