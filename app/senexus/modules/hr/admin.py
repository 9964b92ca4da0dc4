from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.senexus.errors import ValidationError
from app.senexus.modules.hr.models import Contract, Employee, EmployeeDocument, EmployeeTransfer
from app.senexus.modules.hr.parsers.csv import parse_employee_csv
from app.senexus.modules.hr.service import (
    add_document,
    approve_transfer,
    bulk_import_employees,
    complete_transfer,
    create_contract,
    create_employee,
    delete_contract,
    delete_employee,
    get_contract,
    get_employee,
    get_transfer,
    list_contracts,
    list_documents,
    list_employees,
    list_transfers,
    reject_transfer,
    renew_contract,
    request_transfer,
    terminate_contract,
    update_contract,
    update_document,
    update_employee,
)
from app.senexus.rbac import current_context, require_login
from app.senexus.storage import storage_from_config
from app.senexus.utils import require_json_object

bp = Blueprint("hr", __name__)

_MAX_CSV_BYTES = 5 * 1024 * 1024


def _iso(v):
    return v.isoformat() if v is not None else None


def employee_to_dict(e: Employee) -> dict:
    return {
        "id": e.id,
        "firmId": e.firm_id,
        "matricule": e.matricule,
        "firstName": e.first_name,
        "lastName": e.last_name,
        "fullName": e.full_name,
        "dateOfBirth": _iso(e.date_of_birth),
        "placeOfBirth": e.place_of_birth,
        "maritalStatus": e.marital_status,
        "nationality": e.nationality,
        "cni": e.cni,
        "email": e.email,
        "phone": e.phone,
        "jobTitle": e.job_title,
        "category": e.category,
        "hireDate": _iso(e.hire_date),
        "contractEndDate": _iso(e.contract_end_date),
        "status": e.status,
        "departmentId": e.department_id,
        "assignedClientId": e.assigned_client_id,
        "createdAt": _iso(e.created_at),
    }


def contract_to_dict(c: Contract) -> dict:
    return {
        "id": c.id,
        "firmId": c.firm_id,
        "employeeId": c.employee_id,
        "employeeName": c.employee.full_name if c.employee is not None else None,
        "clientId": c.client_id,
        "type": c.contract_type,
        "startDate": _iso(c.start_date),
        "endDate": _iso(c.end_date),
        "position": c.job_title,
        "status": c.status,
        "isActive": c.is_active,
        "terminationDate": _iso(c.termination_date),
        "terminationReason": c.termination_reason,
        "renewedFromId": c.renewed_from_id,
    }


def transfer_to_dict(t: EmployeeTransfer) -> dict:
    return {
        "id": t.id,
        "employeeId": t.employee_id,
        "employeeName": t.employee.full_name if t.employee is not None else None,
        "fromFirmId": t.from_firm_id,
        "toFirmId": t.to_firm_id,
        "transferDate": _iso(t.transfer_date),
        "effectiveDate": _iso(t.effective_date),
        "reason": t.reason,
        "notes": t.notes,
        "status": t.status,
        "requestedBy": t.requested_by_user_id,
        "approvedBy": t.approved_by_user_id,
        "approvedAt": _iso(t.approved_at),
        "rejectionReason": t.rejection_reason,
        "createdAt": _iso(t.created_at),
    }


def document_to_dict(d: EmployeeDocument) -> dict:
    return {
        "id": d.id,
        "employeeId": d.employee_id,
        "documentType": d.document_type,
        "fileName": d.file_name,
        "fileUrl": d.file_url,
        "fileSize": d.file_size,
        "mimeType": d.mime_type,
        "description": d.description,
        "expiryDate": _iso(d.expiry_date),
        "isVerified": d.is_verified,
        "verifiedBy": d.verified_by_user_id,
        "verifiedAt": _iso(d.verified_at),
        "uploadedBy": d.uploaded_by_user_id,
        "createdAt": _iso(d.created_at),
    }


def _json_body() -> dict:
    return require_json_object(request.get_json(silent=True))


# ---------- Employees ----------
@bp.get("/firms/<firm_ref>/hr/employees")
@require_login
def employees_list(firm_ref: str):
    ctx = current_context()
    employees = list_employees(
        ctx,
        firm_ref,
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
    )
    return jsonify([employee_to_dict(e) for e in employees])


@bp.post("/firms/<firm_ref>/hr/employees")
@require_login
def employees_create(firm_ref: str):
    ctx = current_context()
    emp = create_employee(ctx, firm_ref, _json_body())
    ctx.session.commit()
    return jsonify(employee_to_dict(emp)), 201


@bp.post("/firms/<firm_ref>/hr/employees/bulk-import")
@require_login
def employees_bulk_import(firm_ref: str):
    """
    Accepts either JSON ``{"employees": [...], "clientId": n}`` or a multipart
    upload with a ``file`` CSV (semicolon or comma separated).
    """
    ctx = current_context()
    f = request.files.get("file")
    if f is not None:
        raw = f.read()
        if len(raw) > _MAX_CSV_BYTES:
            raise ValidationError("File too large", details={"file": "Maximum size is 5MB."})
        try:
            rows, parse_errors = parse_employee_csv(raw)
        except ValueError as e:
            raise ValidationError(str(e), details={"file": str(e)}) from e
        if parse_errors:
            raise ValidationError(
                f"{len(parse_errors)} unreadable row(s); nothing was imported",
                details={"rows": [{"row": pe.row_number, "errors": {"row": pe.message}} for pe in parse_errors]},
            )
        client_raw = (request.form.get("clientId") or "").strip()
        source = "csv"
    else:
        body = _json_body()
        rows = body.get("employees")
        client_raw = body.get("clientId")
        source = "json"

    client_id = None
    if client_raw not in (None, ""):
        try:
            client_id = int(client_raw)
        except (TypeError, ValueError):
            raise ValidationError("Invalid data", details={"clientId": "clientId must be an integer."}) from None

    created = bulk_import_employees(ctx, firm_ref, rows, client_id=client_id, source=source)
    ctx.session.commit()
    return jsonify({"count": len(created), "employees": [employee_to_dict(e) for e in created]}), 201


@bp.get("/firms/<firm_ref>/hr/employees/<int:employee_id>")
@require_login
def employees_get(firm_ref: str, employee_id: int):
    ctx = current_context()
    emp = get_employee(ctx, firm_ref, employee_id)
    out = employee_to_dict(emp)
    out["contracts"] = [contract_to_dict(c) for c in sorted(emp.contracts, key=lambda c: c.start_date, reverse=True)]
    return jsonify(out)


@bp.put("/firms/<firm_ref>/hr/employees/<int:employee_id>")
@require_login
def employees_update(firm_ref: str, employee_id: int):
    ctx = current_context()
    emp = update_employee(ctx, firm_ref, employee_id, _json_body())
    ctx.session.commit()
    return jsonify(employee_to_dict(emp))


@bp.delete("/firms/<firm_ref>/hr/employees/<int:employee_id>")
@require_login
def employees_delete(firm_ref: str, employee_id: int):
    ctx = current_context()
    delete_employee(ctx, firm_ref, employee_id)
    ctx.session.commit()
    return jsonify({"success": True})


# ---------- Documents ----------
@bp.get("/firms/<firm_ref>/hr/employees/<int:employee_id>/documents")
@require_login
def documents_list(firm_ref: str, employee_id: int):
    ctx = current_context()
    return jsonify([document_to_dict(d) for d in list_documents(ctx, firm_ref, employee_id)])


@bp.post("/firms/<firm_ref>/hr/employees/<int:employee_id>/documents")
@require_login
def documents_create(firm_ref: str, employee_id: int):
    """
    Multipart with a ``file`` part (stored through the configured Storage),
    or JSON describing a file that is already stored.
    """
    ctx = current_context()
    f = request.files.get("file")
    if f is not None:
        doc = add_document(
            ctx,
            firm_ref,
            employee_id,
            request.form.to_dict(),
            upload=(f.read(), f.filename or "document", f.mimetype),
            storage=storage_from_config(current_app.config),
        )
    else:
        doc = add_document(ctx, firm_ref, employee_id, _json_body())
    ctx.session.commit()
    return jsonify(document_to_dict(doc)), 201


@bp.patch("/firms/<firm_ref>/hr/employees/<int:employee_id>/documents/<int:document_id>")
@require_login
def documents_update(firm_ref: str, employee_id: int, document_id: int):
    ctx = current_context()
    doc = update_document(ctx, firm_ref, employee_id, document_id, _json_body())
    ctx.session.commit()
    return jsonify(document_to_dict(doc))


# ---------- Contracts ----------
@bp.get("/firms/<firm_ref>/hr/contracts")
@require_login
def contracts_list(firm_ref: str):
    ctx = current_context()
    contracts = list_contracts(ctx, firm_ref, status=(request.args.get("status") or "").strip() or None)
    return jsonify([contract_to_dict(c) for c in contracts])


@bp.post("/firms/<firm_ref>/hr/contracts")
@require_login
def contracts_create(firm_ref: str):
    ctx = current_context()
    contract = create_contract(ctx, firm_ref, _json_body())
    ctx.session.commit()
    return jsonify(contract_to_dict(contract)), 201


@bp.get("/firms/<firm_ref>/hr/contracts/<int:contract_id>")
@require_login
def contracts_get(firm_ref: str, contract_id: int):
    ctx = current_context()
    return jsonify(contract_to_dict(get_contract(ctx, firm_ref, contract_id)))


@bp.put("/firms/<firm_ref>/hr/contracts/<int:contract_id>")
@require_login
def contracts_update(firm_ref: str, contract_id: int):
    ctx = current_context()
    contract = update_contract(ctx, firm_ref, contract_id, _json_body())
    ctx.session.commit()
    return jsonify(contract_to_dict(contract))


@bp.delete("/firms/<firm_ref>/hr/contracts/<int:contract_id>")
@require_login
def contracts_delete(firm_ref: str, contract_id: int):
    ctx = current_context()
    delete_contract(ctx, firm_ref, contract_id)
    ctx.session.commit()
    return jsonify({"success": True})


@bp.post("/firms/<firm_ref>/hr/contracts/<int:contract_id>/renew")
@require_login
def contracts_renew(firm_ref: str, contract_id: int):
    ctx = current_context()
    contract = renew_contract(ctx, firm_ref, contract_id, _json_body())
    ctx.session.commit()
    return jsonify(contract_to_dict(contract)), 201


@bp.post("/firms/<firm_ref>/hr/contracts/<int:contract_id>/terminate")
@require_login
def contracts_terminate(firm_ref: str, contract_id: int):
    ctx = current_context()
    body = request.get_json(silent=True) or {}
    reason = body.get("reason") if isinstance(body, dict) else None
    contract = terminate_contract(ctx, firm_ref, contract_id, reason)
    ctx.session.commit()
    return jsonify(contract_to_dict(contract))


# ---------- Transfers ----------
@bp.get("/firms/<firm_ref>/hr/transfers")
@require_login
def transfers_list(firm_ref: str):
    ctx = current_context()
    transfers = list_transfers(ctx, firm_ref, status=(request.args.get("status") or "").strip() or None)
    return jsonify([transfer_to_dict(t) for t in transfers])


@bp.post("/firms/<firm_ref>/hr/transfers")
@require_login
def transfers_create(firm_ref: str):
    ctx = current_context()
    transfer = request_transfer(ctx, firm_ref, _json_body())
    ctx.session.commit()
    return jsonify(transfer_to_dict(transfer)), 201


@bp.get("/firms/<firm_ref>/hr/transfers/<int:transfer_id>")
@require_login
def transfers_get(firm_ref: str, transfer_id: int):
    ctx = current_context()
    return jsonify(transfer_to_dict(get_transfer(ctx, firm_ref, transfer_id)))


@bp.post("/firms/<firm_ref>/hr/transfers/<int:transfer_id>/approve")
@require_login
def transfers_approve(firm_ref: str, transfer_id: int):
    ctx = current_context()
    body = request.get_json(silent=True) or {}
    transfer = approve_transfer(ctx, firm_ref, transfer_id, body if isinstance(body, dict) else {})
    ctx.session.commit()
    return jsonify(transfer_to_dict(transfer))


@bp.post("/firms/<firm_ref>/hr/transfers/<int:transfer_id>/reject")
@require_login
def transfers_reject(firm_ref: str, transfer_id: int):
    ctx = current_context()
    body = _json_body()
    transfer = reject_transfer(ctx, firm_ref, transfer_id, body.get("reason"))
    ctx.session.commit()
    return jsonify(transfer_to_dict(transfer))


@bp.post("/firms/<firm_ref>/hr/transfers/<int:transfer_id>/complete")
@require_login
def transfers_complete(firm_ref: str, transfer_id: int):
    ctx = current_context()
    transfer = complete_transfer(ctx, firm_ref, transfer_id)
    ctx.session.commit()
    return jsonify(transfer_to_dict(transfer))
