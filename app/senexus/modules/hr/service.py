from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.senexus.audit import record_event
from app.senexus.constants import DOCUMENT_CONTENT_TYPES, DOCUMENT_MAX_BYTES
from app.senexus.errors import AppError, Conflict, NotFound, ValidationError, conflict_from_integrity
from app.senexus.models import Firm
from app.senexus.modules.crm.models import Client
from app.senexus.modules.hr.models import (
    CONTRACT_STATUSES,
    CONTRACT_TYPES,
    DOCUMENT_TYPES,
    EMPLOYEE_STATUSES,
    Contract,
    Department,
    Employee,
    EmployeeDocument,
    EmployeeTransfer,
)
from app.senexus.rbac import Authorized, RequestContext, authorize
from app.senexus.storage import Storage, StorageError
from app.senexus.utils import clean_str, parse_flexible_date

logger = logging.getLogger(__name__)

MODULE = "hr"
# Contract types that must carry an end date.
FIXED_TERM_TYPES = ("CDD", "INTERIM", "PRESTATION")

_MATRICULE_TAKEN = "One or more matricules already exist"


def _date_field(payload: dict, key: str, label: str, errors: dict[str, str], *, required: bool = False) -> date | None:
    raw = payload.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors[key] = f"{label} is required."
        return None
    try:
        return parse_flexible_date(str(raw))
    except ValueError:
        errors[key] = f"{label}: invalid date format."
        return None


def _int_field(payload: dict, key: str, errors: dict[str, str], *, required: bool = False) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        if required:
            errors[key] = f"{key} is required."
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors[key] = f"{key} must be an integer."
        return None


# ---------- Employees ----------


def validate_employee_payload(payload: dict) -> tuple[dict[str, Any], dict[str, str]]:
    """Returns (fields, errors). Field errors are keyed by payload key."""
    errors: dict[str, str] = {}
    first_name = clean_str(payload.get("firstName"))
    last_name = clean_str(payload.get("lastName"))
    if not first_name:
        errors["firstName"] = "First name is required."
    if not last_name:
        errors["lastName"] = "Last name is required."

    hire_date = _date_field(payload, "hireDate", "Hire date", errors, required=True)
    dob = _date_field(payload, "dateOfBirth", "Date of birth", errors)
    end = _date_field(payload, "contractEndDate", "Contract end date", errors)
    if hire_date and end and end < hire_date:
        errors["contractEndDate"] = "Contract end date is before the hire date."
    if dob and hire_date and dob >= hire_date:
        errors["dateOfBirth"] = "Date of birth must be before the hire date."

    status = (clean_str(payload.get("status")) or "ACTIVE").upper()
    if status not in EMPLOYEE_STATUSES:
        errors["status"] = f"Status must be one of: {', '.join(EMPLOYEE_STATUSES)}"

    fields = {
        "matricule": clean_str(payload.get("matricule")),
        "first_name": first_name,
        "last_name": last_name,
        "date_of_birth": dob,
        "place_of_birth": clean_str(payload.get("placeOfBirth")),
        "marital_status": clean_str(payload.get("maritalStatus")),
        "nationality": clean_str(payload.get("nationality")),
        "cni": clean_str(payload.get("cni")),
        "email": clean_str(payload.get("email")),
        "phone": clean_str(payload.get("phone")),
        "job_title": clean_str(payload.get("jobTitle")),
        "category": clean_str(payload.get("category")),
        "hire_date": hire_date,
        "contract_end_date": end,
        "status": status,
        "department_id": _int_field(payload, "departmentId", errors),
        "assigned_client_id": _int_field(payload, "assignedClientId", errors),
    }
    return fields, errors


def _matricule_prefix(hire_date: date | None) -> str:
    return f"EMP-{(hire_date or date.today()).year}-"


def generate_matricules(s: Session, hire_dates: list[date | None], reserved: set[str]) -> list[str]:
    """Next free EMP-<year>-<seq> codes, skipping anything in the DB or in ``reserved``."""
    out = []
    taken_by_prefix: dict[str, set[str]] = {}
    for hd in hire_dates:
        prefix = _matricule_prefix(hd)
        if prefix not in taken_by_prefix:
            taken_by_prefix[prefix] = set(
                s.execute(select(Employee.matricule).where(Employee.matricule.like(f"{prefix}%"))).scalars()
            )
        taken = taken_by_prefix[prefix]
        seq = len(taken) + 1
        while f"{prefix}{seq:03d}" in taken or f"{prefix}{seq:03d}" in reserved:
            seq += 1
        code = f"{prefix}{seq:03d}"
        taken.add(code)
        out.append(code)
    return out


def _check_department(s: Session, firm_id: int, department_id: int | None) -> None:
    if department_id is None:
        return
    dept = s.execute(
        select(Department).where(Department.id == department_id, Department.firm_id == firm_id)
    ).scalar_one_or_none()
    if dept is None:
        raise ValidationError("Invalid department", details={"departmentId": "Department not found in this firm."})


def _check_client(s: Session, firm_id: int, client_id: int | None) -> None:
    if client_id is None:
        return
    client = s.execute(select(Client).where(Client.id == client_id, Client.firm_id == firm_id)).scalar_one_or_none()
    if client is None:
        raise ValidationError("Invalid client", details={"clientId": "Client not found in this firm."})


def list_employees(ctx: RequestContext, firm_ref: str | int, *, status: str | None = None, search: str | None = None) -> list[Employee]:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.view")
    q = select(Employee).where(Employee.firm_id == auth.firm_id)
    if status:
        q = q.where(Employee.status == status.upper())
    if search:
        like = f"%{search}%"
        q = q.where(or_(Employee.first_name.ilike(like), Employee.last_name.ilike(like), Employee.matricule.ilike(like)))
    return list(ctx.session.execute(q.order_by(Employee.last_name.asc(), Employee.first_name.asc())).scalars())


def create_employee(ctx: RequestContext, firm_ref: str | int, payload: dict) -> Employee:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.create")
    s = ctx.session
    fields, errors = validate_employee_payload(payload)
    if errors:
        raise ValidationError("Invalid employee", details=errors)
    _check_client(s, auth.firm_id, fields["assigned_client_id"])
    _check_department(s, auth.firm_id, fields["department_id"])
    if fields["matricule"]:
        if s.execute(select(Employee.id).where(Employee.matricule == fields["matricule"])).first() is not None:
            raise Conflict("This matricule already exists")
    else:
        fields["matricule"] = generate_matricules(s, [fields["hire_date"]], set())[0]

    now = datetime.utcnow()
    emp = Employee(firm_id=auth.firm_id, created_at=now, updated_at=now, **fields)
    s.add(emp)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise conflict_from_integrity(e, "This matricule already exists") from e

    record_event(
        s,
        actor=auth.user,
        action="employee.create",
        firm_id=auth.firm_id,
        entity="Employee",
        entity_id=emp.id,
        metadata={"matricule": emp.matricule, "name": emp.full_name},
        request_id=ctx.request_id,
    )
    return emp


# Request key -> Employee attribute, for partial updates.
_EMPLOYEE_FIELDS = {
    "matricule": "matricule",
    "firstName": "first_name",
    "lastName": "last_name",
    "dateOfBirth": "date_of_birth",
    "placeOfBirth": "place_of_birth",
    "maritalStatus": "marital_status",
    "nationality": "nationality",
    "cni": "cni",
    "email": "email",
    "phone": "phone",
    "jobTitle": "job_title",
    "category": "category",
    "hireDate": "hire_date",
    "contractEndDate": "contract_end_date",
    "status": "status",
    "departmentId": "department_id",
    "assignedClientId": "assigned_client_id",
}


def _as_payload(obj: Any, mapping: dict[str, str]) -> dict[str, Any]:
    out = {}
    for key, attr in mapping.items():
        value = getattr(obj, attr)
        out[key] = value.isoformat() if isinstance(value, date) else value
    return out


def get_employee(ctx: RequestContext, firm_ref: str | int, employee_id: int) -> Employee:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.view")
    return _employee_in_firm(ctx.session, employee_id, auth.firm_id)


def update_employee(ctx: RequestContext, firm_ref: str | int, employee_id: int, payload: dict) -> Employee:
    """Partial update: keys absent from ``payload`` keep their current value."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.update")
    s = ctx.session
    emp = _employee_in_firm(s, employee_id, auth.firm_id)

    merged = _as_payload(emp, _EMPLOYEE_FIELDS)
    merged.update({k: v for k, v in payload.items() if k in _EMPLOYEE_FIELDS})
    fields, errors = validate_employee_payload(merged)
    if not fields["matricule"]:
        errors["matricule"] = "Matricule cannot be cleared."
    if errors:
        raise ValidationError("Invalid employee", details=errors)
    if fields["assigned_client_id"] != emp.assigned_client_id:
        _check_client(s, auth.firm_id, fields["assigned_client_id"])
    if fields["department_id"] != emp.department_id:
        _check_department(s, auth.firm_id, fields["department_id"])
    if fields["matricule"] != emp.matricule:
        taken = s.execute(select(Employee.id).where(Employee.matricule == fields["matricule"])).first()
        if taken is not None:
            raise Conflict("This matricule already exists")

    changes = {}
    for attr, value in fields.items():
        old = getattr(emp, attr)
        if old != value:
            changes[attr] = {"old": old, "new": value}
            setattr(emp, attr, value)
    if not changes:
        return emp
    emp.updated_at = datetime.utcnow()
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise conflict_from_integrity(e, "This matricule already exists") from e

    record_event(
        s,
        actor=auth.user,
        action="employee.update",
        firm_id=auth.firm_id,
        entity="Employee",
        entity_id=emp.id,
        metadata={"changes": changes},
        request_id=ctx.request_id,
    )
    return emp


def delete_employee(ctx: RequestContext, firm_ref: str | int, employee_id: int) -> None:
    """Contracts, transfers and documents of the employee go with it."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.delete")
    s = ctx.session
    emp = _employee_in_firm(s, employee_id, auth.firm_id)
    meta = {"matricule": emp.matricule, "name": emp.full_name}
    emp_id = emp.id
    s.delete(emp)
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="employee.delete",
        firm_id=auth.firm_id,
        entity="Employee",
        entity_id=emp_id,
        metadata=meta,
        request_id=ctx.request_id,
    )
    logger.info("employee %s deleted from firm %s", meta["matricule"], auth.firm.slug)


def bulk_import_employees(
    ctx: RequestContext,
    firm_ref: str | int,
    rows: list[dict],
    *,
    client_id: int | None = None,
    source: str = "json",
) -> list[Employee]:
    """
    All-or-nothing import. Any invalid row, or any matricule collision (within
    the batch or with existing employees), rejects the whole batch.
    """
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.employees.import")
    s = ctx.session
    if not isinstance(rows, list) or not rows:
        raise ValidationError("Invalid data", details={"employees": "Expected a non-empty list."})
    _check_client(s, auth.firm_id, client_id)

    parsed: list[dict[str, Any]] = []
    row_errors = []
    for i, row in enumerate(rows, start=1):
        row_no = row.get("_row", i) if isinstance(row, dict) else i
        if not isinstance(row, dict):
            row_errors.append({"row": row_no, "errors": {"row": "Expected an object."}})
            continue
        fields, errors = validate_employee_payload(row)
        if errors:
            row_errors.append({"row": row_no, "errors": errors})
            continue
        parsed.append(fields)
    if row_errors:
        raise ValidationError(f"{len(row_errors)} invalid row(s); nothing was imported", details={"rows": row_errors})
    for dept_id in {f["department_id"] for f in parsed if f["department_id"] is not None}:
        _check_department(s, auth.firm_id, dept_id)
    if client_id is None:
        for cid in {f["assigned_client_id"] for f in parsed if f["assigned_client_id"] is not None}:
            _check_client(s, auth.firm_id, cid)

    given = [f["matricule"] for f in parsed if f["matricule"]]
    dupes = sorted({m for m in given if given.count(m) > 1})
    if dupes:
        raise Conflict(_MATRICULE_TAKEN, details={"matricules": dupes})
    existing = sorted(s.execute(select(Employee.matricule).where(Employee.matricule.in_(given))).scalars()) if given else []
    if existing:
        raise Conflict(_MATRICULE_TAKEN, details={"matricules": existing})

    missing = [f for f in parsed if not f["matricule"]]
    for f, code in zip(missing, generate_matricules(s, [f["hire_date"] for f in missing], set(given))):
        f["matricule"] = code

    now = datetime.utcnow()
    created = []
    for f in parsed:
        if client_id is not None:
            f["assigned_client_id"] = client_id
        emp = Employee(firm_id=auth.firm_id, created_at=now, updated_at=now, **f)
        s.add(emp)
        created.append(emp)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise conflict_from_integrity(e, _MATRICULE_TAKEN) from e

    record_event(
        s,
        actor=auth.user,
        action="employee.bulk_import",
        firm_id=auth.firm_id,
        entity="Employee",
        metadata={"count": len(created), "source": source, "client_id": client_id},
        request_id=ctx.request_id,
    )
    logger.info("bulk import: %d employees into firm %s", len(created), auth.firm.slug)
    return created


# ---------- Contracts ----------


def validate_contract_payload(payload: dict) -> tuple[dict[str, Any], dict[str, str]]:
    errors: dict[str, str] = {}
    ctype = (clean_str(payload.get("type")) or "CDD").upper()
    if ctype not in CONTRACT_TYPES:
        errors["type"] = f"Type must be one of: {', '.join(CONTRACT_TYPES)}"
    start = _date_field(payload, "startDate", "Start date", errors, required=True)
    end = _date_field(payload, "endDate", "End date", errors, required=ctype in FIXED_TERM_TYPES)
    if start and end and end < start:
        errors["endDate"] = "End date is before the start date."
    fields = {
        "employee_id": _int_field(payload, "employeeId", errors, required=True),
        "client_id": _int_field(payload, "clientId", errors),
        "contract_type": ctype,
        "start_date": start,
        "end_date": end,
        "job_title": clean_str(payload.get("position")) or clean_str(payload.get("jobTitle")),
    }
    return fields, errors


def _employee_in_firm(s: Session, employee_id: int, firm_id: int) -> Employee:
    emp = s.execute(select(Employee).where(Employee.id == employee_id, Employee.firm_id == firm_id)).scalar_one_or_none()
    if emp is None:
        raise NotFound("Employee not found")
    return emp


def list_contracts(ctx: RequestContext, firm_ref: str | int, *, status: str | None = None) -> list[Contract]:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.view")
    q = select(Contract).where(Contract.firm_id == auth.firm_id)
    if status:
        if status.upper() not in CONTRACT_STATUSES:
            raise ValidationError("Invalid status", details={"status": f"Must be one of: {', '.join(CONTRACT_STATUSES)}"})
        q = q.where(Contract.status == status.upper())
    return list(ctx.session.execute(q.order_by(Contract.start_date.desc(), Contract.id.desc())).scalars())


def _add_contract(s: Session, auth: Authorized, firm_id: int, fields: dict[str, Any]) -> Contract:
    now = datetime.utcnow()
    contract = Contract(
        firm_id=firm_id,
        status="ACTIVE",
        is_active=True,
        created_by_user_id=auth.user.id,
        created_at=now,
        updated_at=now,
        **fields,
    )
    s.add(contract)
    s.flush()
    return contract


def create_contract(ctx: RequestContext, firm_ref: str | int, payload: dict) -> Contract:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.create")
    s = ctx.session
    fields, errors = validate_contract_payload(payload)
    if errors:
        raise ValidationError("Invalid contract", details=errors)
    _employee_in_firm(s, fields["employee_id"], auth.firm_id)
    _check_client(s, auth.firm_id, fields["client_id"])

    contract = _add_contract(s, auth, auth.firm_id, fields)
    record_event(
        s,
        actor=auth.user,
        action="contract.create",
        firm_id=auth.firm_id,
        entity="Contract",
        entity_id=contract.id,
        metadata={"employee_id": contract.employee_id, "type": contract.contract_type},
        request_id=ctx.request_id,
    )
    return contract


def terminate_contract(ctx: RequestContext, firm_ref: str | int, contract_id: int, reason: str | None = None) -> Contract:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.terminate")
    s = ctx.session
    contract = _contract_in_firm(s, contract_id, auth.firm_id)
    if contract.status in ("TERMINATED", "EXPIRED"):
        raise ValidationError("Contract is already terminated or expired", details={"status": contract.status})

    contract.status = "TERMINATED"
    contract.is_active = False
    contract.termination_date = date.today()
    contract.termination_reason = clean_str(reason)
    contract.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="contract.terminate",
        firm_id=auth.firm_id,
        entity="Contract",
        entity_id=contract.id,
        reason=contract.termination_reason,
        metadata={"employee_id": contract.employee_id, "termination_date": contract.termination_date},
        request_id=ctx.request_id,
    )
    return contract


def _contract_in_firm(s: Session, contract_id: int, firm_id: int) -> Contract:
    contract = s.execute(
        select(Contract).where(Contract.id == contract_id, Contract.firm_id == firm_id)
    ).scalar_one_or_none()
    if contract is None:
        raise NotFound("Contract not found")
    return contract


def get_contract(ctx: RequestContext, firm_ref: str | int, contract_id: int) -> Contract:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.view")
    return _contract_in_firm(ctx.session, contract_id, auth.firm_id)


# Editable after creation; the employee and start date are fixed.
_CONTRACT_FIELDS = {
    "type": "contract_type",
    "endDate": "end_date",
    "position": "job_title",
    "clientId": "client_id",
}


def update_contract(ctx: RequestContext, firm_ref: str | int, contract_id: int, payload: dict) -> Contract:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.update")
    s = ctx.session
    contract = _contract_in_firm(s, contract_id, auth.firm_id)
    if contract.status != "ACTIVE":
        raise ValidationError("Only active contracts can be edited", details={"status": contract.status})

    merged = _as_payload(contract, _CONTRACT_FIELDS)
    merged.update({k: v for k, v in payload.items() if k in _CONTRACT_FIELDS})
    if "jobTitle" in payload and "position" not in payload:
        merged["position"] = payload["jobTitle"]
    merged["employeeId"] = contract.employee_id
    merged["startDate"] = contract.start_date.isoformat()
    fields, errors = validate_contract_payload(merged)
    if errors:
        raise ValidationError("Invalid contract", details=errors)
    if fields["client_id"] != contract.client_id:
        _check_client(s, auth.firm_id, fields["client_id"])

    changes = {}
    for attr in _CONTRACT_FIELDS.values():
        old, new = getattr(contract, attr), fields[attr]
        if old != new:
            changes[attr] = {"old": old, "new": new}
            setattr(contract, attr, new)
    if not changes:
        return contract
    contract.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="contract.update",
        firm_id=auth.firm_id,
        entity="Contract",
        entity_id=contract.id,
        metadata={"employee_id": contract.employee_id, "changes": changes},
        request_id=ctx.request_id,
    )
    return contract


def delete_contract(ctx: RequestContext, firm_ref: str | int, contract_id: int) -> None:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.delete")
    s = ctx.session
    contract = _contract_in_firm(s, contract_id, auth.firm_id)
    meta = {"employee_id": contract.employee_id, "type": contract.contract_type, "status": contract.status}
    cid = contract.id
    s.delete(contract)
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="contract.delete",
        firm_id=auth.firm_id,
        entity="Contract",
        entity_id=cid,
        metadata=meta,
        request_id=ctx.request_id,
    )


# Renewal limits, in months of 30 days for the cumulative check.
MAX_RENEWABLE_MONTHS = 12
MAX_FIXED_TERM_MONTHS = 24


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end``."""
    months = (end.year - start.year) * 12 + end.month - start.month
    if end.day < start.day:
        months -= 1
    return months


def _fixed_term_days(s: Session, contract: Contract, *, today: date) -> int:
    """Days already spent by the employee on fixed-term contracts still counting towards the cap."""
    rows = s.execute(
        select(Contract).where(
            Contract.employee_id == contract.employee_id,
            Contract.contract_type.in_(FIXED_TERM_TYPES),
            or_(Contract.status.in_(("ACTIVE", "RENEWED")), Contract.id == contract.id),
        )
    ).scalars()
    return sum(((c.end_date or today) - c.start_date).days for c in rows)


def renew_contract(
    ctx: RequestContext,
    firm_ref: str | int,
    contract_id: int,
    payload: dict,
    *,
    today: date | None = None,
) -> Contract:
    """
    Closes ``contract`` as RENEWED and opens its successor with the same type.
    Client and position carry over unless the payload overrides them.

    Refused when the contract is closed, when it already ran longer than
    MAX_RENEWABLE_MONTHS, or when a fixed-term employee would exceed
    MAX_FIXED_TERM_MONTHS in total.
    """
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.contracts.renew")
    s = ctx.session
    today = today or date.today()
    contract = _contract_in_firm(s, contract_id, auth.firm_id)
    if contract.status != "ACTIVE":
        raise ValidationError("Only active contracts can be renewed", details={"status": contract.status})

    errors: dict[str, str] = {}
    start = _date_field(payload, "startDate", "Start date", errors, required=True)
    end = _date_field(payload, "endDate", "End date", errors, required=True)
    client_id = _int_field(payload, "clientId", errors)
    if start and end and end < start:
        errors["endDate"] = "End date is before the start date."
    if errors:
        raise ValidationError("Invalid renewal", details=errors)

    ran = months_between(contract.start_date, contract.end_date or today)
    if ran > MAX_RENEWABLE_MONTHS:
        raise ValidationError(
            f"Contracts longer than {MAX_RENEWABLE_MONTHS} months cannot be renewed",
            details={"currentDuration": ran},
        )
    if contract.contract_type in FIXED_TERM_TYPES:
        current = _fixed_term_days(s, contract, today=today) // 30
        proposed = (end - start).days // 30
        if current + proposed > MAX_FIXED_TERM_MONTHS:
            raise ValidationError(
                f"Fixed-term contracts cannot exceed {MAX_FIXED_TERM_MONTHS} months in total",
                details={
                    "currentDuration": current,
                    "proposedDuration": proposed,
                    "remainingMonths": max(MAX_FIXED_TERM_MONTHS - current, 0),
                },
            )
    if client_id is not None and client_id != contract.client_id:
        _check_client(s, auth.firm_id, client_id)

    contract.status = "RENEWED"
    contract.is_active = False
    contract.updated_at = datetime.utcnow()
    renewed = _add_contract(
        s,
        auth,
        auth.firm_id,
        {
            "employee_id": contract.employee_id,
            "client_id": client_id if client_id is not None else contract.client_id,
            "contract_type": contract.contract_type,
            "start_date": start,
            "end_date": end,
            "job_title": clean_str(payload.get("position")) or contract.job_title,
            "renewed_from_id": contract.id,
        },
    )

    record_event(
        s,
        actor=auth.user,
        action="contract.renew",
        firm_id=auth.firm_id,
        entity="Contract",
        entity_id=renewed.id,
        metadata={"employee_id": renewed.employee_id, "renewed_from_id": contract.id, "end_date": end},
        request_id=ctx.request_id,
    )
    return renewed


# ---------- Transfers ----------


def list_transfers(ctx: RequestContext, firm_ref: str | int, *, status: str | None = None) -> list[EmployeeTransfer]:
    """Transfers where the firm is either the source or the destination."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.view")
    q = select(EmployeeTransfer).where(
        or_(EmployeeTransfer.from_firm_id == auth.firm_id, EmployeeTransfer.to_firm_id == auth.firm_id)
    )
    if status:
        q = q.where(EmployeeTransfer.status == status.upper())
    return list(ctx.session.execute(q.order_by(EmployeeTransfer.created_at.desc())).scalars())


def get_transfer(ctx: RequestContext, firm_ref: str | int, transfer_id: int) -> EmployeeTransfer:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.view")
    transfer = ctx.session.execute(
        select(EmployeeTransfer).where(
            EmployeeTransfer.id == transfer_id,
            or_(EmployeeTransfer.from_firm_id == auth.firm_id, EmployeeTransfer.to_firm_id == auth.firm_id),
        )
    ).scalar_one_or_none()
    if transfer is None:
        raise NotFound("Transfer not found")
    return transfer


def request_transfer(ctx: RequestContext, firm_ref: str | int, payload: dict) -> EmployeeTransfer:
    """Requested from the source firm; the destination firm decides."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.request")
    s = ctx.session

    errors: dict[str, str] = {}
    employee_id = _int_field(payload, "employeeId", errors, required=True)
    to_firm_id = _int_field(payload, "toFirmId", errors, required=True)
    from_firm_id = _int_field(payload, "fromFirmId", errors)
    transfer_date = _date_field(payload, "transferDate", "Transfer date", errors, required=True)
    effective_date = _date_field(payload, "effectiveDate", "Effective date", errors, required=True)
    reason = clean_str(payload.get("reason"))
    if not reason:
        errors["reason"] = "Reason is required."
    if from_firm_id is not None and from_firm_id != auth.firm_id:
        errors["fromFirmId"] = "Transfers are requested from the source firm."
    if to_firm_id is not None and to_firm_id == auth.firm_id:
        errors["toFirmId"] = "Destination must differ from the source firm."
    if errors:
        raise ValidationError("Invalid transfer", details=errors)

    employee = _employee_in_firm(s, employee_id, auth.firm_id)
    to_firm = s.get(Firm, to_firm_id)
    if to_firm is None:
        raise NotFound("Destination firm not found")
    if to_firm.holding_id != auth.firm.holding_id:
        raise ValidationError(
            "Transfers can only occur between firms in the same holding", details={"toFirmId": "Other holding."}
        )
    pending = s.execute(
        select(EmployeeTransfer.id).where(EmployeeTransfer.employee_id == employee.id, EmployeeTransfer.status == "PENDING")
    ).first()
    if pending is not None:
        raise ValidationError("Employee already has a pending transfer request", details={"employeeId": "Pending transfer."})

    now = datetime.utcnow()
    transfer = EmployeeTransfer(
        employee_id=employee.id,
        from_firm_id=auth.firm_id,
        to_firm_id=to_firm.id,
        transfer_date=transfer_date,
        effective_date=effective_date,
        reason=reason,
        notes=clean_str(payload.get("notes")),
        status="PENDING",
        requested_by_user_id=auth.user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(transfer)
    s.flush()
    record_event(
        s,
        actor=auth.user,
        action="transfer.create",
        firm_id=auth.firm_id,
        entity="EmployeeTransfer",
        entity_id=transfer.id,
        reason=reason,
        metadata={"employee_id": employee.id, "from_firm_id": auth.firm_id, "to_firm_id": to_firm.id},
        request_id=ctx.request_id,
    )
    return transfer


def _incoming_transfer(s: Session, transfer_id: int, firm_id: int) -> EmployeeTransfer:
    transfer = s.execute(
        select(EmployeeTransfer).where(EmployeeTransfer.id == transfer_id, EmployeeTransfer.to_firm_id == firm_id)
    ).scalar_one_or_none()
    if transfer is None:
        raise NotFound("Transfer not found")
    return transfer


def approve_transfer(ctx: RequestContext, firm_ref: str | int, transfer_id: int, payload: dict | None = None) -> EmployeeTransfer:
    """Destination firm approves. Optionally opens a contract in the destination firm."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.decide")
    s = ctx.session
    payload = payload or {}
    transfer = _incoming_transfer(s, transfer_id, auth.firm_id)
    if transfer.status != "PENDING":
        raise ValidationError("Can only approve pending transfers", details={"status": transfer.status})

    contract = None
    if payload.get("createNewContract"):
        data = payload.get("contractData")
        if not isinstance(data, dict):
            raise ValidationError("Invalid contract", details={"contractData": "Expected an object."})
        fields, errors = validate_contract_payload({**data, "employeeId": transfer.employee_id})
        if errors:
            raise ValidationError("Invalid contract", details=errors)
        contract = _add_contract(s, auth, auth.firm_id, fields)

    transfer.status = "APPROVED"
    transfer.approved_by_user_id = auth.user.id
    transfer.approved_at = datetime.utcnow()
    transfer.updated_at = transfer.approved_at
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="transfer.approve",
        firm_id=auth.firm_id,
        entity="EmployeeTransfer",
        entity_id=transfer.id,
        metadata={
            "employee_id": transfer.employee_id,
            "from_firm_id": transfer.from_firm_id,
            "contract_id": contract.id if contract else None,
        },
        request_id=ctx.request_id,
    )
    return transfer


def reject_transfer(ctx: RequestContext, firm_ref: str | int, transfer_id: int, reason: str | None) -> EmployeeTransfer:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.decide")
    s = ctx.session
    transfer = _incoming_transfer(s, transfer_id, auth.firm_id)
    if transfer.status != "PENDING":
        raise ValidationError("Can only reject pending transfers", details={"status": transfer.status})
    reason = clean_str(reason)
    if not reason:
        raise ValidationError("Rejection reason is required", details={"reason": "Required."})

    transfer.status = "REJECTED"
    transfer.rejection_reason = reason
    transfer.approved_by_user_id = auth.user.id
    transfer.approved_at = datetime.utcnow()
    transfer.updated_at = transfer.approved_at
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="transfer.reject",
        firm_id=auth.firm_id,
        entity="EmployeeTransfer",
        entity_id=transfer.id,
        reason=reason,
        metadata={"employee_id": transfer.employee_id, "from_firm_id": transfer.from_firm_id},
        request_id=ctx.request_id,
    )
    return transfer


def complete_transfer(ctx: RequestContext, firm_ref: str | int, transfer_id: int, *, today: date | None = None) -> EmployeeTransfer:
    """
    Moves the employee: ends their ACTIVE contracts in the source firm and
    re-homes them in the destination firm. Either firm may complete.
    """
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.transfers.decide")
    s = ctx.session
    transfer = s.execute(
        select(EmployeeTransfer).where(
            EmployeeTransfer.id == transfer_id,
            or_(EmployeeTransfer.from_firm_id == auth.firm_id, EmployeeTransfer.to_firm_id == auth.firm_id),
        )
    ).scalar_one_or_none()
    if transfer is None:
        raise NotFound("Transfer not found")
    if transfer.status != "APPROVED":
        raise ValidationError("Can only complete approved transfers", details={"status": transfer.status})
    if transfer.effective_date > (today or date.today()):
        raise ValidationError("Cannot complete transfer before effective date", details={"effectiveDate": str(transfer.effective_date)})

    ended = s.execute(
        select(Contract).where(
            Contract.employee_id == transfer.employee_id,
            Contract.firm_id == transfer.from_firm_id,
            Contract.status == "ACTIVE",
        )
    ).scalars().all()
    for c in ended:
        c.status = "TERMINATED"
        c.is_active = False
        c.termination_date = date.today()
        c.termination_reason = f"Employee transferred to another firm (transfer #{transfer.id})"
        c.updated_at = datetime.utcnow()

    employee = transfer.employee
    employee.firm_id = transfer.to_firm_id
    # Client assignments belong to the source firm.
    employee.assigned_client_id = None
    employee.updated_at = datetime.utcnow()
    transfer.status = "COMPLETED"
    transfer.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="transfer.complete",
        firm_id=auth.firm_id,
        entity="EmployeeTransfer",
        entity_id=transfer.id,
        metadata={
            "employee_id": employee.id,
            "from_firm_id": transfer.from_firm_id,
            "to_firm_id": transfer.to_firm_id,
            "terminated_contracts": [c.id for c in ended],
        },
        request_id=ctx.request_id,
    )
    return transfer


# ---------- Documents ----------


def list_documents(ctx: RequestContext, firm_ref: str | int, employee_id: int) -> list[EmployeeDocument]:
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.documents.view")
    s = ctx.session
    _employee_in_firm(s, employee_id, auth.firm_id)
    q = (
        select(EmployeeDocument)
        .where(EmployeeDocument.employee_id == employee_id, EmployeeDocument.firm_id == auth.firm_id)
        .order_by(EmployeeDocument.created_at.desc(), EmployeeDocument.id.desc())
    )
    return list(s.execute(q).scalars())


def add_document(
    ctx: RequestContext,
    firm_ref: str | int,
    employee_id: int,
    payload: dict,
    *,
    upload: tuple[bytes, str, str | None] | None = None,
    storage: Storage | None = None,
    max_size: int = DOCUMENT_MAX_BYTES,
) -> EmployeeDocument:
    """
    Attach a document to an employee. Either ``upload`` (data, filename,
    content type) is pushed to ``storage``, or the payload already points at
    a stored file with fileUrl/fileName.
    """
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.documents.upload")
    s = ctx.session
    emp = _employee_in_firm(s, employee_id, auth.firm_id)

    errors: dict[str, str] = {}
    doc_type = (clean_str(payload.get("documentType")) or "").upper()
    if doc_type not in DOCUMENT_TYPES:
        errors["documentType"] = f"Document type must be one of: {', '.join(DOCUMENT_TYPES)}"
    expiry = _date_field(payload, "expiryDate", "Expiry date", errors)
    if upload is None:
        file_url = clean_str(payload.get("fileUrl"))
        file_name = clean_str(payload.get("fileName"))
        file_size = _int_field(payload, "fileSize", errors)
        mime_type = clean_str(payload.get("mimeType"))
        if not file_url:
            errors["fileUrl"] = "A file upload or a fileUrl is required."
        if not file_name:
            errors["fileName"] = "File name is required."
    if errors:
        raise ValidationError("Invalid document", details=errors)

    if upload is not None:
        data, file_name, mime_type = upload
        if storage is None:
            raise AppError("No storage configured for uploads")
        try:
            file_url = storage.upload(
                data, file_name, content_type=mime_type, max_size=max_size, allowed_types=DOCUMENT_CONTENT_TYPES
            )
        except StorageError as e:
            logger.error("document upload failed for employee %s: %s", emp.id, e)
            raise AppError("Failed to upload document", status_code=502) from e
        file_size = len(data)

    now = datetime.utcnow()
    doc = EmployeeDocument(
        firm_id=auth.firm_id,
        employee_id=emp.id,
        document_type=doc_type,
        file_name=file_name,
        file_url=file_url,
        file_size=file_size,
        mime_type=mime_type,
        description=clean_str(payload.get("description")),
        expiry_date=expiry,
        is_verified=False,
        uploaded_by_user_id=auth.user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(doc)
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="document.create",
        firm_id=auth.firm_id,
        entity="EmployeeDocument",
        entity_id=doc.id,
        metadata={"employee_id": emp.id, "document_type": doc_type, "file_name": file_name},
        request_id=ctx.request_id,
    )
    return doc


def update_document(ctx: RequestContext, firm_ref: str | int, employee_id: int, document_id: int, payload: dict) -> EmployeeDocument:
    """Description, expiry date and verification. Verifying stamps who and when."""
    auth = authorize(ctx, firm_ref, module_slug=MODULE, capability="hr.documents.verify")
    s = ctx.session
    doc = s.execute(
        select(EmployeeDocument).where(
            EmployeeDocument.id == document_id,
            EmployeeDocument.employee_id == employee_id,
            EmployeeDocument.firm_id == auth.firm_id,
        )
    ).scalar_one_or_none()
    if doc is None:
        raise NotFound("Document not found")

    errors: dict[str, str] = {}
    expiry = _date_field(payload, "expiryDate", "Expiry date", errors)
    verified = payload.get("isVerified", doc.is_verified)
    if not isinstance(verified, bool):
        errors["isVerified"] = "isVerified must be a boolean."
    if errors:
        raise ValidationError("Invalid document", details=errors)

    changes: dict[str, Any] = {}
    if "description" in payload:
        doc.description = clean_str(payload.get("description"))
        changes["description"] = doc.description
    if "expiryDate" in payload:
        doc.expiry_date = expiry
        changes["expiry_date"] = expiry
    if verified != doc.is_verified:
        doc.is_verified = verified
        doc.verified_by_user_id = auth.user.id if verified else None
        doc.verified_at = datetime.utcnow() if verified else None
        changes["is_verified"] = verified
    if not changes:
        return doc
    doc.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="document.verify" if changes.get("is_verified") else "document.update",
        firm_id=auth.firm_id,
        entity="EmployeeDocument",
        entity_id=doc.id,
        metadata={"employee_id": employee_id, "changes": changes},
        request_id=ctx.request_id,
    )
    return doc
