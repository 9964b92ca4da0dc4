"""HR module: employees, bulk import, contracts, transfers, documents."""

from datetime import date, timedelta
from io import BytesIO

import pytest
from sqlalchemy import func, select

from app.senexus.bindings import install
from app.senexus.errors import Conflict, Forbidden, NotFound, ValidationError
from app.senexus.models import AuditLog
from app.senexus.modules.crm.service import create_client
from app.senexus.modules.hr.models import Contract, Employee, EmployeeDocument
from app.senexus.modules.hr.service import (
    add_document,
    approve_transfer,
    bulk_import_employees,
    complete_transfer,
    create_contract,
    create_employee,
    delete_contract,
    delete_employee,
    generate_matricules,
    get_transfer,
    list_documents,
    months_between,
    reject_transfer,
    renew_contract,
    request_transfer,
    terminate_contract,
    update_contract,
    update_document,
    update_employee,
)


def _employee_count(db):
    return db.execute(select(func.count(Employee.id))).scalar_one()


def _row(first, last, matricule=None, hire="15/01/2024"):
    row = {"firstName": first, "lastName": last, "hireDate": hire}
    if matricule:
        row["matricule"] = matricule
    return row


def test_create_employee_generates_matricule(ctx_for, seeded):
    emp = create_employee(ctx_for("manager@example.com"), seeded["alpha"], _row("Awa", "Diop", hire="2024-03-01"))
    assert emp.matricule == "EMP-2024-001"
    assert emp.hire_date == date(2024, 3, 1)


def test_create_employee_duplicate_matricule(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    create_employee(ctx, seeded["alpha"], _row("Awa", "Diop", "M-1"))
    with pytest.raises(Conflict):
        create_employee(ctx, seeded["alpha"], _row("Moussa", "Fall", "M-1"))


def test_generate_matricules_skips_reserved(db, seeded):
    codes = generate_matricules(db, [date(2025, 1, 1), date(2025, 6, 1)], {"EMP-2025-001"})
    assert codes == ["EMP-2025-002", "EMP-2025-003"]


def test_bulk_import_with_one_duplicate_persists_nothing(ctx_for, db, seeded):
    ctx = ctx_for("manager@example.com")
    create_employee(ctx, seeded["alpha"], _row("Existing", "Person", "M-9"))
    db.commit()
    before = _employee_count(db)

    rows = [_row("A", "One", "M-1"), _row("B", "Two", "M-2"), _row("C", "Three", "M-3"), _row("D", "Four", "M-9")]
    with pytest.raises(Conflict) as exc:
        bulk_import_employees(ctx, seeded["alpha"], rows)
    assert exc.value.status_code == 409
    assert exc.value.details == {"matricules": ["M-9"]}
    db.rollback()
    assert _employee_count(db) == before


def test_bulk_import_in_batch_duplicate(ctx_for, seeded):
    rows = [_row("A", "One", "M-1"), _row("B", "Two", "M-1")]
    with pytest.raises(Conflict) as exc:
        bulk_import_employees(ctx_for("manager@example.com"), seeded["alpha"], rows)
    assert exc.value.details == {"matricules": ["M-1"]}


def test_bulk_import_invalid_row_rejects_batch(ctx_for, db, seeded):
    rows = [_row("A", "One"), {"firstName": "B", "hireDate": "not a date"}]
    with pytest.raises(ValidationError) as exc:
        bulk_import_employees(ctx_for("manager@example.com"), seeded["alpha"], rows)
    assert exc.value.details["rows"][0]["row"] == 2
    assert set(exc.value.details["rows"][0]["errors"]) == {"lastName", "hireDate"}
    assert _employee_count(db) == 0


def test_bulk_import_assigns_client_and_matricules(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    install(owner, seeded["alpha"], "crm")
    client = create_client(owner, seeded["alpha"], {"name": "Sonatel"})
    created = bulk_import_employees(owner, seeded["alpha"], [_row("A", "One"), _row("B", "Two")], client_id=client.id)
    assert [e.matricule for e in created] == ["EMP-2024-001", "EMP-2024-002"]
    assert {e.assigned_client_id for e in created} == {client.id}


def test_http_bulk_import_json(client, login, seeded):
    headers = login("manager@example.com")
    r = client.post(
        "/firms/alpha/hr/employees/bulk-import",
        json={"employees": [_row("Awa", "Diop", "M-1"), _row("Moussa", "Fall", "M-2")]},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["count"] == 2
    r = client.get("/firms/alpha/hr/employees", headers=headers)
    assert [e["matricule"] for e in r.json] == ["M-1", "M-2"]


def test_http_bulk_import_csv(client, login, seeded):
    headers = login("manager@example.com")
    csv_bytes = (
        "PRENOM;NOM;MATRICULE;DATE ENTREE;DATE DE NAISSANCE \n"
        "Awa;Diop;M-1;15/01/2024;03/02/1990\n"
        "Moussa;Fall;M-2;2024-02-01;\n"
    ).encode("utf-8")
    r = client.post(
        "/firms/alpha/hr/employees/bulk-import",
        data={"file": (BytesIO(csv_bytes), "employees.csv")},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["count"] == 2
    assert r.json["employees"][0]["dateOfBirth"] == "1990-02-03"


def test_http_bulk_import_csv_missing_columns(client, login, seeded):
    headers = login("manager@example.com")
    r = client.post(
        "/firms/alpha/hr/employees/bulk-import",
        data={"file": (BytesIO(b"PRENOM;NOM\nAwa;Diop\n"), "employees.csv")},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert r.status_code == 400
    assert "DATE ENTREE" in r.json["error"]


def test_http_bulk_import_conflict_is_409(client, login, seeded):
    headers = login("manager@example.com")
    rows = [_row("A", "One", "M-1"), _row("B", "Two", "M-1")]
    r = client.post("/firms/alpha/hr/employees/bulk-import", json={"employees": rows}, headers=headers)
    assert r.status_code == 409
    assert client.get("/firms/alpha/hr/employees", headers=headers).json == []


# ---------- Contracts ----------


def _employee(ctx, firm_id, matricule="M-1"):
    return create_employee(ctx, firm_id, _row("Awa", "Diop", matricule))


def test_fixed_term_contract_requires_end_date(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    with pytest.raises(ValidationError) as exc:
        create_contract(ctx, seeded["alpha"], {"employeeId": emp.id, "type": "CDD", "startDate": "2024-01-01"})
    assert "endDate" in exc.value.details
    contract = create_contract(ctx, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01", "position": "Comptable"})
    assert contract.status == "ACTIVE" and contract.job_title == "Comptable"


def test_terminate_contract(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    contract = create_contract(ctx, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01"})
    terminated = terminate_contract(ctx, seeded["alpha"], contract.id, "Fin de mission")
    assert terminated.status == "TERMINATED"
    assert terminated.is_active is False
    assert terminated.termination_date == date.today()
    with pytest.raises(ValidationError):
        terminate_contract(ctx, seeded["alpha"], contract.id, "again")


def test_contract_for_foreign_employee_is_not_found(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["beta"])
    with pytest.raises(NotFound):
        create_contract(owner, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01"})


def test_http_contract_routes(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("manager@example.com"), seeded["alpha"])
    db.commit()
    headers = login("manager@example.com")
    r = client.post(
        "/firms/alpha/hr/contracts",
        json={"employeeId": emp.id, "type": "CDD", "startDate": "01/02/2024", "endDate": "31/12/2024"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["startDate"] == "2024-02-01"
    cid = r.json["id"]
    r = client.post(f"/firms/alpha/hr/contracts/{cid}/terminate", json={"reason": "Démission"}, headers=headers)
    assert r.status_code == 200
    assert r.json["status"] == "TERMINATED"
    assert client.get("/firms/alpha/hr/contracts?status=BOGUS", headers=headers).status_code == 400


# ---------- Transfers ----------


def _transfer_payload(emp_id, to_firm_id, effective):
    return {
        "employeeId": emp_id,
        "toFirmId": to_firm_id,
        "transferDate": date.today().isoformat(),
        "effectiveDate": effective.isoformat(),
        "reason": "Réorganisation",
    }


def test_transfer_reject(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["alpha"])
    t = request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], date.today()))
    assert t.status == "PENDING"
    with pytest.raises(ValidationError):
        request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], date.today()))
    with pytest.raises(ValidationError):
        reject_transfer(owner, seeded["beta"], t.id, "")
    rejected = reject_transfer(owner, seeded["beta"], t.id, "Pas de poste")
    assert rejected.status == "REJECTED"
    assert rejected.rejection_reason == "Pas de poste"


def test_transfer_only_decided_by_destination(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["alpha"])
    t = request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], date.today()))
    with pytest.raises(NotFound):
        approve_transfer(owner, seeded["alpha"], t.id)


def test_transfer_approve_then_complete(ctx_for, db, seeded):
    owner = ctx_for("owner@example.com")
    install(owner, seeded["alpha"], "crm")
    client = create_client(owner, seeded["alpha"], {"name": "Orange"})
    emp = create_employee(owner, seeded["alpha"], {**_row("Awa", "Diop", "M-1"), "assignedClientId": client.id})
    old = create_contract(owner, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01"})

    t = request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], date.today()))
    approve_transfer(
        owner,
        seeded["beta"],
        t.id,
        {"createNewContract": True, "contractData": {"type": "CDI", "startDate": date.today().isoformat()}},
    )
    assert t.status == "APPROVED"
    assert t.approved_by_user_id == owner.user.id
    new_contracts = db.execute(select(Contract).where(Contract.firm_id == seeded["beta"])).scalars().all()
    assert len(new_contracts) == 1 and new_contracts[0].employee_id == emp.id

    done = complete_transfer(owner, seeded["beta"], t.id)
    db.flush()
    assert done.status == "COMPLETED"
    assert emp.firm_id == seeded["beta"]
    assert emp.assigned_client_id is None
    assert old.status == "TERMINATED" and old.is_active is False
    assert new_contracts[0].status == "ACTIVE"


def test_transfer_cannot_complete_before_effective_date(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["alpha"])
    effective = date.today() + timedelta(days=10)
    t = request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], effective))
    with pytest.raises(ValidationError):
        complete_transfer(owner, seeded["beta"], t.id)
    approve_transfer(owner, seeded["beta"], t.id)
    with pytest.raises(ValidationError):
        complete_transfer(owner, seeded["beta"], t.id)
    assert complete_transfer(owner, seeded["beta"], t.id, today=effective).status == "COMPLETED"


def test_http_transfer_flow(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("owner@example.com"), seeded["alpha"])
    db.commit()
    headers = login("owner@example.com")
    r = client.post("/firms/alpha/hr/transfers", json=_transfer_payload(emp.id, seeded["beta"], date.today()), headers=headers)
    assert r.status_code == 201
    tid = r.json["id"]
    assert [t["id"] for t in client.get("/firms/beta/hr/transfers", headers=headers).json] == [tid]
    assert client.post(f"/firms/beta/hr/transfers/{tid}/approve", json={}, headers=headers).json["status"] == "APPROVED"
    r = client.post(f"/firms/beta/hr/transfers/{tid}/complete", headers=headers)
    assert r.status_code == 200
    assert r.json["status"] == "COMPLETED"
    assert [e["id"] for e in client.get("/firms/beta/hr/employees", headers=headers).json] == [emp.id]


def test_transfer_detail_from_either_side(client, login, ctx_for, db, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["alpha"])
    t = request_transfer(owner, seeded["alpha"], _transfer_payload(emp.id, seeded["beta"], date.today()))
    assert get_transfer(owner, seeded["alpha"], t.id) is t
    assert get_transfer(owner, seeded["beta"], t.id) is t
    with pytest.raises(NotFound):
        get_transfer(owner, seeded["alpha"], t.id + 100)
    db.commit()

    headers = login("manager@example.com")
    r = client.get(f"/firms/alpha/hr/transfers/{t.id}", headers=headers)
    assert r.status_code == 200
    assert r.json["employeeName"] == "Awa Diop"
    assert client.get(f"/firms/beta/hr/transfers/{t.id}", headers=headers).status_code == 403


# ---------- Employee detail ----------


def _audit_actions(db, action):
    return db.execute(select(AuditLog).where(AuditLog.action == action)).scalars().all()


def test_update_employee_keeps_untouched_fields(ctx_for, db, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    updated = update_employee(ctx, seeded["alpha"], emp.id, {"jobTitle": "Chauffeur", "phone": "77 000 00 00"})
    assert updated.job_title == "Chauffeur"
    assert updated.first_name == "Awa"
    assert updated.hire_date == date(2024, 1, 15)
    assert updated.matricule == "M-1"
    events = _audit_actions(db, "employee.update")
    assert len(events) == 1
    assert "job_title" in events[0].metadata_json

    update_employee(ctx, seeded["alpha"], emp.id, {"jobTitle": "Chauffeur"})
    assert len(_audit_actions(db, "employee.update")) == 1


def test_update_employee_rejects_bad_values(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    _employee(ctx, seeded["alpha"], "M-2")
    with pytest.raises(Conflict):
        update_employee(ctx, seeded["alpha"], emp.id, {"matricule": "M-2"})
    with pytest.raises(ValidationError) as exc:
        update_employee(ctx, seeded["alpha"], emp.id, {"hireDate": "nope", "matricule": ""})
    assert set(exc.value.details) == {"hireDate", "matricule"}
    with pytest.raises(ValidationError):
        update_employee(ctx, seeded["alpha"], emp.id, {"departmentId": 999})
    assert emp.matricule == "M-1"


def test_employee_of_another_firm_is_not_found(ctx_for, seeded):
    owner = ctx_for("owner@example.com")
    emp = _employee(owner, seeded["beta"])
    with pytest.raises(NotFound):
        update_employee(owner, seeded["alpha"], emp.id, {"jobTitle": "x"})
    with pytest.raises(NotFound):
        delete_employee(owner, seeded["alpha"], emp.id)


def test_delete_employee_is_owner_admin_only(ctx_for, db, seeded):
    manager = ctx_for("manager@example.com")
    emp = _employee(manager, seeded["alpha"])
    create_contract(manager, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01"})
    db.commit()
    with pytest.raises(Forbidden):
        delete_employee(manager, seeded["alpha"], emp.id)

    emp_id = emp.id
    delete_employee(ctx_for("admin@example.com"), seeded["alpha"], emp_id)
    db.commit()
    assert _employee_count(db) == 0
    assert db.execute(select(func.count(Contract.id))).scalar_one() == 0
    assert [e.entity_id for e in _audit_actions(db, "employee.delete")] == [str(emp_id)]


def test_http_employee_detail_update_delete(client, login, ctx_for, db, seeded):
    manager = ctx_for("manager@example.com")
    emp = _employee(manager, seeded["alpha"])
    create_contract(manager, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2024-01-01"})
    db.commit()

    headers = login("manager@example.com")
    url = f"/firms/alpha/hr/employees/{emp.id}"
    r = client.get(url, headers=headers)
    assert r.status_code == 200
    assert r.json["matricule"] == "M-1"
    assert [c["type"] for c in r.json["contracts"]] == ["CDI"]

    r = client.put(url, json={"lastName": "Ndiaye"}, headers=headers)
    assert r.status_code == 200
    assert r.json["fullName"] == "Awa Ndiaye"
    assert client.put(url, json={"status": "BOGUS"}, headers=headers).status_code == 400
    assert client.delete(url, headers=headers).status_code == 403

    headers = login("admin@example.com")
    assert client.delete(url, headers=headers).status_code == 200
    assert client.get(url, headers=headers).status_code == 404


def test_http_employee_detail_outsider_is_403(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("manager@example.com"), seeded["alpha"])
    db.commit()
    headers = login("outsider@example.com")
    assert client.get(f"/firms/alpha/hr/employees/{emp.id}", headers=headers).status_code == 403
    assert client.get(f"/firms/alpha/hr/employees/{emp.id}/documents", headers=headers).status_code == 403


# ---------- Contract lifecycle ----------


def _cdd(ctx, firm_id, emp_id, start, end, **kw):
    return create_contract(ctx, firm_id, {"employeeId": emp_id, "type": "CDD", "startDate": start, "endDate": end, **kw})


def test_update_contract(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    contract = _cdd(ctx, seeded["alpha"], emp.id, "2024-01-01", "2024-06-30")
    updated = update_contract(ctx, seeded["alpha"], contract.id, {"endDate": "2024-09-30", "position": "Chef d'équipe"})
    assert updated.end_date == date(2024, 9, 30)
    assert updated.job_title == "Chef d'équipe"
    assert updated.start_date == date(2024, 1, 1)

    with pytest.raises(ValidationError) as exc:
        update_contract(ctx, seeded["alpha"], contract.id, {"endDate": "2023-12-01"})
    assert "endDate" in exc.value.details
    with pytest.raises(ValidationError):
        update_contract(ctx, seeded["alpha"], contract.id, {"endDate": None})

    terminate_contract(ctx, seeded["alpha"], contract.id, "Fin")
    with pytest.raises(ValidationError):
        update_contract(ctx, seeded["alpha"], contract.id, {"position": "x"})


def test_delete_contract_requires_owner_or_admin(ctx_for, db, seeded):
    manager = ctx_for("manager@example.com")
    emp = _employee(manager, seeded["alpha"])
    contract = _cdd(manager, seeded["alpha"], emp.id, "2024-01-01", "2024-06-30")
    with pytest.raises(Forbidden):
        delete_contract(manager, seeded["alpha"], contract.id)
    delete_contract(ctx_for("admin@example.com"), seeded["alpha"], contract.id)
    assert db.execute(select(func.count(Contract.id))).scalar_one() == 0


def test_months_between():
    assert months_between(date(2024, 1, 1), date(2024, 12, 31)) == 11
    assert months_between(date(2024, 1, 15), date(2025, 1, 15)) == 12
    assert months_between(date(2024, 1, 31), date(2024, 2, 29)) == 0


def test_renew_contract_opens_successor(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    old = _cdd(ctx, seeded["alpha"], emp.id, "2024-01-01", "2024-06-30", position="Agent")
    new = renew_contract(ctx, seeded["alpha"], old.id, {"startDate": "2024-07-01", "endDate": "2024-12-31"})
    assert new.renewed_from_id == old.id
    assert (new.contract_type, new.status, new.is_active) == ("CDD", "ACTIVE", True)
    assert new.job_title == "Agent"
    assert (old.status, old.is_active) == ("RENEWED", False)

    with pytest.raises(ValidationError):
        renew_contract(ctx, seeded["alpha"], old.id, {"startDate": "2025-01-01", "endDate": "2025-06-30"})


def test_renew_requires_both_dates(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    contract = _cdd(ctx, seeded["alpha"], emp.id, "2024-01-01", "2024-06-30")
    with pytest.raises(ValidationError) as exc:
        renew_contract(ctx, seeded["alpha"], contract.id, {"startDate": "2024-07-01"})
    assert set(exc.value.details) == {"endDate"}
    assert contract.status == "ACTIVE"


def test_renew_refused_for_contracts_over_a_year(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    contract = create_contract(
        ctx, seeded["alpha"], {"employeeId": emp.id, "type": "CDI", "startDate": "2022-01-01", "endDate": "2023-06-30"}
    )
    with pytest.raises(ValidationError) as exc:
        renew_contract(ctx, seeded["alpha"], contract.id, {"startDate": "2023-07-01", "endDate": "2023-12-31"})
    assert exc.value.details == {"currentDuration": 17}


def test_renew_refused_past_fixed_term_cap(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    _cdd(ctx, seeded["alpha"], emp.id, "2022-01-01", "2022-12-31")
    second = _cdd(ctx, seeded["alpha"], emp.id, "2023-01-01", "2023-12-31")
    with pytest.raises(ValidationError) as exc:
        renew_contract(ctx, seeded["alpha"], second.id, {"startDate": "2024-01-01", "endDate": "2024-06-30"})
    assert exc.value.details == {"currentDuration": 24, "proposedDuration": 6, "remainingMonths": 0}
    assert second.status == "ACTIVE"


def test_http_contract_detail_renew_delete(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("manager@example.com"), seeded["alpha"])
    db.commit()
    headers = login("manager@example.com")
    r = client.post(
        "/firms/alpha/hr/contracts",
        json={"employeeId": emp.id, "type": "CDD", "startDate": "2024-01-01", "endDate": "2024-06-30"},
        headers=headers,
    )
    cid = r.json["id"]
    r = client.put(f"/firms/alpha/hr/contracts/{cid}", json={"position": "Caissier"}, headers=headers)
    assert r.status_code == 200
    assert r.json["position"] == "Caissier"

    r = client.post(f"/firms/alpha/hr/contracts/{cid}/renew", json={"startDate": "2024-07-01", "endDate": "2024-12-31"}, headers=headers)
    assert r.status_code == 201
    assert r.json["renewedFromId"] == cid
    assert r.json["position"] == "Caissier"
    new_id = r.json["id"]
    assert client.get(f"/firms/alpha/hr/contracts/{cid}", headers=headers).json["status"] == "RENEWED"
    assert client.delete(f"/firms/alpha/hr/contracts/{new_id}", headers=headers).status_code == 403

    headers = login("owner@example.com")
    assert client.delete(f"/firms/alpha/hr/contracts/{new_id}", headers=headers).status_code == 200
    assert client.get(f"/firms/alpha/hr/contracts/{new_id}", headers=headers).status_code == 404
    assert client.get(f"/firms/beta/hr/contracts/{cid}", headers=headers).status_code == 404


# ---------- Documents ----------


def _doc_payload(**kw):
    return {
        "documentType": "cni",
        "fileName": "cni.pdf",
        "fileUrl": "https://files.example.com/cni.pdf",
        "fileSize": 1024,
        "mimeType": "application/pdf",
        "expiryDate": "2030-01-01",
        **kw,
    }


def test_add_document_and_verify(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    doc = add_document(ctx, seeded["alpha"], emp.id, _doc_payload())
    assert doc.document_type == "CNI"
    assert doc.expiry_date == date(2030, 1, 1)
    assert doc.is_verified is False
    assert list_documents(ctx, seeded["alpha"], emp.id) == [doc]

    verified = update_document(ctx, seeded["alpha"], emp.id, doc.id, {"isVerified": True, "description": "Recto verso"})
    assert verified.verified_by_user_id == ctx.user.id
    assert verified.verified_at is not None
    assert verified.description == "Recto verso"

    with pytest.raises(ValidationError):
        update_document(ctx, seeded["alpha"], emp.id, doc.id, {"isVerified": "yes"})
    assert doc.is_verified is True
    unverified = update_document(ctx, seeded["alpha"], emp.id, doc.id, {"isVerified": False})
    assert unverified.verified_by_user_id is None and unverified.verified_at is None


def test_add_document_validation(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    with pytest.raises(ValidationError) as exc:
        add_document(ctx, seeded["alpha"], emp.id, {"documentType": "TAX", "expiryDate": "soon"})
    assert set(exc.value.details) == {"documentType", "expiryDate", "fileUrl", "fileName"}


def test_document_of_another_employee_is_not_found(ctx_for, seeded):
    ctx = ctx_for("manager@example.com")
    emp = _employee(ctx, seeded["alpha"])
    other = _employee(ctx, seeded["alpha"], "M-2")
    doc = add_document(ctx, seeded["alpha"], emp.id, _doc_payload())
    with pytest.raises(NotFound):
        update_document(ctx, seeded["alpha"], other.id, doc.id, {"isVerified": True})


def test_http_document_upload(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("manager@example.com"), seeded["alpha"])
    db.commit()
    headers = login("manager@example.com")
    url = f"/firms/alpha/hr/employees/{emp.id}/documents"
    pdf = b"%PDF-1.4 contrat"
    r = client.post(
        url,
        data={"file": (BytesIO(pdf), "contrat.pdf", "application/pdf"), "documentType": "CONTRACT"},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["fileSize"] == len(pdf)
    assert r.json["mimeType"] == "application/pdf"
    assert r.json["fileUrl"].startswith("/files/uploads/")
    assert r.json["fileUrl"].endswith("-contrat.pdf")
    assert r.json["uploadedBy"] == seeded["users"]["manager@example.com"]

    r = client.post(
        url,
        data={"file": (BytesIO(b"plain"), "notes.txt", "text/plain"), "documentType": "OTHER"},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert r.status_code == 400
    assert [d["documentType"] for d in client.get(url, headers=headers).json] == ["CONTRACT"]
    assert db.execute(select(func.count(EmployeeDocument.id))).scalar_one() == 1


def test_http_document_json_and_patch(client, login, ctx_for, db, seeded):
    emp = _employee(ctx_for("manager@example.com"), seeded["alpha"])
    db.commit()
    headers = login("manager@example.com")
    url = f"/firms/alpha/hr/employees/{emp.id}/documents"
    r = client.post(url, json=_doc_payload(documentType="DIPLOMA"), headers=headers)
    assert r.status_code == 201
    r = client.patch(f"{url}/{r.json['id']}", json={"isVerified": True}, headers=headers)
    assert r.status_code == 200
    assert r.json["isVerified"] is True
    assert r.json["verifiedBy"] == seeded["users"]["manager@example.com"]
    assert _audit_actions(db, "document.verify")
