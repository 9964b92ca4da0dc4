"""
Human resources module (system module, installed in every firm at creation).

Scope:
- Employees (create, detail, update, delete; transactional bulk import from JSON or CSV)
- Employee documents (stored through Storage, verified by HR staff)
- Contracts (create, update, renew, terminate, delete)
- Inter-firm transfers (request, detail, approve, reject, complete)

Every route is tenant-scoped and goes through the gate with module slug "hr".
"""
