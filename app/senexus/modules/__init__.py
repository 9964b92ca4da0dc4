"""
Installable feature modules live under this package.

Each module owns its manifest (routes + permitted roles), models, service and
blueprint, while reusing platform primitives (gate, audit, DB session, storage).
A module's pages are only reachable for firms holding an enabled binding.
"""
