"""
CRM module (optional; firms install it explicitly).

Scope: client records of a firm. Staff members may read and create clients.
"""
