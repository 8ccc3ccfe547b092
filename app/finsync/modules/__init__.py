"""
Feature modules live under this package.

Each module owns its routes and models; platform primitives (auth, RBAC,
audit, storage, DB session) are shared from app.finsync.
"""
