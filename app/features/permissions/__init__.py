"""
Permission management feature module.

Implements role-based access control with per-account grant/revoke overrides:
the permission catalog, effective-permission resolution, the override store,
authorization gates and role transitions.
"""
