"""
Audit trail feature module.

Append-only record of every role and permission mutation, written best-effort
after the mutation commits.
"""
