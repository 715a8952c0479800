"""
Error taxonomy shared by the permission subsystem.

Every error maps to one HTTP status; app.main turns them into
{"success": false, "error": <kind>, "message": <text>} responses.
"""
from typing import Optional, Sequence

from fastapi import status


class PermissionSystemError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "InternalFailure"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class Unauthenticated(PermissionSystemError):
    kind = "Unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class AccountInactive(Unauthenticated):
    kind = "AccountInactive"


class Forbidden(PermissionSystemError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(PermissionSystemError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidInput(PermissionSystemError):
    """Rejected input, naming the offending field and tokens."""

    kind = "InvalidInput"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None, invalid: Sequence[str] = ()):
        super().__init__(message)
        self.field = field
        self.invalid = list(invalid)

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        if self.invalid:
            body["invalid"] = self.invalid
        return body


class InvalidPermission(InvalidInput):
    def __init__(self, invalid: Sequence[str], field: str = "permission"):
        tokens = ", ".join(invalid)
        super().__init__(f"Invalid permission: {tokens}", field=field, invalid=invalid)


class Conflict(PermissionSystemError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class InternalFailure(PermissionSystemError):
    """Store or infrastructure failure. The message never carries internal detail."""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
