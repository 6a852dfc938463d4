"""Engine-level error taxonomy."""

from __future__ import annotations


class AssignmentError(Exception):
    reason_code = "assignment_error"


class ConflictError(AssignmentError):
    """An assignment already exists for the issue."""

    reason_code = "assignment_conflict"


class AuthorizationError(AssignmentError):
    reason_code = "not_authorized"


class ValidationError(AssignmentError):
    reason_code = "invalid_format"
