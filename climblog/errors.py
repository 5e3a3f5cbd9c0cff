"""
Typed failures raised by the services and rendered by the app's exception handler.
"""

from __future__ import annotations


class ClimbLogError(Exception):
    """Base class for failures that are surfaced to API callers."""

    kind = "ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {
            "success": False,
            "kind": self.kind,
            "message": self.message,
            "code": self.status_code,
        }


class InvalidInputError(ClimbLogError):
    kind = "INVALID_INPUT"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(f"Invalid input: {message}")


class UnauthorizedError(ClimbLogError):
    kind = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ClimbLogError):
    kind = "FORBIDDEN"
    status_code = 403


class NotFoundError(ClimbLogError):
    kind = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with id {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class ConflictError(ClimbLogError):
    kind = "CONFLICT"
    status_code = 409


class StoreFailure(ClimbLogError):
    """The store rejected a write. Details are logged, not returned."""

    kind = "STORE_FAILURE"
    status_code = 500

    def __init__(self, message: str = "The operation could not be completed"):
        super().__init__(message)
