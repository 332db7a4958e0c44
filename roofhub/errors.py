"""
Domain error taxonomy.

Each error is an HTTPException carrying a stable machine-readable code, so
handlers can simply raise and FastAPI renders
``{"detail": {"code": ..., "message": ...}}`` with the right status.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class DomainError(HTTPException):
    code = "error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        detail: Dict[str, Any] = {"code": self.code, "message": message}
        if extra:
            detail.update(extra)
        super().__init__(status_code=self.status_code_default, detail=detail)
        self.message = message


class Unauthenticated(DomainError):
    code = "unauthenticated"
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)
        self.headers = {"WWW-Authenticate": "Bearer"}


class RoleNotPermitted(DomainError):
    code = "role_not_permitted"
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(DomainError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class InvalidTransition(DomainError):
    code = "invalid_transition"


class ProposalRequired(DomainError):
    code = "proposal_required"


class MissingAssignment(DomainError):
    code = "missing_assignment"


class ValidationError(DomainError):
    code = "validation_error"


class EmailNotVerified(DomainError):
    code = "email_not_verified"
    status_code_default = status.HTTP_403_FORBIDDEN


class Conflict(DomainError):
    code = "conflict"
    status_code_default = status.HTTP_409_CONFLICT


class InsufficientMaterials(DomainError):
    code = "insufficient_materials"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, shortages: List[Dict[str, Any]], message: str = "Insufficient materials in warehouse"):
        super().__init__(message, extra={"shortages": shortages})
        self.shortages = shortages
