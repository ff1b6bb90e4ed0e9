"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Every error the client
sees carries a stable ``error_code`` next to the human-readable ``detail``.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        detail = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )
        self.field = field


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHENTICATED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class CSRFError(APIException):
    """Cross-site request rejected. The message never depends on the payload."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid request origin",
            error_code="CSRF_FAILED"
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


class PayloadTooLargeError(APIException):
    """Request body over the configured ceiling."""

    def __init__(self, limit: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Request body too large (limit {limit} bytes)",
            error_code="PAYLOAD_TOO_LARGE"
        )


class BusinessRuleError(APIException):
    """Request is well-formed and authorized but breaks a domain rule."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="BUSINESS_RULE"
        )


class InternalError(APIException):
    """Unexpected store/provider failure, already stripped of internals."""

    def __init__(self, detail: str = "An error occurred. Please try again."):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL"
        )


class ProfileProvisioningError(APIException):
    """
    Account was created (or attempted) but its Profile could not be written.

    Kept separate from invitation errors so the client does not retry an
    invitation that is still valid as if it were consumed.
    """

    def __init__(self, detail: str = "Account created but profile could not be provisioned"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="PROFILE_PROVISIONING_FAILED"
        )
