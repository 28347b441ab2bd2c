"""
errors.py — Error Taxonomy of the Order Service

Every failure a workflow can surface is an ApiError subclass carrying a
stable HTTP status code and a human readable message. The HTTP layer in
main.py renders them into the standard error envelope.
"""


class ApiError(Exception):
    """Base class for all errors that are reported to the caller as-is."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UnauthorizedError(ApiError):
    status_code = 401
    kind = "unauthorized"


class ForbiddenError(ApiError):
    status_code = 403
    kind = "forbidden"


class ValidationError(ApiError):
    status_code = 400
    kind = "validation"


class BusinessRuleError(ApiError):
    """A well-formed request that the current order or catalog state does not allow."""

    status_code = 400
    kind = "business_rule"


class NotFoundError(ApiError):
    status_code = 404
    kind = "not_found"


class ConflictError(ApiError):
    """Lost a race on shared state (stock, order status) or hit a unique constraint."""

    status_code = 409
    kind = "conflict"


class InfrastructureError(ApiError):
    """Database or connectivity failure. The transaction was rolled back; retrying is safe."""

    status_code = 503
    kind = "infrastructure"
    retryable = True
