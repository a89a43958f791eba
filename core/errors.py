# core/errors.py
"""
API exceptions mapped to HTTP status codes by the application error handlers
"""

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base exception for errors that surface in the JSON error envelope"""

    status_code = 400
    code = 'BAD_REQUEST'

    def __init__(self, message: str, status_code: Optional[int] = None,
                 code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}


class ValidationError(ApiError):
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details.setdefault('validation', [{'field': field, 'message': message}])


class AuthenticationError(ApiError):
    status_code = 401
    code = 'UNAUTHORIZED'

    def __init__(self, message: str = 'Unauthorized', **kwargs):
        super().__init__(message, **kwargs)


class PermissionDeniedError(ApiError):
    status_code = 403
    code = 'FORBIDDEN'

    def __init__(self, message: str = 'Forbidden', **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(ApiError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, resource: str = 'Resource', **kwargs):
        super().__init__(f'{resource} not found', **kwargs)
        self.resource = resource


class ConflictError(ApiError):
    status_code = 409
    code = 'CONFLICT'


class PaymentGatewayError(ApiError):
    """Upstream payment gateway refused or failed a request"""

    status_code = 502
    code = 'PAYMENT_GATEWAY_ERROR'
