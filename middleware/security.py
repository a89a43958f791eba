# middleware/security.py
"""
Security Middleware for Request Processing
"""

import logging
from functools import wraps

from flask import current_app, g, request
from flask_jwt_extended import get_jwt, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from core import permissions
from core.database_models import db, SellerRole, User, UserRole
from core.errors import AuthenticationError, PermissionDeniedError
from core.responses import error_response
from core.security_manager import security_manager

logger = logging.getLogger(__name__)


def security_headers(response):
    """Add security headers to all responses"""
    config = current_app.config
    for header, value in config.get('SECURITY_HEADERS', {}).items():
        response.headers.setdefault(header, value)

    csp = config.get('CSP_POLICY')
    if csp:
        response.headers.setdefault(
            'Content-Security-Policy', '; '.join(f'{key} {value}' for key, value in csp.items())
        )

    return response


def _load_current_user():
    """Resolve the user named by the verified access token"""
    claims = get_jwt()
    if claims.get('type') != 'access':
        raise AuthenticationError('Invalid token type', code='INVALID_TOKEN')

    user = db.session.get(User, claims.get('sub'))
    if user is None:
        raise AuthenticationError('User not found')
    if not user.is_active:
        raise AuthenticationError('Account is suspended or banned')
    return user


def authenticate(f):
    """Decorator to require a valid access token (bearer header or cookie)"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            verify_jwt_in_request()
            g.current_user = _load_current_user()
        except AuthenticationError:
            security_manager.log_security_event('unauthorized_access_attempt', {
                'endpoint': request.endpoint,
                'method': request.method
            })
            raise
        return f(*args, **kwargs)
    return decorated_function


def optional_auth(f):
    """Attach the user when a usable token is present; never rejects the request"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        try:
            if verify_jwt_in_request(optional=True):
                g.current_user = _load_current_user()
        except (JWTExtendedException, PyJWTError, AuthenticationError):
            g.current_user = None
        return f(*args, **kwargs)
    return decorated_function


def _require_user():
    user = g.get('current_user')
    if user is None:
        raise AuthenticationError('Authentication required')
    return user


def authorize(*roles: UserRole):
    """Decorator allowing only the given user roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = _require_user()
            if user.role not in roles:
                raise PermissionDeniedError('Insufficient permissions')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def authorize_seller_role(*seller_roles: SellerRole):
    """Decorator allowing sellers with one of the given sub-roles; admins always pass"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = _require_user()
            if user.role not in (UserRole.SELLER, UserRole.ADMIN):
                raise PermissionDeniedError('Seller access required')
            if user.role != UserRole.ADMIN and user.seller_role not in seller_roles:
                raise PermissionDeniedError('Insufficient seller permissions')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_permission(predicate):
    """Decorator checking one of the predicates in ``core.permissions``"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = _require_user()
            if not predicate(user):
                security_manager.log_security_event('permission_denied', {
                    'endpoint': request.endpoint,
                    'permission': predicate.__name__,
                })
                raise PermissionDeniedError('Permission denied')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_ownership(param: str = 'id', allow_admin: bool = True):
    """Decorator restricting a route to the user whose id is in the URL"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = _require_user()
            if allow_admin and user.role == UserRole.ADMIN:
                return f(*args, **kwargs)
            if kwargs.get(param) != user.id:
                raise PermissionDeniedError('Access denied: You can only access your own resources')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_only = authorize(UserRole.ADMIN)
seller_only = authorize(UserRole.SELLER)
buyer_only = authorize(UserRole.BUYER)
manager_only = authorize_seller_role(SellerRole.MANAGER)
manager_or_accountant = authorize_seller_role(SellerRole.MANAGER, SellerRole.ACCOUNTANT)
manager_or_inventory = authorize_seller_role(SellerRole.MANAGER, SellerRole.INVENTORY_STAFF)

can_manage_products = require_permission(permissions.can_manage_products)
can_manage_orders = require_permission(permissions.can_manage_orders)
can_view_financials = require_permission(permissions.can_view_financials)


def register_jwt_handlers(jwt):
    """Route token failures through the JSON error envelope"""

    @jwt.unauthorized_loader
    def missing_token(reason):
        return error_response('Access token required', 401, 'UNAUTHORIZED')

    @jwt.invalid_token_loader
    def invalid_token(reason):
        logger.info(f"Invalid token presented: {reason}")
        return error_response('Invalid token', 401, 'INVALID_TOKEN')

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return error_response('Token expired', 401, 'TOKEN_EXPIRED')

    @jwt.token_verification_failed_loader
    def verification_failed(jwt_header, jwt_payload):
        return error_response('Invalid token', 401, 'INVALID_TOKEN')
