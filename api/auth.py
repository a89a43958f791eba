# api/auth.py
"""
Authentication API: registration, login, token rotation and password management
"""

import logging

from flask import Blueprint, current_app, g, request
from flask_jwt_extended import set_access_cookies, set_refresh_cookies, unset_jwt_cookies

from core.database_models import db, User, UserRole, UserStatus
from core.errors import AuthenticationError, ConflictError, ValidationError
from core.extensions import limiter
from core.responses import success_response
from core.security_manager import security_manager
from core.tokens import (
    issue_token_pair, revoke_all_refresh_tokens, revoke_refresh_token, rotate_refresh_token
)
from core.utils import sanitize_string
from core.validation import (
    ChangePasswordSchema, ForgotPasswordSchema, LoginSchema, RefreshTokenSchema,
    RegisterSchema, ResetPasswordSchema, validate_request
)
from middleware.security import authenticate, optional_auth
from tasks.email_sender import send_password_reset_email, send_welcome_email

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


def _login_limit():
    return current_app.config['RATELIMIT_LOGIN']


def _with_token_cookies(result, tokens):
    response, status = result
    set_access_cookies(response, tokens['accessToken'])
    set_refresh_cookies(response, tokens['refreshToken'])
    return response, status


def _without_token_cookies(result):
    response, status = result
    unset_jwt_cookies(response)
    return response, status


def _set_password(user: User, password: str):
    user.password_hash, user.password_salt = security_manager.hash_password(password)


@auth_bp.route('/register', methods=['POST'])
@validate_request(RegisterSchema)
def register():
    """Create a buyer or seller account and sign it in"""
    data = g.validated_data

    if User.query.filter_by(email=data.email).first():
        raise ConflictError('Email already registered', code='EMAIL_EXISTS')

    user = User(
        email=data.email,
        name=sanitize_string(data.name),
        phone=data.phone,
        role=data.role,
        status=UserStatus.ACTIVE,
    )
    _set_password(user, data.password)
    if data.role == UserRole.SELLER:
        user.seller_role = data.seller_role
        user.business_name = sanitize_string(data.business_name)
        user.business_phone = data.business_phone
        user.business_address = sanitize_string(data.business_address)

    db.session.add(user)
    db.session.commit()

    tokens = issue_token_pair(user)
    security_manager.log_security_event('user_registered', {'role': user.role.value}, user_id=user.id)
    send_welcome_email(user)

    return _with_token_cookies(
        success_response('Account created successfully', {'user': user.to_dict(), 'tokens': tokens}, status=201),
        tokens,
    )


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(_login_limit)
@validate_request(LoginSchema)
def login():
    """
    Exchange credentials for an access/refresh pair.

    Unknown emails and wrong passwords get the same answer.
    """
    data = g.validated_data
    user = User.query.filter_by(email=data.email).first()

    if user is None:
        security_manager.log_security_event('login_failed', {
            'reason': 'unknown_email',
            'email': data.email
        })
        raise AuthenticationError('Invalid email or password')

    if not user.is_active:
        security_manager.log_security_event('login_blocked', {
            'reason': 'account_inactive',
            'status': user.status.value
        }, user_id=user.id)
        raise AuthenticationError('Account is suspended or banned')

    if not security_manager.verify_password(data.password, user.password_hash, user.password_salt):
        security_manager.log_security_event('login_failed', {
            'reason': 'invalid_credentials',
            'email': data.email
        }, user_id=user.id)
        raise AuthenticationError('Invalid email or password')

    tokens = issue_token_pair(user)
    security_manager.log_security_event('login_success', {
        'user_agent': request.headers.get('User-Agent')
    }, user_id=user.id)

    return _with_token_cookies(
        success_response('Login successful', {'user': user.to_dict(), 'tokens': tokens}),
        tokens,
    )


@auth_bp.route('/refresh', methods=['POST'])
@validate_request(RefreshTokenSchema)
def refresh():
    """Rotate a refresh token (body or cookie) into a new pair"""
    token = g.validated_data.refresh_token or request.cookies.get(
        current_app.config['JWT_REFRESH_COOKIE_NAME']
    )
    if not token:
        raise ValidationError('Refresh token is required', field='refreshToken')

    user, tokens = rotate_refresh_token(token)
    return _with_token_cookies(
        success_response('Token refreshed successfully', {'user': user.to_identity(), 'tokens': tokens}),
        tokens,
    )


@auth_bp.route('/logout', methods=['POST'])
@authenticate
def logout():
    user = g.current_user
    token = request.cookies.get(current_app.config['JWT_REFRESH_COOKIE_NAME'])
    if not token:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get('refreshToken')

    revoke_refresh_token(user.id, token)
    security_manager.log_security_event('logout')
    return _without_token_cookies(success_response('Logged out successfully'))


@auth_bp.route('/logout-all', methods=['POST'])
@authenticate
def logout_all():
    revoke_all_refresh_tokens(g.current_user.id)
    security_manager.log_security_event('logout_all_devices')
    return _without_token_cookies(success_response('Logged out from all devices successfully'))


@auth_bp.route('/change-password', methods=['POST'])
@authenticate
@validate_request(ChangePasswordSchema)
def change_password():
    """Change the password and sign the user out everywhere"""
    user = g.current_user
    data = g.validated_data

    if not security_manager.verify_password(data.current_password, user.password_hash, user.password_salt):
        security_manager.log_security_event('password_change_failed', {'reason': 'wrong_current_password'})
        raise AuthenticationError('Current password is incorrect')

    _set_password(user, data.new_password)
    revoke_all_refresh_tokens(user.id, commit=False)
    db.session.commit()

    security_manager.log_security_event('password_changed')
    return _without_token_cookies(success_response('Password changed successfully. Please login again.'))


@auth_bp.route('/forgot-password', methods=['POST'])
@limiter.limit(_login_limit)
@validate_request(ForgotPasswordSchema)
def forgot_password():
    """Email a reset link; the answer is the same whether or not the account exists"""
    user = User.query.filter_by(email=g.validated_data.email).first()
    if user is not None and user.is_active:
        token = security_manager.generate_reset_token(user)
        send_password_reset_email(user, token)
        security_manager.log_security_event('password_reset_requested', user_id=user.id)

    return success_response('If an account exists for that email, a password reset link has been sent')


@auth_bp.route('/reset-password', methods=['POST'])
@validate_request(ResetPasswordSchema)
def reset_password():
    data = g.validated_data
    payload = security_manager.load_reset_token(data.token)
    user = db.session.get(User, payload.get('uid')) if payload else None

    if user is None or not security_manager.reset_token_matches(payload, user):
        raise ValidationError('Invalid or expired reset token', code='INVALID_RESET_TOKEN', field='token')
    if not user.is_active:
        raise AuthenticationError('Account is suspended or banned')

    _set_password(user, data.password)
    revoke_all_refresh_tokens(user.id, commit=False)
    db.session.commit()

    security_manager.log_security_event('password_reset', user_id=user.id)
    return success_response('Password has been reset. Please login with your new password.')


@auth_bp.route('/me', methods=['GET'])
@authenticate
def me():
    return success_response('Profile retrieved successfully', {'user': g.current_user.to_dict()})


@auth_bp.route('/verify', methods=['GET'])
@authenticate
def verify():
    return success_response('Token is valid', {
        'user': g.current_user.to_identity(),
        'isAuthenticated': True,
    })


@auth_bp.route('/check', methods=['GET'])
@optional_auth
def check():
    user = g.current_user
    return success_response('Authentication status retrieved', {
        'user': user.to_identity() if user else None,
        'isAuthenticated': user is not None,
    })
