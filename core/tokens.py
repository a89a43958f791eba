# core/tokens.py
"""
Access/refresh token pair issuance, rotation and revocation.

Refresh tokens are stored server-side; a refresh token that is not in the
table is not accepted even when its signature is valid.
"""

import logging
import time
from typing import Dict, Optional

from flask import current_app
from flask_jwt_extended import create_access_token, create_refresh_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from core.database_models import db, RefreshToken, User
from core.errors import AuthenticationError
from core.utils import utcnow

logger = logging.getLogger(__name__)


def _token_claims(user: User) -> Dict[str, Optional[str]]:
    return {
        'email': user.email,
        'role': user.role.value,
        'sellerRole': user.seller_role.value if user.seller_role else None,
    }


def _encode_pair(user: User) -> Dict[str, str]:
    claims = _token_claims(user)
    return {
        'accessToken': create_access_token(identity=user.id, additional_claims=claims),
        'refreshToken': create_refresh_token(identity=user.id, additional_claims=claims),
    }


def _refresh_expiry():
    return utcnow() + current_app.config['JWT_REFRESH_TOKEN_EXPIRES']


def issue_token_pair(user: User) -> Dict[str, str]:
    """Create a new access/refresh pair and persist the refresh token"""
    tokens = _encode_pair(user)
    db.session.add(RefreshToken(
        token=tokens['refreshToken'],
        user_id=user.id,
        expires_at=_refresh_expiry(),
    ))
    db.session.commit()
    return tokens


def decode_access_token(token: str) -> Dict:
    """Decode an access token, raising AuthenticationError when unusable"""
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        raise AuthenticationError(f'Invalid token: {e}', code='INVALID_TOKEN')
    if claims.get('type') != 'access':
        raise AuthenticationError('Invalid token type', code='INVALID_TOKEN')
    return claims


def rotate_refresh_token(token: str):
    """
    Exchange a stored refresh token for a new pair.

    Returns:
        Tuple of (user, tokens)
    """
    try:
        claims = decode_token(token, allow_expired=True)
    except (JWTExtendedException, PyJWTError):
        raise AuthenticationError('Invalid refresh token', code='INVALID_TOKEN')

    if claims.get('type') != 'refresh':
        raise AuthenticationError('Invalid refresh token', code='INVALID_TOKEN')

    stored = RefreshToken.query.filter_by(token=token).first()
    if stored is None:
        raise AuthenticationError('Invalid refresh token', code='INVALID_TOKEN')

    if stored.is_expired or claims.get('exp', 0) < time.time():
        db.session.delete(stored)
        db.session.commit()
        raise AuthenticationError('Refresh token expired', code='TOKEN_EXPIRED')

    user = db.session.get(User, stored.user_id)
    if user is None or user.id != claims.get('sub') or not user.is_active:
        raise AuthenticationError('User not found or inactive')

    tokens = _encode_pair(user)
    stored.token = tokens['refreshToken']
    stored.expires_at = _refresh_expiry()
    db.session.commit()
    return user, tokens


def revoke_refresh_token(user_id: str, token: Optional[str]) -> int:
    """Delete one refresh token owned by ``user_id``"""
    if not token:
        return 0
    deleted = RefreshToken.query.filter_by(user_id=user_id, token=token).delete()
    db.session.commit()
    return deleted


def revoke_all_refresh_tokens(user_id: str, commit: bool = True) -> int:
    deleted = RefreshToken.query.filter_by(user_id=user_id).delete()
    if commit:
        db.session.commit()
    logger.info(f"Revoked {deleted} refresh token(s) for user {user_id}")
    return deleted


def purge_expired_tokens() -> int:
    deleted = RefreshToken.query.filter(RefreshToken.expires_at < utcnow()).delete()
    db.session.commit()
    return deleted
