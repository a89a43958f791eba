# core/security_manager.py
"""
Security Manager for the marketplace API

Implements:
- Password hashing and verification (PBKDF2-HMAC-SHA256)
- Signed, single-use password reset tokens
- Audit logging of security events
"""

import base64
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from flask import g, has_request_context, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from core.utils import utcnow

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('security.audit')

PASSWORD_RESET_SALT = 'password-reset'


@dataclass
class SecurityAuditLog:
    """Security audit log entry"""
    timestamp: datetime
    event_type: str
    user_id: Optional[str]
    source_ip: str
    resource: str
    action: str
    details: Dict[str, Any] = field(default_factory=dict)


class SecurityManager:
    """
    Password and token helpers plus the security audit trail
    """

    def __init__(self, app=None, iterations: int = 200000):
        self.app = app
        self.iterations = iterations
        self.secret_key = None
        self.reset_max_age = 3600
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.secret_key = app.config['SECRET_KEY']
        self.reset_max_age = app.config.get('PASSWORD_RESET_MAX_AGE', 3600)
        # Hashing cost is lowered under test to keep the suite fast
        if app.config.get('TESTING'):
            self.iterations = 1000
        logger.info("SecurityManager initialized")

    def hash_password(self, password: str, salt: Optional[str] = None) -> Tuple[str, str]:
        """
        Hash password with secure salt

        Args:
            password: Plain text password
            salt: Optional salt (generates new if not provided)

        Returns:
            Tuple of (hashed_password, salt)
        """
        if salt is None:
            salt = secrets.token_hex(16)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=self.iterations,
        )

        hashed = base64.b64encode(kdf.derive(password.encode())).decode()
        return hashed, salt

    def verify_password(self, password: str, hashed_password: str, salt: str) -> bool:
        """Constant-time comparison of a candidate password with the stored hash"""
        if not password or not hashed_password or not salt:
            return False
        computed_hash, _ = self.hash_password(password, salt)
        return hmac.compare_digest(hashed_password, computed_hash)

    def _reset_serializer(self) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(self.secret_key, salt=PASSWORD_RESET_SALT)

    def generate_reset_token(self, user) -> str:
        """
        Signed token naming the user and a fingerprint of the current hash.

        Changing the password changes the fingerprint, which makes every
        previously issued token unusable.
        """
        return self._reset_serializer().dumps({
            'uid': user.id,
            'fp': user.password_hash[-16:],
        })

    def load_reset_token(self, token: str) -> Optional[Dict[str, str]]:
        """Return the token payload, or None when it is invalid or expired"""
        try:
            return self._reset_serializer().loads(token, max_age=self.reset_max_age)
        except SignatureExpired:
            logger.info("Expired password reset token presented")
            return None
        except BadSignature:
            logger.warning("Invalid password reset token presented")
            return None

    @staticmethod
    def reset_token_matches(payload: Dict[str, str], user) -> bool:
        return hmac.compare_digest(payload.get('fp', ''), user.password_hash[-16:])

    def log_security_event(self, event_type: str, details: Dict[str, Any] = None,
                           user_id: Optional[str] = None):
        """
        Log security event for audit trail

        Args:
            event_type: Type of security event
            details: Additional event details
            user_id: Acting user, defaults to the authenticated user
        """
        in_request = has_request_context()
        if user_id is None and in_request:
            current = g.get('current_user')
            user_id = current.id if current is not None else None

        log_entry = SecurityAuditLog(
            timestamp=utcnow(),
            event_type=event_type,
            user_id=user_id,
            source_ip=(request.remote_addr or 'unknown') if in_request else 'system',
            resource=(request.endpoint or request.path) if in_request else 'system',
            action=request.method if in_request else 'system',
            details=details or {},
        )
        audit_logger.info(
            "%s user=%s ip=%s resource=%s action=%s details=%s",
            log_entry.event_type, log_entry.user_id, log_entry.source_ip,
            log_entry.resource, log_entry.action, log_entry.details,
        )
        return log_entry


# Global security manager instance
security_manager = SecurityManager()


def init_security_manager(app):
    """Bind the global security manager to the application"""
    security_manager.init_app(app)
    return security_manager
