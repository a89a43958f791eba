# config/security.py
"""
Security Configuration for the marketplace API
"""

import os
import secrets
from datetime import timedelta


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class SecurityConfig:
    """Security configuration settings"""

    # Session settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    SESSION_COOKIE_SECURE = _env_flag('COOKIE_SECURE', True)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Token settings (access + refresh pair)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=int(os.environ.get('JWT_ACCESS_EXPIRES_MINUTES', 15)))
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=int(os.environ.get('JWT_REFRESH_EXPIRES_DAYS', 7)))
    JWT_TOKEN_LOCATION = ['headers', 'cookies']
    JWT_ACCESS_COOKIE_NAME = 'accessToken'
    JWT_REFRESH_COOKIE_NAME = 'refreshToken'
    JWT_REFRESH_COOKIE_PATH = '/'
    JWT_COOKIE_SECURE = _env_flag('COOKIE_SECURE', True)
    JWT_COOKIE_SAMESITE = 'Strict'
    JWT_COOKIE_CSRF_PROTECT = False
    JWT_SESSION_COOKIE = False

    # Password reset links
    PASSWORD_RESET_MAX_AGE = 3600  # 1 hour

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = os.environ.get('RATE_LIMIT_DEFAULT', '100 per 15 minutes')
    RATELIMIT_LOGIN = os.environ.get('RATE_LIMIT_LOGIN', '5 per minute')

    # Content Security Policy
    CSP_POLICY = {
        'default-src': "'self'",
        'style-src': "'self' 'unsafe-inline' https:",
        'script-src': "'self' https:",
        'img-src': "'self' data: https:",
        'connect-src': "'self' https:",
        'font-src': "'self' https:",
        'object-src': "'none'",
        'media-src': "'self' https:",
        'frame-src': "'self'",
    }

    # Security headers
    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'X-XSS-Protection': '1; mode=block',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Cross-Origin-Resource-Policy': 'cross-origin',
        'Permissions-Policy': 'camera=(), microphone=(), geolocation=()'
    }

    # File upload security
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_UPLOAD_SIZE_MB', 10)) * 1024 * 1024
    IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}
    VIDEO_EXTENSIONS = {'mp4', 'mov', 'webm'}
    IMAGE_MIMETYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}
    VIDEO_MIMETYPES = {'video/mp4', 'video/quicktime', 'video/webm'}
    MAX_FILES_PER_UPLOAD = 10
