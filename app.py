# app.py
"""
Flask Application Factory for the Lagbe Kichu marketplace API

This application factory wires together:
- Token authentication (bearer header or http-only cookies)
- Real-time notifications via SocketIO
- Async email processing with Celery
- Centralized JSON error handling and logging
- Health monitoring endpoints
- Security headers and rate limiting
"""

import logging
import logging.handlers
import time
from typing import Any, Dict, Optional

# Flask and extensions
from flask import Flask, g, jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

# Database and caching
import redis
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

# Celery and async processing
from celery import Celery
from kombu import Queue

from config import get_config
from core.database_models import db
from core.errors import ApiError
from core.extensions import cors, jwt, limiter, migrate
from core.responses import error_response, success_response
from core.security_manager import SecurityManager, init_security_manager
from core.seed import register_commands
from core.utils import utcnow
from core.validation import format_validation_errors
from api.admin import admin_bp
from api.auth import auth_bp
from api.categories import categories_bp
from api.orders import orders_bp
from api.payments import payments_bp
from api.products import products_bp
from api.realtime import init_socketio
from api.uploads import media_bp, uploads_bp
from api.users import users_bp
from middleware.security import register_jwt_handlers, security_headers
from tasks.email_sender import celery_app

API_PREFIXES = {
    'auth': '/api/auth',
    'users': '/api/users',
    'products': '/api/products',
    'categories': '/api/categories',
    'orders': '/api/orders',
    'admin': '/api/admin',
    'upload': '/api/upload',
    'payments': '/api/payments',
}

HTTP_ERROR_CODES = {
    400: 'BAD_REQUEST',
    401: 'UNAUTHORIZED',
    403: 'FORBIDDEN',
    404: 'ROUTE_NOT_FOUND',
    405: 'METHOD_NOT_ALLOWED',
    413: 'FILE_SIZE_ERROR',
    429: 'RATE_LIMIT_EXCEEDED',
}

_slow_query_threshold = 1.0


def setup_logging(app: Flask) -> None:
    """
    Configure logging for the application and its module loggers

    This setup provides:
    - Compact stream output
    - Optional rotating file log (LOG_FILE)
    - Quieter third-party loggers outside debug
    """
    # Remove default Flask handlers to avoid duplicate logs
    app.logger.handlers.clear()

    console_formatter = logging.Formatter(
        fmt='%(name)s[%(process)d]: %(levelname)s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-20s %(levelname)-8s %(funcName)-15s:%(lineno)-4d %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Drop handlers installed by an earlier factory call
    for handler in list(root_logger.handlers):
        if getattr(handler, '_marketplace_handler', False):
            root_logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(console_formatter)
    stream_handler.setLevel(log_level)
    stream_handler._marketplace_handler = True
    root_logger.addHandler(stream_handler)

    log_file = app.config.get('LOG_FILE')
    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(detailed_formatter)
        file_handler.setLevel(logging.DEBUG)
        file_handler._marketplace_handler = True
        root_logger.addHandler(file_handler)

    app.logger.setLevel(log_level)

    # Suppress verbose third-party logs
    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('socketio').setLevel(logging.WARNING)
        logging.getLogger('engineio').setLevel(logging.WARNING)


def create_redis_client(app: Flask) -> Optional[redis.Redis]:
    """Redis client used for health probes; None when REDIS_URL is unset"""
    redis_url = app.config.get('REDIS_URL')
    if not redis_url:
        return None
    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        health_check_interval=30,
    )


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    started = getattr(context, '_query_start_time', None)
    if started is None:
        return
    total = time.perf_counter() - started
    if total > _slow_query_threshold:
        logging.getLogger('sqlalchemy.slow_query').warning(f"Slow query ({total:.2f}s): {statement[:100]}...")


def configure_database(app: Flask) -> None:
    """
    Configure Flask-SQLAlchemy

    Features:
    - Connection pooling for server databases
    - Slow query logging
    """
    global _slow_query_threshold

    database_url = app.config['DATABASE_URL']
    engine_options: Dict[str, Any] = {}
    if not database_url.startswith('sqlite'):
        engine_options.update({
            'pool_size': app.config.get('DB_POOL_SIZE', 20),
            'max_overflow': app.config.get('DB_MAX_OVERFLOW', 30),
            'pool_pre_ping': True,  # Verify connections before use
            'pool_recycle': 3600,   # Recycle connections every hour
        })

    if database_url.startswith('postgresql'):
        engine_options['connect_args'] = {
            'options': '-c default_transaction_isolation=read_committed',
            'application_name': 'lagbe_kichu',
            'connect_timeout': 10,
        }

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    db.init_app(app)
    migrate.init_app(app, db)

    _slow_query_threshold = app.config.get('SLOW_QUERY_THRESHOLD', 1.0)
    if not event.contains(Engine, 'before_cursor_execute', _before_cursor_execute):
        event.listen(Engine, 'before_cursor_execute', _before_cursor_execute)
        event.listen(Engine, 'after_cursor_execute', _after_cursor_execute)

    app.logger.info(f"Database configured: {database_url.split('@')[-1] if '@' in database_url else database_url}")


def configure_celery(app: Flask) -> Celery:
    """
    Point the email task queue at the configured broker and bind it to this app
    """
    celery_app.conf.update({
        'broker_url': app.config['CELERY_BROKER_URL'],
        'result_backend': app.config['CELERY_RESULT_BACKEND'],
        'task_always_eager': app.config.get('CELERY_TASK_ALWAYS_EAGER', False),
        'task_eager_propagates': False,
        'task_default_queue': 'default',
        'task_queues': (
            Queue('email_sending', routing_key='email_sending'),
            Queue('default', routing_key='default'),
        ),
    })

    # ContextTask pushes this app's context around task execution
    celery_app.flask_app = app

    app.logger.info("Celery configured")
    return celery_app


def configure_security(app: Flask) -> SecurityManager:
    """
    Configure authentication, rate limiting and CORS
    """
    security_manager = init_security_manager(app)

    jwt.init_app(app)
    register_jwt_handlers(jwt)

    limiter.init_app(app)

    cors.init_app(
        app,
        origins=app.config.get('CORS_ORIGINS', ['http://localhost:3000']),
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization'],
        methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
    )

    app.logger.info("Security features configured")
    return security_manager


def register_blueprints(app: Flask) -> None:
    """
    Register all application blueprints with their URL prefixes
    """
    app.register_blueprint(auth_bp, url_prefix=API_PREFIXES['auth'])
    app.register_blueprint(users_bp, url_prefix=API_PREFIXES['users'])
    app.register_blueprint(products_bp, url_prefix=API_PREFIXES['products'])
    app.register_blueprint(categories_bp, url_prefix=API_PREFIXES['categories'])
    app.register_blueprint(orders_bp, url_prefix=API_PREFIXES['orders'])
    app.register_blueprint(admin_bp, url_prefix=API_PREFIXES['admin'])
    app.register_blueprint(uploads_bp, url_prefix=API_PREFIXES['upload'])
    app.register_blueprint(payments_bp, url_prefix=API_PREFIXES['payments'])
    app.register_blueprint(media_bp)

    @app.route('/api')
    def api_info():
        return success_response('Lagbe Kichu API', {
            'version': app.config.get('VERSION', '1.0.0'),
            'endpoints': API_PREFIXES,
        })

    app.logger.info("Application blueprints registered")


def _current_user_id() -> Optional[str]:
    user = g.get('current_user')
    return user.id if user is not None else None


def configure_error_handlers(app: Flask) -> None:
    """
    Map every failure onto the JSON error envelope; the session is rolled back on each path
    """
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f"{error.code}: {error.message} ({request.method} {request.path})")
        return error_response(error.message, error.status_code, error.code, **error.details)

    @app.errorhandler(PydanticValidationError)
    def handle_validation_error(error):
        db.session.rollback()
        return error_response('Validation failed', 400, 'VALIDATION_ERROR',
                              validation=format_validation_errors(error))

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        app.logger.warning(f"Integrity error on {request.method} {request.path}: {error.orig}")
        return error_response('A record with this value already exists', 409, 'DUPLICATE_ENTRY')

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        db.session.rollback()
        status = error.code or 500
        code = HTTP_ERROR_CODES.get(status, 'HTTP_ERROR')

        if status == 404:
            return error_response(f"Route {request.method} {request.path} not found", 404, code,
                                  method=request.method, url=request.path)
        if status == 413:
            max_mb = app.config.get('MAX_CONTENT_LENGTH', 0) // (1024 * 1024)
            return error_response(f'File too large. Maximum size is {max_mb}MB', 413, code)
        if status == 429:
            app.logger.warning(f"Rate limit exceeded for {request.remote_addr}")
            return error_response('Too many requests from this IP, please try again later.', 429, code)
        if status >= 500:
            app.logger.error(f"HTTP {status} on {request.method} {request.path}: {error}")
        return error_response(error.description or error.name, status, code)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle unexpected exceptions"""
        db.session.rollback()
        app.logger.error(
            f"Unhandled exception on {request.method} {request.path} "
            f"from {request.remote_addr} (user {_current_user_id()}): {error}",
            exc_info=True,
        )
        extra = {}
        if app.debug:
            extra['details'] = {'name': type(error).__name__, 'message': str(error)}
        return error_response('Internal server error', 500, 'INTERNAL_SERVER_ERROR', **extra)


def configure_health_checks(app: Flask, redis_client: Optional[redis.Redis]) -> None:
    """
    Configure health check endpoints for monitoring and load balancing
    """
    @app.route('/health')
    @limiter.exempt
    def health_check():
        """Basic health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': utcnow().isoformat(),
            'uptime': round(time.time() - app.config['START_TIME'], 2),
            'environment': app.config.get('ENV_NAME'),
            'version': app.config.get('VERSION', '1.0.0')
        })

    @app.route('/health/detailed')
    @limiter.exempt
    def detailed_health_check():
        """Detailed health check with component status"""
        health_status = {
            'status': 'healthy',
            'timestamp': utcnow().isoformat(),
            'components': {}
        }

        # Check database connectivity
        try:
            db.session.execute(text('SELECT 1'))
            health_status['components']['database'] = 'healthy'
        except Exception as e:
            db.session.rollback()
            health_status['components']['database'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

        # Check Redis connectivity
        if redis_client is None:
            health_status['components']['redis'] = 'not configured'
        else:
            try:
                redis_client.ping()
                health_status['components']['redis'] = 'healthy'
            except redis.RedisError as e:
                health_status['components']['redis'] = f'unhealthy: {str(e)}'
                health_status['status'] = 'unhealthy'

        status_code = 200 if health_status['status'] == 'healthy' else 503
        return jsonify(health_status), status_code


def configure_request_middleware(app: Flask) -> None:
    """
    Configure request/response middleware for security and monitoring
    """
    @app.before_request
    def before_request():
        """Execute before each request"""
        # Store request start time for performance monitoring
        g.start_time = time.perf_counter()

        # Security logging for sensitive endpoints
        if request.endpoint and request.endpoint.startswith(('auth.', 'admin.')):
            app.logger.debug(f"Sensitive endpoint access: {request.endpoint} from {request.remote_addr}")

    @app.after_request
    def after_request(response):
        """Execute after each request"""
        response = security_headers(response)

        # Log request performance
        if hasattr(g, 'start_time'):
            duration = (time.perf_counter() - g.start_time) * 1000
            if duration > app.config.get('SLOW_REQUEST_THRESHOLD', 1000):
                app.logger.warning(f"Slow request ({duration:.0f}ms): {request.method} {request.path}")

        return response


def create_app(config_name: str = None, overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        overrides: Extra config values applied after the environment class

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # Store application start time for uptime reporting
    app.config['START_TIME'] = time.time()

    # Configure proxy handling for production deployment behind nginx
    if config_class.ENV_NAME == 'production':
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    app.logger.info(f"Starting Lagbe Kichu API in {app.config['ENV_NAME']} mode")

    redis_client = create_redis_client(app)
    app.extensions['redis'] = redis_client

    configure_database(app)
    configure_celery(app)
    configure_security(app)
    init_socketio(app)

    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app, redis_client)
    configure_request_middleware(app)
    register_commands(app)

    # Schema is managed by migrations outside tests
    if app.config.get('TESTING'):
        with app.app_context():
            db.create_all()

    app.logger.info("Flask application factory completed successfully")
    return app
