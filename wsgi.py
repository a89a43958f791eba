# wsgi.py
"""
WSGI entry point; also exposes the Celery app for workers:

    celery -A wsgi.celery_app worker -Q email_sending,default
"""

import os

from app import create_app
from api.realtime import socketio
from tasks.email_sender import celery_app  # noqa: F401

application = create_app()

if __name__ == '__main__':
    # Development server with SocketIO support
    socketio.run(
        application,
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 5000)),
        debug=application.debug,
        use_reloader=application.debug,
        allow_unsafe_werkzeug=True,
    )
