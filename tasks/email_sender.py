# tasks/email_sender.py
"""
Celery-based transactional email dispatch

Request handlers call the ``send_*_email`` helpers, which flatten model
data into plain dictionaries and queue ``send_email``. The task renders a
fixed template and delivers it over SMTP. Failures are logged and reported
in the task result; they are never retried.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

import aiosmtplib
from celery import Celery, Task
from celery.signals import task_failure, task_postrun, task_prerun
from celery.utils.log import get_task_logger
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from flask import current_app, has_app_context
from jinja2.exceptions import TemplateError

from core.template_engine import EmailTemplateEngine, STATUS_COLORS

# Configure task logger
logger = get_task_logger(__name__)


class ContextTask(Task):
    """Make celery tasks work with Flask app context"""

    def __call__(self, *args, **kwargs):
        flask_app = getattr(self.app, 'flask_app', None)
        if flask_app is None or has_app_context():
            return self.run(*args, **kwargs)
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery_app = Celery('lagbe_kichu', task_cls=ContextTask)
celery_app.conf.update({
    # Serialization
    'task_serializer': 'json',
    'result_serializer': 'json',
    'accept_content': ['json'],

    # Timezone
    'timezone': 'UTC',
    'enable_utc': True,

    # Task Execution
    'task_acks_late': True,
    'task_reject_on_worker_lost': True,
    'worker_prefetch_multiplier': 1,

    # Result settings
    'result_expires': 3600,  # 1 hour

    # Routing
    'task_routes': {
        'tasks.email_sender.send_email': {'queue': 'email_sending'},
    },

    # Monitoring
    'worker_send_task_events': True,
    'task_send_sent_event': True,
    'worker_hijack_root_logger': False,
})

_template_engine = None


def get_template_engine() -> EmailTemplateEngine:
    global _template_engine
    if _template_engine is None:
        _template_engine = EmailTemplateEngine()
    return _template_engine


@celery_app.task(bind=True)
def send_email(self, template_name: str, recipient: str, subject: str,
               variables: Dict[str, Any], smtp_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Render and send one transactional email

    Args:
        template_name: Template file under core/templates/email
        recipient: Destination address
        subject: Subject line
        variables: Template variables
        smtp_config: Transport settings captured when the email was queued

    Returns:
        Dict containing send result and metadata
    """
    logger.info(f"Starting email task {self.request.id} ({template_name}) for {recipient}")

    try:
        rendered = get_template_engine().render(template_name, variables)
    except TemplateError as e:
        logger.error(f"Template rendering failed for {recipient}: {str(e)}")
        return {'success': False, 'recipient': recipient, 'error': str(e)}

    msg = MIMEMultipart('alternative')
    msg['Subject'] = subject
    msg['From'] = formataddr((smtp_config.get('from_name', ''), smtp_config['from_address']))
    msg['To'] = recipient
    msg['Date'] = formatdate(localtime=True)
    msg['Message-ID'] = f"<{uuid.uuid4()}@{smtp_config['from_address'].split('@')[-1]}>"
    msg.attach(MIMEText(rendered.text, 'plain', 'utf-8'))
    msg.attach(MIMEText(rendered.html, 'html', 'utf-8'))

    if smtp_config.get('suppress'):
        logger.info(f"Mail sending suppressed: '{subject}' to {recipient}")
        return {
            'success': True,
            'suppressed': True,
            'recipient': recipient,
            'subject': subject,
            'message_id': msg['Message-ID'],
        }

    result = asyncio.run(_async_send_smtp(msg, smtp_config))
    if result['success']:
        logger.info(f"Email sent to {recipient}: {result['message_id']}")
    else:
        logger.error(f"Email sending to {recipient} failed: {result['error']}")
    result['recipient'] = recipient
    return result


async def _async_send_smtp(msg: MIMEMultipart, smtp_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Async SMTP sending with error capture
    """
    port = smtp_config.get('port', 587)
    try:
        smtp = aiosmtplib.SMTP(
            hostname=smtp_config['host'],
            port=port,
            timeout=smtp_config.get('timeout', 60),
            use_tls=port == 465,  # Implicit TLS for port 465
            start_tls=True if port == 587 else None,
        )

        async with smtp:
            if smtp_config.get('username') and smtp_config.get('password'):
                await smtp.login(smtp_config['username'], smtp_config['password'])
            await smtp.send_message(msg)

        return {'success': True, 'message_id': msg['Message-ID']}

    except aiosmtplib.SMTPResponseException as e:
        return {'success': False, 'error': f"{e.code} {e.message}"}
    except (aiosmtplib.SMTPException, OSError) as e:
        return {'success': False, 'error': str(e)}


def smtp_config_from_app() -> Dict[str, Any]:
    config = current_app.config
    return {
        'host': config['SMTP_HOST'],
        'port': config['SMTP_PORT'],
        'username': config.get('SMTP_USERNAME'),
        'password': config.get('SMTP_PASSWORD'),
        'timeout': config.get('SMTP_TIMEOUT', 60),
        'from_name': config['MAIL_FROM_NAME'],
        'from_address': config['MAIL_FROM_ADDRESS'],
        'suppress': config.get('MAIL_SUPPRESS_SEND', False),
    }


def queue_email(template_name: str, recipient: str, subject: str,
                variables: Dict[str, Any]) -> Optional[str]:
    """
    Queue an email from request context; broker failures are logged, not raised

    Returns:
        Celery task id, or None when the email could not be queued
    """
    config = current_app.config
    context = {
        'store_name': config['STORE_NAME'],
        'support_email': config['SUPPORT_EMAIL'],
        'client_url': config['CLIENT_URL'],
    }
    context.update(variables)

    try:
        result = send_email.delay(template_name, recipient, subject, context, smtp_config_from_app())
        return result.id
    except Exception as e:
        logger.error(f"Failed to queue '{template_name}' email for {recipient}: {str(e)}",
                     exc_info=True)
        return None


def _status_label(status: str) -> str:
    return status.replace('_', ' ')


def send_welcome_email(user) -> Optional[str]:
    store_name = current_app.config['STORE_NAME']
    return queue_email('welcome.html', user.email, f"Welcome to {store_name}, {user.name}!", {
        'name': user.name,
        'role': user.role.value,
    })


def send_order_status_email(order) -> Optional[str]:
    status = order.status.value
    items: List[Dict[str, Any]] = [
        {'name': item.product_title, 'quantity': item.quantity, 'price': str(item.price),
         'line_total': str(item.price * item.quantity)}
        for item in order.items
    ]
    seller = order.seller
    return queue_email(
        'order_status.html',
        order.buyer.email,
        f"Order Update: {order.order_number} - {_status_label(status)}",
        {
            'buyer_name': order.buyer.name,
            'seller_name': (seller.business_name or seller.name) if seller else '',
            'order_number': order.order_number,
            'status': status,
            'status_label': _status_label(status),
            'accent_color': STATUS_COLORS.get(status, '#6b7280'),
            'total': str(order.total),
            'items': items,
        },
    )


def send_password_reset_email(user, token: str) -> Optional[str]:
    config = current_app.config
    store_name = config['STORE_NAME']
    return queue_email('password_reset.html', user.email, f"Reset Your {store_name} Password", {
        'name': user.name,
        'reset_url': f"{config['CLIENT_URL']}/reset-password?token={token}",
        'expires_minutes': config.get('PASSWORD_RESET_MAX_AGE', 3600) // 60,
        'accent_color': '#ef4444',
    })


# Celery signal handlers for monitoring
@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **cwds):
    """Handle task pre-run events"""
    logger.debug(f"Task {task.name} [{task_id}] starting")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None,
                         retval=None, state=None, **cwds):
    """Handle task post-run events"""
    logger.debug(f"Task {task.name} [{task_id}] completed with state: {state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **cwds):
    """Handle task failure events"""
    logger.error(f"Task {sender.name} [{task_id}] failed: {exception}")
