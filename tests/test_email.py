import pytest
from jinja2.exceptions import TemplateError

from core.database_models import OrderStatus
from core.template_engine import EmailTemplateEngine
from tasks.email_sender import (
    queue_email, send_email, send_order_status_email, send_password_reset_email, send_welcome_email,
    smtp_config_from_app
)


@pytest.fixture
def engine():
    return EmailTemplateEngine()


def test_render_welcome_inlines_css_and_builds_text(engine):
    rendered = engine.render('welcome.html', {
        'name': 'Rahim',
        'role': 'BUYER',
        'store_name': 'Lagbe Kichu',
        'support_email': 'support@example.com',
        'client_url': 'https://shop.example.com',
    })

    assert 'Welcome to Lagbe Kichu!' in rendered.html
    assert 'style="' in rendered.html
    assert 'Hello Rahim!' in rendered.text
    assert 'https://shop.example.com' in rendered.text


def test_render_escapes_user_content(engine):
    rendered = engine.render('password_reset.html', {
        'name': '<script>alert(1)</script>',
        'reset_url': 'https://shop.example.com/reset-password?token=abc',
        'expires_minutes': 60,
        'store_name': 'Lagbe Kichu',
        'support_email': 'support@example.com',
        'client_url': 'https://shop.example.com',
    })
    assert '<script>' not in rendered.html


def test_render_missing_variable_fails(engine):
    with pytest.raises(TemplateError):
        engine.render('welcome.html', {'name': 'Rahim'})


def test_order_status_template_formats_money(engine):
    rendered = engine.render('order_status.html', {
        'buyer_name': 'Rahim',
        'seller_name': 'Shop',
        'order_number': 'ORD-1',
        'status': 'PROCESSING',
        'status_label': 'PROCESSING',
        'total': '12500.00',
        'items': [{'name': 'Kettle', 'quantity': 2, 'price': '6250.00', 'line_total': '12500.00'}],
        'store_name': 'Lagbe Kichu',
        'support_email': 'support@example.com',
        'client_url': 'https://shop.example.com',
    })
    assert '12,500' in rendered.text
    assert 'Kettle' in rendered.text


def test_send_email_suppressed(app):
    config = smtp_config_from_app()
    assert config['suppress'] is True

    result = send_email.apply(args=('welcome.html', 'rahim@example.com', 'Welcome', {
        'name': 'Rahim',
        'role': 'BUYER',
        'store_name': 'Lagbe Kichu',
        'support_email': 'support@example.com',
        'client_url': 'https://shop.example.com',
    }, config)).get()

    assert result['success'] is True
    assert result['suppressed'] is True
    assert result['message_id'].endswith('@lagbe-kichu.xyz>')


def test_send_email_reports_template_errors(app):
    result = send_email.apply(args=('welcome.html', 'rahim@example.com', 'Welcome', {},
                                    smtp_config_from_app())).get()
    assert result['success'] is False


def test_queue_email_returns_task_id(app):
    task_id = queue_email('welcome.html', 'rahim@example.com', 'Welcome', {'name': 'Rahim', 'role': 'BUYER'})
    assert task_id


def test_queue_email_swallows_broker_errors(app, monkeypatch):
    def broken(*args, **kwargs):
        raise ConnectionError('broker down')

    monkeypatch.setattr(send_email, 'delay', broken)
    assert queue_email('welcome.html', 'rahim@example.com', 'Welcome', {}) is None


def test_transactional_helpers(app, buyer, seller, make_product, make_order):
    order = make_order(buyer, seller, make_product(seller), status=OrderStatus.PROCESSING)

    assert send_welcome_email(buyer)
    assert send_password_reset_email(buyer, 'token-value')
    assert send_order_status_email(order)
