from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError

from core import permissions
from core.database_models import OrderStatus, SellerRole, UserRole
from core.errors import ValidationError
from core.responses import pagination_meta
from core.utils import generate_order_number, generate_slug, money_to_float, to_money
from core.validation import (
    OrderCreateSchema, ProductUpdateSchema, RegisterSchema, SearchSchema, format_validation_errors
)
from services.orders import can_transition


def _user(role, seller_role=None):
    return SimpleNamespace(role=role, seller_role=seller_role)


@pytest.mark.parametrize('phone', ['01712345678', '+8801712345678', '8801912345678', '017 1234 5678'])
def test_bangladesh_phone_numbers(phone):
    schema = RegisterSchema(email='a@example.com', password='Valid@123', name='A', phone=phone)
    assert ' ' not in schema.phone


@pytest.mark.parametrize('phone', ['01212345678', '0171234567', '+1 555 0100'])
def test_invalid_phone_numbers(phone):
    with pytest.raises(PydanticValidationError):
        RegisterSchema(email='a@example.com', password='Valid@123', name='A', phone=phone)


@pytest.mark.parametrize('password,message', [
    ('Sh@1', 'at least 8 characters'),
    ('lower@1234', 'uppercase'),
    ('UPPER@1234', 'lowercase'),
    ('NoDigits@x', 'number'),
    ('NoSpecial12', 'special character'),
])
def test_password_rules(password, message):
    with pytest.raises(PydanticValidationError) as excinfo:
        RegisterSchema(email='a@example.com', password=password, name='A')

    errors = format_validation_errors(excinfo.value)
    assert message in errors[0]['message']
    assert 'value' not in errors[0]


def test_validation_errors_use_wire_names():
    with pytest.raises(PydanticValidationError) as excinfo:
        OrderCreateSchema.model_validate({
            'items': [{'productId': 'not-a-uuid', 'quantity': 0}],
            'shippingAddress': {},
            'paymentMethod': 'CASH',
        })

    fields = {error['field'] for error in format_validation_errors(excinfo.value)}
    assert 'items.0.productId' in fields
    assert 'items.0.quantity' in fields
    assert 'shippingAddress.phone' in fields
    assert 'paymentMethod' in fields


def test_seller_registration_needs_business_details():
    with pytest.raises(ValidationError):
        RegisterSchema(email='a@example.com', password='Valid@123', name='A', role=UserRole.SELLER,
                       seller_role=SellerRole.MANAGER)


def test_changes_reports_only_sent_fields():
    schema = ProductUpdateSchema.model_validate({'stock': 3, 'video': None})
    assert schema.changes() == {'stock': 3, 'video': None}


def test_search_defaults():
    schema = SearchSchema.model_validate({'q': 'lamp'})
    assert (schema.sort_by, schema.page, schema.limit) == ('newest', 1, 10)


def test_permission_tables():
    admin = _user(UserRole.ADMIN)
    manager = _user(UserRole.SELLER, SellerRole.MANAGER)
    accountant = _user(UserRole.SELLER, SellerRole.ACCOUNTANT)
    staff = _user(UserRole.SELLER, SellerRole.INVENTORY_STAFF)
    buyer = _user(UserRole.BUYER)

    assert [permissions.can_manage_products(u) for u in (admin, manager, accountant, staff, buyer)] == \
        [True, True, False, True, False]
    assert [permissions.can_manage_orders(u) for u in (admin, manager, accountant, staff, buyer)] == \
        [True, True, False, False, False]
    assert [permissions.can_view_financials(u) for u in (admin, manager, accountant, staff, buyer)] == \
        [True, True, True, False, False]
    assert permissions.can_manage_users(admin) and not permissions.can_manage_users(manager)
    assert not permissions.can_view_orders(None)


def test_transition_table():
    assert can_transition(OrderStatus.PENDING_APPROVAL, OrderStatus.PROCESSING)
    assert can_transition(OrderStatus.PROCESSING, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.PROCESSING, OrderStatus.REJECTED)
    assert not can_transition(OrderStatus.CANCELLED, OrderStatus.PENDING_APPROVAL)
    assert not can_transition(OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def test_pagination_meta():
    assert pagination_meta(2, 10, 25) == {
        'page': 2, 'limit': 10, 'total': 25, 'totalPages': 3, 'hasNext': True, 'hasPrev': True,
    }
    assert pagination_meta(1, 10, 0)['totalPages'] == 0


def test_money_helpers():
    assert to_money('10.005') == Decimal('10.01')
    assert money_to_float(Decimal('99.999')) == 100.0
    assert money_to_float(None) is None


def test_slug_and_order_number():
    assert generate_slug('  Home & Garden!  ') == 'home-garden'
    first, second = generate_order_number(), generate_order_number()
    assert first.startswith('ORD-') and first != second
