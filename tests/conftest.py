import itertools
from decimal import Decimal

import pytest

from app import create_app
from api.realtime import connected_users
from core.database_models import (
    db, Category, Order, OrderItem, OrderStatus, OrderStatusHistory, PaymentMethod,
    PaymentStatus, Product, SellerRole, User, UserRole, UserStatus
)
from core.security_manager import security_manager
from core.tokens import issue_token_pair
from core.utils import generate_order_number

PASSWORD = 'Passw0rd!'

_counter = itertools.count(1)


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', {'UPLOAD_FOLDER': str(tmp_path / 'uploads')})
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    connected_users.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def factory(role=UserRole.BUYER, seller_role=None, status=UserStatus.ACTIVE,
                email=None, password=PASSWORD, **fields):
        n = next(_counter)
        password_hash, salt = security_manager.hash_password(password)
        if role == UserRole.SELLER:
            seller_role = seller_role or SellerRole.MANAGER
            fields.setdefault('business_name', f'Shop {n}')
            fields.setdefault('business_phone', '01712345678')
            fields.setdefault('business_address', 'Dhaka')
        user = User(
            email=email or f'user{n}@example.com',
            password_hash=password_hash,
            password_salt=salt,
            name=fields.pop('name', f'User {n}'),
            role=role,
            seller_role=seller_role,
            status=status,
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return factory


@pytest.fixture
def buyer(make_user):
    return make_user(UserRole.BUYER, phone='01812345678')


@pytest.fixture
def seller(make_user):
    return make_user(UserRole.SELLER, SellerRole.MANAGER)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def auth_headers():
    def build(user):
        tokens = issue_token_pair(user)
        return {'Authorization': f"Bearer {tokens['accessToken']}"}
    return build


@pytest.fixture
def category(app):
    category = Category(name='Electronics', slug='electronics', description='Gadgets')
    db.session.add(category)
    db.session.commit()
    return category


@pytest.fixture
def make_product(app, category):
    def factory(seller, title=None, price='100.00', stock=10, **fields):
        n = next(_counter)
        product = Product(
            title=title or f'Product {n}',
            description='A useful thing',
            price=Decimal(price),
            stock=stock,
            sku=f'SKU-{n:06d}',
            images=['https://cdn.example.com/p.jpg'],
            category_id=fields.pop('category_id', category.id),
            seller_id=seller.id,
            **fields,
        )
        db.session.add(product)
        db.session.commit()
        return product
    return factory


@pytest.fixture
def make_order(app):
    """Insert an order directly, bypassing checkout"""
    def factory(buyer, seller, product, quantity=1, status=OrderStatus.PENDING_APPROVAL,
                payment_method=PaymentMethod.CASH_ON_DELIVERY,
                payment_status=PaymentStatus.PENDING):
        total = product.price * quantity
        order = Order(
            order_number=generate_order_number(),
            status=status,
            payment_method=payment_method,
            payment_status=payment_status,
            subtotal=total,
            shipping_cost=Decimal('0'),
            total=total,
            shipping_address={'name': buyer.name, 'city': 'Dhaka'},
            buyer_id=buyer.id,
            seller_id=seller.id,
        )
        order.items.append(OrderItem(
            product_id=product.id,
            product_title=product.title,
            quantity=quantity,
            price=product.price,
        ))
        order.status_history.append(OrderStatusHistory(status=status, changed_by_id=buyer.id))
        db.session.add(order)
        db.session.commit()
        return order
    return factory


@pytest.fixture
def address():
    return {
        'name': 'Rahim Uddin',
        'phone': '01712345678',
        'address': 'House 1, Road 2',
        'city': 'Dhaka',
        'postalCode': '1207',
        'country': 'Bangladesh',
    }


@pytest.fixture
def password():
    return PASSWORD
