# core/seed.py
"""
Flask CLI commands for demo data and token housekeeping
"""

import logging
import os
from decimal import Decimal

import click
from flask import current_app

from core.database_models import (
    db, Category, Product, SellerRole, User, UserRole, UserStatus
)
from core.security_manager import security_manager
from core.tokens import purge_expired_tokens
from core.utils import generate_sku, generate_slug

logger = logging.getLogger(__name__)

SEED_CATEGORIES = [
    ('Electronics', 'Phones, laptops, audio and accessories'),
    ('Fashion', 'Clothing, shoes and accessories'),
    ('Home & Garden', 'Furniture, decor and garden supplies'),
    ('Books', 'Fiction, non-fiction and textbooks'),
    ('Sports', 'Sports gear and outdoor equipment'),
]

SEED_SELLERS = [
    # email, password, name, seller role, business name
    ('manager@techstore.com', 'Manager@123456', 'John Manager', SellerRole.MANAGER, 'TechStore BD'),
    ('accountant@techstore.com', 'Accountant@123456', 'Sarah Accountant', SellerRole.ACCOUNTANT, 'TechStore BD'),
    ('inventory@techstore.com', 'Inventory@123456', 'Mike Inventory', SellerRole.INVENTORY_STAFF, 'TechStore BD'),
    ('seller@fashionhub.com', 'Seller@123456', 'Emma Fashion', SellerRole.MANAGER, 'Fashion Hub'),
]

SEED_PRODUCTS = [
    # seller email, category, title, price, discount price, stock
    ('manager@techstore.com', 'Electronics', 'iPhone 15 Pro Max', '149999', '144999', 25),
    ('manager@techstore.com', 'Electronics', 'Samsung Galaxy S24 Ultra', '134999', None, 30),
    ('manager@techstore.com', 'Electronics', 'MacBook Pro 14"', '249999', None, 15),
    ('manager@techstore.com', 'Electronics', 'Sony WH-1000XM5', '39999', '35999', 50),
    ('seller@fashionhub.com', 'Fashion', 'Premium Cotton T-Shirt', '1299', '999', 100),
    ('seller@fashionhub.com', 'Fashion', 'Denim Jacket', '4999', None, 40),
    ('seller@fashionhub.com', 'Sports', 'Running Shoes', '7999', '6999', 60),
]

BUYER_COUNT = 5
BUYER_PASSWORD = 'Buyer@123456'


def _get_or_create_user(email: str, password: str, name: str, **fields) -> User:
    user = User.query.filter_by(email=email).first()
    if user is not None:
        return user
    password_hash, salt = security_manager.hash_password(password)
    user = User(email=email, password_hash=password_hash, password_salt=salt, name=name,
                status=UserStatus.ACTIVE, **fields)
    db.session.add(user)
    return user


def seed_database():
    """Idempotently create demo users, categories and products"""
    config = current_app.config
    _get_or_create_user(
        os.environ.get('ADMIN_EMAIL', 'admin@lagbe-kichu.xyz'),
        os.environ.get('ADMIN_PASSWORD', 'Admin@123456'),
        os.environ.get('ADMIN_NAME', 'System Administrator'),
        role=UserRole.ADMIN,
    )

    sellers = {}
    for email, password, name, seller_role, business in SEED_SELLERS:
        sellers[email] = _get_or_create_user(
            email, password, name,
            role=UserRole.SELLER,
            seller_role=seller_role,
            business_name=business,
            business_phone='01712345678',
            business_address='Dhaka, Bangladesh',
        )

    for i in range(1, BUYER_COUNT + 1):
        _get_or_create_user(f'buyer{i}@example.com', BUYER_PASSWORD, f'Buyer {i}',
                            role=UserRole.BUYER, phone=f'0171234567{i}')

    categories = {}
    for name, description in SEED_CATEGORIES:
        category = Category.query.filter_by(name=name).first()
        if category is None:
            category = Category(name=name, slug=generate_slug(name), description=description)
            db.session.add(category)
        categories[name] = category
    db.session.flush()

    created = 0
    for seller_email, category_name, title, price, discount, stock in SEED_PRODUCTS:
        if Product.query.filter_by(title=title).first():
            continue
        db.session.add(Product(
            title=title,
            description=f'{title} from {sellers[seller_email].business_name}',
            price=Decimal(price),
            discount_price=Decimal(discount) if discount else None,
            stock=stock,
            sku=generate_sku(title, category_name),
            images=[f"{config['CLIENT_URL']}/images/{generate_slug(title)}.jpg"],
            category_id=categories[category_name].id,
            seller_id=sellers[seller_email].id,
        ))
        created += 1

    db.session.commit()
    logger.info(f"Seed complete: {created} new product(s)")
    return created


def register_commands(app):
    @app.cli.command('seed-db')
    def seed_db_command():
        """Create demo users, categories and products."""
        db.create_all()
        created = seed_database()
        click.echo(f'Database seeded ({created} new products).')

    @app.cli.command('purge-tokens')
    def purge_tokens_command():
        """Delete expired refresh tokens."""
        deleted = purge_expired_tokens()
        click.echo(f'Purged {deleted} expired refresh token(s).')
