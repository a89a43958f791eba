# core/permissions.py
"""
Role lookup tables deciding which users may perform product, order,
financial and user-management actions
"""

from core.database_models import SellerRole, UserRole


def _role(user):
    return getattr(user, 'role', None)


def _seller_role(user):
    return getattr(user, 'seller_role', None)


def is_admin(user) -> bool:
    return _role(user) == UserRole.ADMIN


def is_seller(user) -> bool:
    return _role(user) == UserRole.SELLER


def is_buyer(user) -> bool:
    return _role(user) == UserRole.BUYER


def can_manage_products(user) -> bool:
    if is_admin(user):
        return True
    return is_seller(user) and _seller_role(user) in (SellerRole.MANAGER, SellerRole.INVENTORY_STAFF)


def can_view_orders(user) -> bool:
    return user is not None


def can_manage_orders(user) -> bool:
    if is_admin(user):
        return True
    return is_seller(user) and _seller_role(user) == SellerRole.MANAGER


def can_view_financials(user) -> bool:
    if is_admin(user):
        return True
    return is_seller(user) and _seller_role(user) in (SellerRole.MANAGER, SellerRole.ACCOUNTANT)


def can_manage_users(user) -> bool:
    return is_admin(user)
