# api/users.py
"""
User self-service API: profile, shopping cart and notifications
"""

import logging

from flask import Blueprint, g

from core.database_models import db, CartItem, Notification, Product, UserRole
from core.errors import ConflictError, NotFoundError
from core.responses import pagination_meta, success_response
from core.utils import money_to_float, sanitize_string, to_money
from core.validation import (
    CartAddSchema, CartUpdateSchema, NotificationFilterSchema, UpdateProfileSchema,
    validate_request
)
from middleware.security import authenticate, buyer_only
from services import notifications

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

BUSINESS_FIELDS = ('business_name', 'business_phone', 'business_address')


@users_bp.route('/profile', methods=['GET'])
@authenticate
def get_profile():
    return success_response('Profile retrieved successfully', {'user': g.current_user.to_dict()})


@users_bp.route('/profile', methods=['PUT'])
@authenticate
@validate_request(UpdateProfileSchema)
def update_profile():
    """Update the caller's profile; business fields apply to sellers only"""
    user = g.current_user
    changes = g.validated_data.changes()

    for field, value in changes.items():
        if field in BUSINESS_FIELDS and user.role != UserRole.SELLER:
            continue
        if field in ('name', 'business_name', 'business_address'):
            value = sanitize_string(value)
        setattr(user, field, value)

    db.session.commit()
    logger.info(f"Profile updated for user {user.id}: {sorted(changes)}")
    return success_response('Profile updated successfully', {'user': user.to_dict()})


# Cart

def _cart_payload(user_id: str):
    items = (
        CartItem.query.filter_by(user_id=user_id)
        .order_by(CartItem.created_at.desc())
        .all()
    )
    lines = [item.to_dict() for item in items]
    subtotal = sum((to_money(item.product.effective_price) * item.quantity for item in items), to_money(0))
    return {
        'items': lines,
        'summary': {
            'itemCount': len(lines),
            'totalQuantity': sum(item.quantity for item in items),
            'subtotal': money_to_float(subtotal),
        },
    }


def _available_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product')
    if not product.is_active:
        raise ConflictError(f'Product "{product.title}" is not available', code='PRODUCT_UNAVAILABLE')
    return product


def _check_stock(product: Product, quantity: int):
    if quantity > product.stock:
        raise ConflictError(
            f'Only {product.stock} unit(s) of "{product.title}" in stock',
            code='INSUFFICIENT_STOCK',
            details={'productId': product.id, 'available': product.stock, 'requested': quantity},
        )


def _cart_item(item_id: str) -> CartItem:
    item = CartItem.query.filter_by(id=item_id, user_id=g.current_user.id).first()
    if item is None:
        raise NotFoundError('Cart item')
    return item


@users_bp.route('/cart', methods=['GET'])
@authenticate
@buyer_only
def get_cart():
    return success_response('Cart retrieved successfully', _cart_payload(g.current_user.id))


@users_bp.route('/cart', methods=['POST'])
@authenticate
@buyer_only
@validate_request(CartAddSchema)
def add_to_cart():
    """Add a product, merging with an existing line for the same product"""
    data = g.validated_data
    user = g.current_user
    product = _available_product(data.product_id)

    item = CartItem.query.filter_by(user_id=user.id, product_id=product.id).first()
    quantity = data.quantity + (item.quantity if item else 0)
    _check_stock(product, quantity)

    if item is None:
        item = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
        db.session.add(item)
    else:
        item.quantity = quantity
    db.session.commit()

    return success_response('Item added to cart', _cart_payload(user.id), status=201)


@users_bp.route('/cart/<item_id>', methods=['PUT'])
@authenticate
@buyer_only
@validate_request(CartUpdateSchema)
def update_cart_item(item_id):
    item = _cart_item(item_id)
    product = _available_product(item.product_id)
    _check_stock(product, g.validated_data.quantity)

    item.quantity = g.validated_data.quantity
    db.session.commit()
    return success_response('Cart updated successfully', _cart_payload(g.current_user.id))


@users_bp.route('/cart/<item_id>', methods=['DELETE'])
@authenticate
@buyer_only
def remove_cart_item(item_id):
    item = _cart_item(item_id)
    db.session.delete(item)
    db.session.commit()
    return success_response('Item removed from cart', _cart_payload(g.current_user.id))


@users_bp.route('/cart', methods=['DELETE'])
@authenticate
@buyer_only
def clear_cart():
    removed = CartItem.query.filter_by(user_id=g.current_user.id).delete()
    db.session.commit()
    return success_response('Cart cleared successfully', {'removed': removed})


# Notifications

@users_bp.route('/notifications', methods=['GET'])
@authenticate
@validate_request(NotificationFilterSchema, location='query')
def list_notifications():
    params = g.validated_data
    user = g.current_user

    query = Notification.query.filter_by(user_id=user.id)
    if params.unread_only:
        query = query.filter_by(is_read=False)

    page = query.order_by(Notification.created_at.desc()).paginate(
        page=params.page, per_page=params.limit, error_out=False
    )
    return success_response(
        'Notifications retrieved successfully',
        {
            'notifications': [notification.to_dict() for notification in page.items],
            'unreadCount': notifications.unread_count(user.id),
        },
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@users_bp.route('/notifications/<notification_id>/read', methods=['PATCH'])
@authenticate
def mark_notification_read(notification_id):
    notification = notifications.mark_read(g.current_user.id, notification_id)
    if notification is None:
        raise NotFoundError('Notification')
    return success_response('Notification marked as read', {'notification': notification.to_dict()})


@users_bp.route('/notifications/read-all', methods=['PATCH'])
@authenticate
def mark_all_notifications_read():
    updated = notifications.mark_all_read(g.current_user.id)
    return success_response('All notifications marked as read', {'updated': updated})
