# api/orders.py
"""
Orders API: checkout, role-scoped order views, status lifecycle and seller stats
"""

import logging

from flask import Blueprint, g

from core.database_models import Order, UserRole
from core.errors import ValidationError
from core.responses import pagination_meta, success_response
from core.validation import (
    AnalyticsFilterSchema, OrderCancelSchema, OrderCreateSchema, OrderFilterSchema,
    OrderStatusUpdateSchema, validate_request
)
from middleware.security import authenticate, buyer_only, can_manage_orders, can_view_financials
from services.analytics import analytics_service
from services.orders import (
    cancel_order, get_order_for_user, place_orders, scoped_order_query, update_order_status
)

orders_bp = Blueprint('orders', __name__)
logger = logging.getLogger(__name__)

ORDER_SORT_FIELDS = {
    'createdAt': Order.created_at,
    'updatedAt': Order.updated_at,
    'total': Order.total,
}


@orders_bp.route('', methods=['POST'])
@authenticate
@buyer_only
@validate_request(OrderCreateSchema)
def create_order():
    """Checkout: one order is created per seller in the basket"""
    orders = place_orders(g.current_user, g.validated_data)
    message = 'Order placed successfully' if len(orders) == 1 else f'{len(orders)} orders placed successfully'
    return success_response(message, {'orders': [order.to_dict() for order in orders]}, status=201)


@orders_bp.route('', methods=['GET'])
@authenticate
@validate_request(OrderFilterSchema, location='query')
def list_orders():
    params = g.validated_data
    user = g.current_user
    query = scoped_order_query(user)

    if params.status:
        query = query.filter(Order.status == params.status)
    if params.payment_method:
        query = query.filter(Order.payment_method == params.payment_method)
    if params.date_from:
        query = query.filter(Order.created_at >= params.date_from)
    if params.date_to:
        query = query.filter(Order.created_at <= params.date_to)
    if user.role == UserRole.ADMIN:
        if params.buyer_id:
            query = query.filter(Order.buyer_id == params.buyer_id)
        if params.seller_id:
            query = query.filter(Order.seller_id == params.seller_id)

    column = ORDER_SORT_FIELDS.get(params.sort, Order.created_at)
    query = query.order_by(column.asc() if params.order == 'asc' else column.desc())

    page = query.paginate(page=params.page, per_page=params.limit, error_out=False)
    return success_response(
        'Orders retrieved successfully',
        {'orders': [order.to_dict() for order in page.items]},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@orders_bp.route('/seller/stats', methods=['GET'])
@authenticate
@can_view_financials
@validate_request(AnalyticsFilterSchema, location='query')
def seller_stats():
    """Financial summary; admins pick the seller with ``sellerId``"""
    params = g.validated_data
    user = g.current_user
    seller_id = user.id
    if user.role == UserRole.ADMIN:
        if not params.seller_id:
            raise ValidationError('sellerId is required', field='sellerId')
        seller_id = params.seller_id

    stats = analytics_service.get_seller_stats(seller_id, params.date_from, params.date_to)
    return success_response('Seller statistics retrieved successfully', {'stats': stats})


@orders_bp.route('/<order_id>', methods=['GET'])
@authenticate
def get_order(order_id):
    order = get_order_for_user(order_id, g.current_user)
    return success_response('Order retrieved successfully', {'order': order.to_dict(include_history=True)})


@orders_bp.route('/<order_id>/history', methods=['GET'])
@authenticate
def order_history(order_id):
    order = get_order_for_user(order_id, g.current_user)
    return success_response('Order history retrieved successfully', {
        'orderId': order.id,
        'history': [entry.to_dict() for entry in order.status_history],
    })


@orders_bp.route('/<order_id>/status', methods=['PATCH'])
@authenticate
@can_manage_orders
@validate_request(OrderStatusUpdateSchema)
def change_order_status(order_id):
    data = g.validated_data
    order = get_order_for_user(order_id, g.current_user)
    update_order_status(order, data.status, g.current_user, data.notes)
    return success_response('Order status updated successfully', {'order': order.to_dict(include_history=True)})


@orders_bp.route('/<order_id>/cancel', methods=['POST'])
@authenticate
@buyer_only
@validate_request(OrderCancelSchema)
def cancel(order_id):
    order = get_order_for_user(order_id, g.current_user)
    cancel_order(order, g.current_user, g.validated_data.reason)
    return success_response('Order cancelled successfully', {'order': order.to_dict(include_history=True)})
