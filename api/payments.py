# api/payments.py
"""
bKash payment flow: create a checkout for an order, handle the gateway
callback and report payment status
"""

import logging
from urllib.parse import urlencode

from flask import Blueprint, current_app, g, redirect, request

from core.database_models import (
    db, NotificationType, Order, OrderStatus, PaymentMethod, PaymentStatus
)
from core.errors import ConflictError, PaymentGatewayError
from core.responses import success_response
from core.utils import money_to_float
from core.validation import BkashCreateSchema, validate_request
from middleware.security import authenticate, buyer_only
from api.realtime import send_payment_update
from services.notifications import create_notification
from services.orders import get_order_for_user
from services.payment_gateway import get_payment_client

payments_bp = Blueprint('payments', __name__)
logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED)
CLOSED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REJECTED)


def _payment_payload(order: Order) -> dict:
    return {
        'orderId': order.id,
        'orderNumber': order.order_number,
        'paymentMethod': order.payment_method.value,
        'paymentStatus': order.payment_status.value,
        'paymentId': order.payment_id,
        'transactionId': order.transaction_id,
        'amount': money_to_float(order.total),
    }


def _client_redirect(result: str, **params):
    url = f"{current_app.config['CLIENT_URL']}/payment/{result}"
    if params:
        url = f'{url}?{urlencode(params)}'
    return redirect(url)


def _announce_payment(order: Order):
    status = order.payment_status.value
    payload = _payment_payload(order)
    create_notification(
        order.buyer_id,
        'Payment Status Updated',
        f"Payment for order #{order.order_number} has been {status.lower()}",
        NotificationType.PAYMENT,
        data=payload,
    )
    if order.payment_status == PaymentStatus.COMPLETED:
        create_notification(
            order.seller_id,
            'Payment Received',
            f"Payment for order #{order.order_number} was completed",
            NotificationType.PAYMENT,
            data=payload,
        )
    send_payment_update(order.buyer_id, order.seller_id, payload)


@payments_bp.route('/bkash/create', methods=['POST'])
@authenticate
@buyer_only
@validate_request(BkashCreateSchema)
def create_bkash_payment():
    """Start a bKash checkout for one of the caller's orders"""
    order = get_order_for_user(g.validated_data.order_id, g.current_user)

    if order.payment_method != PaymentMethod.BKASH:
        raise ConflictError('Order is not a bKash order', code='INVALID_PAYMENT_METHOD')
    if order.status in CLOSED_ORDER_STATUSES:
        raise ConflictError('Order is closed', code='ORDER_CLOSED')
    if order.payment_status not in PAYABLE_STATUSES:
        raise ConflictError('Order has already been paid', code='PAYMENT_NOT_PENDING')

    result = get_payment_client().create_payment(
        order.total, order.order_number, g.current_user.phone or g.current_user.id
    )
    payment_id = result.get('paymentID')
    if not payment_id or not result.get('bkashURL'):
        raise PaymentGatewayError('Payment gateway did not return a checkout URL')

    order.payment_id = payment_id
    order.payment_status = PaymentStatus.PENDING
    db.session.commit()

    logger.info(f"bKash payment {payment_id} created for order {order.order_number}")
    return success_response('Payment created successfully', {
        'paymentId': payment_id,
        'bkashURL': result['bkashURL'],
        'orderId': order.id,
    }, status=201)


@payments_bp.route('/bkash/callback', methods=['GET'])
def bkash_callback():
    """Gateway redirect target; executes successful payments and sends the browser back to the client"""
    payment_id = request.args.get('paymentID')
    status = (request.args.get('status') or '').lower()

    order = Order.query.filter_by(payment_id=payment_id).first() if payment_id else None
    if order is None:
        logger.warning(f"bKash callback for unknown payment {payment_id}")
        return _client_redirect('failed', reason='unknown_payment')

    if order.payment_status == PaymentStatus.COMPLETED:
        return _client_redirect('success', orderId=order.id)

    if order.status in CLOSED_ORDER_STATUSES or order.payment_status == PaymentStatus.CANCELLED:
        logger.warning(f"bKash callback for closed order {order.order_number}; payment {payment_id} not executed")
        return _client_redirect('failed', orderId=order.id, reason='order_closed')

    if status == 'cancel':
        logger.info(f"bKash payment {payment_id} cancelled by payer")
        return _client_redirect('cancelled', orderId=order.id)

    if status != 'success':
        order.payment_status = PaymentStatus.FAILED
        db.session.commit()
        _announce_payment(order)
        return _client_redirect('failed', orderId=order.id)

    try:
        result = get_payment_client().execute_payment(payment_id)
    except PaymentGatewayError as e:
        logger.error(f"bKash execute failed for order {order.order_number}: {e.message}")
        result = {}

    if result.get('transactionStatus') == 'Completed':
        order.payment_status = PaymentStatus.COMPLETED
        order.transaction_id = result.get('trxID')
        outcome = 'success'
    else:
        order.payment_status = PaymentStatus.FAILED
        outcome = 'failed'
    db.session.commit()

    logger.info(f"bKash payment {payment_id} for order {order.order_number}: {order.payment_status.value}")
    _announce_payment(order)
    return _client_redirect(outcome, orderId=order.id)


@payments_bp.route('/<order_id>/status', methods=['GET'])
@authenticate
def payment_status(order_id):
    """Payment state of an order; pending bKash payments are re-checked with the gateway"""
    order = get_order_for_user(order_id, g.current_user)

    if (order.payment_method == PaymentMethod.BKASH and order.payment_id
            and order.payment_status == PaymentStatus.PENDING):
        result = get_payment_client().query_payment(order.payment_id)
        if result.get('transactionStatus') == 'Completed':
            order.payment_status = PaymentStatus.COMPLETED
            order.transaction_id = result.get('trxID')
            db.session.commit()
            _announce_payment(order)

    return success_response('Payment status retrieved successfully', {'payment': _payment_payload(order)})
