# services/orders.py
"""
Order placement and the order status lifecycle.

A checkout is split into one order per seller. Stock is decremented with
a conditional UPDATE so two buyers can never take the same last unit;
cancelled and rejected orders put their quantities back.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import update

from core.database_models import (
    db, CartItem, NotificationType, Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentMethod, PaymentStatus, Product, UserRole
)
from core.errors import ConflictError, NotFoundError, PermissionDeniedError
from core.utils import generate_order_number, money_to_float, to_money
from api.realtime import send_new_order_notification, send_order_update
from services.notifications import create_notification
from tasks.email_sender import send_order_status_email

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[OrderStatus, tuple] = {
    OrderStatus.PENDING_APPROVAL: (OrderStatus.PROCESSING, OrderStatus.REJECTED, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.COMPLETED,),
}

RESTOCKING_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REJECTED)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS.get(current, ())


def scoped_order_query(user):
    """Orders visible to ``user``: buyers see purchases, sellers see sales, admins see all"""
    query = Order.query
    if user.role == UserRole.BUYER:
        query = query.filter(Order.buyer_id == user.id)
    elif user.role == UserRole.SELLER:
        query = query.filter(Order.seller_id == user.id)
    return query


def get_order_for_user(order_id: str, user) -> Order:
    order = scoped_order_query(user).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError('Order')
    return order


def _merge_lines(items) -> "OrderedDict[str, int]":
    merged: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


def _reserve_stock(product: Product, quantity: int):
    result = db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f'Insufficient stock for "{product.title}"',
            code='INSUFFICIENT_STOCK',
            details={'productId': product.id, 'requested': quantity},
        )


def _restock(order: Order):
    for item in order.items:
        db.session.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock=Product.stock + item.quantity)
        )


def _order_summary(order: Order) -> Dict:
    return {
        'orderId': order.id,
        'orderNumber': order.order_number,
        'status': order.status.value,
        'paymentStatus': order.payment_status.value,
        'total': money_to_float(order.total),
    }


def place_orders(buyer, data) -> List[Order]:
    """
    Create one order per seller from a validated checkout payload

    Args:
        buyer: Authenticated buyer
        data: ``OrderCreateSchema`` instance

    Returns:
        The created orders
    """
    lines = _merge_lines(data.items)
    products = {
        product.id: product
        for product in Product.query.filter(Product.id.in_(list(lines))).all()
    }

    for product_id, quantity in lines.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError('Product')
        if not product.is_active:
            raise ConflictError(f'Product "{product.title}" is not available',
                                code='PRODUCT_UNAVAILABLE', details={'productId': product.id})
        if product.stock < quantity:
            raise ConflictError(
                f'Insufficient stock for "{product.title}"',
                code='INSUFFICIENT_STOCK',
                details={'productId': product.id, 'available': product.stock, 'requested': quantity},
            )

    by_seller: "OrderedDict[str, List]" = OrderedDict()
    for product_id, quantity in lines.items():
        product = products[product_id]
        by_seller.setdefault(product.seller_id, []).append((product, quantity))

    shipping_cost = to_money(current_app.config.get('SHIPPING_COST', 0))
    shipping_address = data.shipping_address.model_dump(by_alias=True)
    billing_address = data.billing_address.model_dump(by_alias=True) if data.billing_address else None

    orders = []
    try:
        for seller_id, seller_lines in by_seller.items():
            order = Order(
                order_number=generate_order_number(),
                status=OrderStatus.PENDING_APPROVAL,
                payment_method=data.payment_method,
                payment_status=PaymentStatus.PENDING,
                shipping_address=shipping_address,
                billing_address=billing_address,
                notes=data.notes,
                buyer_id=buyer.id,
                seller_id=seller_id,
                subtotal=to_money(0),
                shipping_cost=shipping_cost,
                total=to_money(0),
            )
            subtotal = to_money(0)
            for product, quantity in seller_lines:
                unit_price = to_money(product.effective_price)
                _reserve_stock(product, quantity)
                order.items.append(OrderItem(
                    product_id=product.id,
                    product_title=product.title,
                    quantity=quantity,
                    price=unit_price,
                ))
                subtotal += unit_price * quantity

            order.subtotal = to_money(subtotal)
            order.total = to_money(subtotal + shipping_cost)
            order.status_history.append(OrderStatusHistory(
                status=OrderStatus.PENDING_APPROVAL,
                notes='Order placed',
                changed_by_id=buyer.id,
            ))
            db.session.add(order)
            orders.append(order)

        CartItem.query.filter(
            CartItem.user_id == buyer.id, CartItem.product_id.in_(list(lines))
        ).delete(synchronize_session=False)
        db.session.commit()
    except ConflictError:
        db.session.rollback()
        raise

    for order in orders:
        logger.info(f"Order {order.order_number} placed by {buyer.id} for seller {order.seller_id}")
        create_notification(
            order.seller_id,
            'New Order Received',
            f"You have received a new order #{order.order_number} from {buyer.name}",
            NotificationType.ORDER_STATUS,
            data={**_order_summary(order), 'buyerName': buyer.name, 'itemCount': len(order.items)},
        )
        send_new_order_notification(order.seller_id, {
            **_order_summary(order),
            'buyerName': buyer.name,
        })

    return orders


def _apply_transition(order: Order, new_status: OrderStatus, actor, notes: Optional[str]):
    if not can_transition(order.status, new_status):
        raise ConflictError(
            f'Cannot change order status from {order.status.value} to {new_status.value}',
            code='INVALID_STATUS_TRANSITION',
        )

    if new_status in RESTOCKING_STATUSES:
        _restock(order)
        if order.payment_status == PaymentStatus.PENDING:
            order.payment_status = PaymentStatus.CANCELLED
    elif new_status == OrderStatus.COMPLETED and order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
        order.payment_status = PaymentStatus.COMPLETED

    previous = order.status
    order.status = new_status
    order.status_history.append(OrderStatusHistory(
        status=new_status,
        notes=notes,
        changed_by_id=actor.id,
    ))
    db.session.commit()
    logger.info(f"Order {order.order_number} moved from {previous.value} to {new_status.value} by {actor.id}")


def update_order_status(order: Order, new_status: OrderStatus, actor, notes: Optional[str] = None) -> Order:
    """Seller/admin status change; the buyer is notified and emailed"""
    if actor.role == UserRole.SELLER and order.seller_id != actor.id:
        raise PermissionDeniedError('You can only update your own orders')

    _apply_transition(order, new_status, actor, notes)

    status_text = new_status.value.replace('_', ' ').lower()
    create_notification(
        order.buyer_id,
        'Order Status Updated',
        f"Your order #{order.order_number} status has been updated to {status_text}",
        NotificationType.ORDER_STATUS,
        data={**_order_summary(order), 'notes': notes},
    )
    send_order_update(order.buyer_id, order.seller_id, {**_order_summary(order), 'notes': notes})
    send_order_status_email(order)
    return order


def cancel_order(order: Order, buyer, reason: Optional[str] = None) -> Order:
    """Buyer cancellation, allowed only while the order awaits approval"""
    if order.buyer_id != buyer.id:
        raise NotFoundError('Order')
    if order.status != OrderStatus.PENDING_APPROVAL:
        raise ConflictError('Only orders awaiting approval can be cancelled',
                            code='INVALID_STATUS_TRANSITION')

    _apply_transition(order, OrderStatus.CANCELLED, buyer, reason or 'Cancelled by buyer')

    create_notification(
        order.seller_id,
        'Order Cancelled',
        f"Order #{order.order_number} was cancelled by the buyer",
        NotificationType.ORDER_STATUS,
        data={**_order_summary(order), 'reason': reason},
    )
    send_order_update(order.buyer_id, order.seller_id, _order_summary(order))
    return order
