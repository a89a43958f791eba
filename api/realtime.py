# api/realtime.py
"""
Real-time channel: authenticated Socket.IO connections grouped into
per-user and per-role rooms, plus the helpers the HTTP side uses to
broadcast order, payment and notification events
"""

import logging
from typing import Any, Dict, Optional

from flask import request
from flask_socketio import SocketIO, emit, join_room, leave_room

from core import permissions
from core.database_models import db, Order, OrderStatus, User, UserRole
from core.errors import ApiError, AuthenticationError
from core.tokens import decode_access_token
from core.utils import money_to_float, utcnow

logger = logging.getLogger(__name__)

socketio = SocketIO()

# sid -> identity of the authenticated user
connected_users: Dict[str, Dict[str, Any]] = {}

ROLE_ROOMS = {
    UserRole.ADMIN.value: 'admins',
    UserRole.SELLER.value: 'sellers',
    UserRole.BUYER.value: 'buyers',
}
RESERVED_ROOM_PREFIXES = ('user_', 'seller_')


def init_socketio(app):
    """Bind the Socket.IO server to the application"""
    socketio.init_app(
        app,
        cors_allowed_origins=app.config.get('CORS_ORIGINS') or '*',
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
        message_queue=app.config.get('SOCKETIO_MESSAGE_QUEUE'),
        logger=False,
        engineio_logger=False,
    )
    return socketio


def rooms_for(identity: Dict[str, Any]):
    """Rooms a user joins on connect"""
    rooms = [f"user_{identity['id']}"]
    role_room = ROLE_ROOMS.get(identity['role'])
    if role_room:
        rooms.append(role_room)
    if identity['role'] == UserRole.SELLER.value and identity.get('sellerRole'):
        rooms.append(f"seller_{identity['sellerRole'].lower()}")
    return rooms


def _token_from_handshake(auth) -> Optional[str]:
    if isinstance(auth, dict) and auth.get('token'):
        return auth['token']
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):]
    return None


def _authenticate_socket(auth) -> Dict[str, Any]:
    token = _token_from_handshake(auth)
    if not token:
        raise ConnectionRefusedError('Authentication error: No token provided')

    try:
        claims = decode_access_token(token)
    except AuthenticationError as e:
        raise ConnectionRefusedError(f'Authentication error: {e.message}')

    user = db.session.get(User, claims.get('sub'))
    if user is None:
        raise ConnectionRefusedError('Authentication error: User not found')
    if not user.is_active:
        raise ConnectionRefusedError('Authentication error: Account is suspended or banned')
    return user.to_identity()


def current_identity() -> Optional[Dict[str, Any]]:
    return connected_users.get(request.sid)


@socketio.on('connect')
def handle_connect(auth=None):
    """Handle client connection"""
    identity = _authenticate_socket(auth)
    connected_users[request.sid] = identity
    for room in rooms_for(identity):
        join_room(room)
    logger.info(f"User connected: {identity['name']} ({identity['role']}) - sid {request.sid}")
    emit('connected', {'message': 'Successfully connected', 'user': identity})


@socketio.on('disconnect')
def handle_disconnect(*args):
    """Handle client disconnection"""
    identity = connected_users.pop(request.sid, None)
    if identity:
        logger.info(f"User disconnected: {identity['name']} ({identity['role']})")


@socketio.on('join-room')
def handle_join_room(room):
    identity = current_identity()
    if not isinstance(room, str) or not room:
        emit('error', {'message': 'Room name is required'})
        return
    if room.startswith(RESERVED_ROOM_PREFIXES) or room in ROLE_ROOMS.values():
        if room not in rooms_for(identity):
            emit('error', {'message': 'Unauthorized'})
            return
    join_room(room)
    logger.debug(f"User {identity['name']} joined room: {room}")


@socketio.on('leave-room')
def handle_leave_room(room):
    identity = current_identity()
    if isinstance(room, str) and room:
        leave_room(room)
        logger.debug(f"User {identity['name']} left room: {room}")


def _load_order(data) -> Optional[Order]:
    order_id = data.get('orderId') if isinstance(data, dict) else None
    order = db.session.get(Order, order_id) if order_id else None
    if order is None:
        emit('error', {'message': 'Order not found'})
    return order


@socketio.on('order-status-update')
def handle_order_status_update(data):
    """Sellers and admins change an order's status over the socket"""
    from services.orders import update_order_status

    identity = current_identity()
    actor = db.session.get(User, identity['id'])
    if actor is None or not actor.is_active or not permissions.can_manage_orders(actor):
        emit('error', {'message': 'Unauthorized'})
        return

    order = _load_order(data)
    if order is None:
        return

    try:
        status = OrderStatus(data.get('status'))
    except ValueError:
        emit('error', {'message': 'Invalid order status'})
        return

    try:
        update_order_status(order, status, actor, notes=data.get('notes'))
    except ApiError as e:
        db.session.rollback()
        emit('error', {'message': e.message})
        return

    emit('order-status-updated', {'success': True, 'orderId': order.id, 'status': status.value})


@socketio.on('new-order')
def handle_new_order(data):
    """Buyers nudge the seller about an order they placed"""
    identity = current_identity()
    if identity['role'] != UserRole.BUYER.value:
        emit('error', {'message': 'Unauthorized'})
        return

    order = _load_order(data)
    if order is None:
        return
    if order.buyer_id != identity['id']:
        emit('error', {'message': 'Unauthorized'})
        return

    send_notification_to_user(order.seller_id, {
        'title': 'New Order Received',
        'message': f"You have received a new order #{order.order_number} from {order.buyer.name}",
        'type': 'order_status',
        'userId': order.seller_id,
        'data': {
            'orderId': order.id,
            'orderNumber': order.order_number,
            'buyerName': order.buyer.name,
            'total': money_to_float(order.total),
            'itemCount': len(order.items),
        },
        'createdAt': utcnow().isoformat(),
    })
    socketio.emit('new-order', {
        'orderId': order.id,
        'orderNumber': order.order_number,
        'buyerName': order.buyer.name,
        'total': money_to_float(order.total),
    }, to='sellers')


@socketio.on('payment-status-update')
def handle_payment_status_update(data):
    """Relay a payment status change to both parties of the order"""
    identity = current_identity()
    order = _load_order(data)
    if order is None:
        return
    if identity['role'] != UserRole.ADMIN.value and identity['id'] not in (order.buyer_id, order.seller_id):
        emit('error', {'message': 'Unauthorized'})
        return

    status = str(data.get('status') or order.payment_status.value)
    send_notification_to_user(order.buyer_id, {
        'title': 'Payment Status Updated',
        'message': f"Payment for order #{order.order_number} has been {status.lower()}",
        'type': 'payment',
        'userId': order.buyer_id,
        'data': {
            'orderId': order.id,
            'orderNumber': order.order_number,
            'paymentStatus': status,
            'transactionId': data.get('transactionId'),
        },
        'createdAt': utcnow().isoformat(),
    })
    socketio.emit('payment-updated', {
        'orderId': order.id,
        'status': status,
        'transactionId': data.get('transactionId'),
    }, to=f'user_{order.seller_id}')


@socketio.on('typing')
def handle_typing(data):
    identity = current_identity()
    if isinstance(data, dict) and data.get('room'):
        emit('user-typing', {'userName': data.get('userName') or identity['name'], 'userId': identity['id']},
             to=data['room'], include_self=False)


@socketio.on('stop-typing')
def handle_stop_typing(data):
    identity = current_identity()
    if isinstance(data, dict) and data.get('room'):
        emit('user-stop-typing', {'userName': data.get('userName') or identity['name'], 'userId': identity['id']},
             to=data['room'], include_self=False)


# Helper functions used by the HTTP controllers and services

def send_notification_to_user(user_id: str, notification: Dict[str, Any]):
    socketio.emit('notification', notification, to=f'user_{user_id}')


def send_order_update(buyer_id: str, seller_id: str, order_data: Dict[str, Any]):
    socketio.emit('order-updated', order_data, to=f'user_{buyer_id}')
    socketio.emit('order-updated', order_data, to=f'user_{seller_id}')


def send_new_order_notification(seller_id: str, order_data: Dict[str, Any]):
    socketio.emit('new-order', order_data, to=f'user_{seller_id}')
    socketio.emit('new-order', order_data, to='sellers')


def send_payment_update(buyer_id: str, seller_id: str, payment_data: Dict[str, Any]):
    socketio.emit('payment-updated', payment_data, to=f'user_{buyer_id}')
    socketio.emit('payment-updated', payment_data, to=f'user_{seller_id}')


def broadcast_to_role(role: str, event: str, data: Dict[str, Any]) -> bool:
    room = ROLE_ROOMS.get(str(role).upper())
    if room is None:
        logger.warning(f"Broadcast to unknown role {role} dropped")
        return False
    socketio.emit(event, data, to=room)
    return True


def broadcast_system_announcement(announcement: Dict[str, Any], roles=None) -> Dict[str, Any]:
    """Emit an announcement to everyone, or only to the given roles' rooms"""
    payload = {
        'id': f"announcement_{int(utcnow().timestamp() * 1000)}",
        **announcement,
        'createdAt': utcnow().isoformat(),
    }
    if roles:
        for role in roles:
            broadcast_to_role(getattr(role, 'value', role), 'announcement', payload)
    else:
        socketio.emit('announcement', payload)
    logger.info(f"System announcement broadcast: {announcement.get('title')}")
    return payload


def connected_user_count() -> int:
    return len(connected_users)
