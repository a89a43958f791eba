import enum
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Text, Boolean, ForeignKey, Numeric, Enum,
    UniqueConstraint
)
from sqlalchemy.orm import relationship

from core.utils import isoformat, money_to_float, utcnow

db = SQLAlchemy()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    BUYER = 'BUYER'
    SELLER = 'SELLER'
    ADMIN = 'ADMIN'


class SellerRole(str, enum.Enum):
    MANAGER = 'MANAGER'
    ACCOUNTANT = 'ACCOUNTANT'
    INVENTORY_STAFF = 'INVENTORY_STAFF'


class UserStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'
    BANNED = 'BANNED'


class OrderStatus(str, enum.Enum):
    PENDING_APPROVAL = 'PENDING_APPROVAL'
    PROCESSING = 'PROCESSING'
    OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    REJECTED = 'REJECTED'


class PaymentMethod(str, enum.Enum):
    CASH_ON_DELIVERY = 'CASH_ON_DELIVERY'
    BKASH = 'BKASH'


class PaymentStatus(str, enum.Enum):
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'


class NotificationType(str, enum.Enum):
    ORDER_STATUS = 'order_status'
    PAYMENT = 'payment'
    GENERAL = 'general'
    PROMOTION = 'promotion'


def _enum_value(value):
    return value.value if isinstance(value, enum.Enum) else value


class User(db.Model):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    password_salt = Column(String(64), nullable=False)
    name = Column(String(100), nullable=False)
    phone = Column(String(20))
    avatar = Column(String(500))
    role = Column(Enum(UserRole), nullable=False, default=UserRole.BUYER)
    seller_role = Column(Enum(SellerRole))
    status = Column(Enum(UserStatus), nullable=False, default=UserStatus.ACTIVE)
    business_name = Column(String(200))
    business_phone = Column(String(20))
    business_address = Column(String(500))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    products = relationship("Product", back_populates="seller")
    cart_items = relationship("CartItem", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def to_dict(self, include_business: bool = True):
        data = {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'phone': self.phone,
            'avatar': self.avatar,
            'role': _enum_value(self.role),
            'sellerRole': _enum_value(self.seller_role),
            'status': _enum_value(self.status),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if include_business:
            data.update({
                'businessName': self.business_name,
                'businessPhone': self.business_phone,
                'businessAddress': self.business_address,
            })
        return data

    def to_identity(self):
        """Compact form attached to requests and socket connections"""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': _enum_value(self.role),
            'sellerRole': _enum_value(self.seller_role),
            'status': _enum_value(self.status),
        }

    def to_public_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'businessName': self.business_name,
            'avatar': self.avatar,
        }


class RefreshToken(db.Model):
    __tablename__ = 'refresh_tokens'

    id = Column(String(36), primary_key=True, default=_uuid)
    token = Column(String(1024), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="refresh_tokens")

    @property
    def is_expired(self) -> bool:
        return self.expires_at < utcnow()


class Category(db.Model):
    __tablename__ = 'categories'

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(50), nullable=False, unique=True)
    slug = Column(String(80), nullable=False, unique=True, index=True)
    description = Column(Text)
    image = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="category")

    def to_summary(self):
        return {'id': self.id, 'name': self.name, 'slug': self.slug}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'image': self.image,
            'isActive': self.is_active,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class Product(db.Model):
    __tablename__ = 'products'

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2))
    discount_end_date = Column(DateTime)
    stock = Column(Integer, nullable=False, default=0)
    sku = Column(String(64), nullable=False, unique=True)
    images = Column(JSON, nullable=False, default=list)
    video = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    category_id = Column(String(36), ForeignKey('categories.id'), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    category = relationship("Category", back_populates="products")
    seller = relationship("User", back_populates="products")
    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan",
                           order_by="desc(Review.created_at)")
    cart_items = relationship("CartItem", back_populates="product", cascade="all, delete-orphan")
    order_items = relationship("OrderItem", back_populates="product", passive_deletes='all')

    @property
    def discount_active(self) -> bool:
        if self.discount_price is None:
            return False
        return self.discount_end_date is None or self.discount_end_date > utcnow()

    @property
    def effective_price(self):
        return self.discount_price if self.discount_active else self.price

    def to_dict(self, include_seller: bool = True):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'price': money_to_float(self.price),
            'discountPrice': money_to_float(self.discount_price),
            'discountEndDate': isoformat(self.discount_end_date),
            'effectivePrice': money_to_float(self.effective_price),
            'stock': self.stock,
            'sku': self.sku,
            'images': list(self.images or []),
            'video': self.video,
            'isActive': self.is_active,
            'categoryId': self.category_id,
            'sellerId': self.seller_id,
            'category': self.category.to_summary() if self.category else None,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if include_seller and self.seller:
            data['seller'] = self.seller.to_public_dict()
        return data


class Order(db.Model):
    __tablename__ = 'orders'

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(40), nullable=False, unique=True, index=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING_APPROVAL, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_id = Column(String(100), index=True)  # gateway payment reference
    transaction_id = Column(String(100))
    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON)
    notes = Column(Text)
    buyer_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship("OrderStatusHistory", back_populates="order",
                                  cascade="all, delete-orphan",
                                  order_by="OrderStatusHistory.created_at")

    def to_dict(self, include_history: bool = False):
        data = {
            'id': self.id,
            'orderNumber': self.order_number,
            'status': _enum_value(self.status),
            'paymentMethod': _enum_value(self.payment_method),
            'paymentStatus': _enum_value(self.payment_status),
            'paymentId': self.payment_id,
            'transactionId': self.transaction_id,
            'subtotal': money_to_float(self.subtotal),
            'shippingCost': money_to_float(self.shipping_cost),
            'total': money_to_float(self.total),
            'shippingAddress': self.shipping_address,
            'billingAddress': self.billing_address,
            'notes': self.notes,
            'buyerId': self.buyer_id,
            'sellerId': self.seller_id,
            'buyer': {'id': self.buyer.id, 'name': self.buyer.name} if self.buyer else None,
            'seller': self.seller.to_public_dict() if self.seller else None,
            'items': [item.to_dict() for item in self.items],
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if include_history:
            data['statusHistory'] = [entry.to_dict() for entry in self.status_history]
        return data


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False, index=True)
    product_title = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)  # unit price at purchase time

    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'title': self.product_title,
            'quantity': self.quantity,
            'price': money_to_float(self.price),
            'lineTotal': money_to_float(self.price * self.quantity),
            'image': (self.product.images or [None])[0] if self.product else None,
        }


class OrderStatusHistory(db.Model):
    """Append-only record of every status an order has been in"""
    __tablename__ = 'order_status_history'

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False, index=True)
    status = Column(Enum(OrderStatus), nullable=False)
    notes = Column(Text)
    changed_by_id = Column(String(36), ForeignKey('users.id'))
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="status_history")
    changed_by = relationship("User")

    def to_dict(self):
        return {
            'id': self.id,
            'status': _enum_value(self.status),
            'notes': self.notes,
            'changedBy': self.changed_by_id,
            'createdAt': isoformat(self.created_at),
        }


class Review(db.Model):
    __tablename__ = 'reviews'
    __table_args__ = (UniqueConstraint('product_id', 'user_id', name='uq_review_product_user'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    images = Column(JSON, default=list)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", back_populates="reviews")
    user = relationship("User", back_populates="reviews")

    def to_dict(self):
        return {
            'id': self.id,
            'rating': self.rating,
            'comment': self.comment,
            'images': list(self.images or []),
            'productId': self.product_id,
            'user': {'id': self.user.id, 'name': self.user.name, 'avatar': self.user.avatar}
            if self.user else None,
            'createdAt': isoformat(self.created_at),
        }


class CartItem(db.Model):
    __tablename__ = 'cart_items'
    __table_args__ = (UniqueConstraint('user_id', 'product_id', name='uq_cart_user_product'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="cart_items")
    product = relationship("Product", back_populates="cart_items")

    def to_dict(self):
        product = self.product
        price = product.effective_price
        return {
            'id': self.id,
            'productId': self.product_id,
            'quantity': self.quantity,
            'price': money_to_float(price),
            'lineTotal': money_to_float(price * self.quantity),
            'product': {
                'id': product.id,
                'title': product.title,
                'images': list(product.images or []),
                'stock': product.stock,
                'isActive': product.is_active,
            },
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default=NotificationType.GENERAL.value)
    data = Column(JSON)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'data': self.data,
            'isRead': self.is_read,
            'createdAt': isoformat(self.created_at),
        }
