# core/validation.py
"""
Request schemas and the ``validate_request`` decorator.

Payloads use camelCase keys on the wire; schema attributes are snake_case.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Annotated, Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from flask import g, request
from pydantic import (
    AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, StringConstraints,
    field_validator, model_validator
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from core.database_models import (
    OrderStatus, PaymentMethod, SellerRole, UserRole, UserStatus
)
from core.errors import ValidationError
from core.utils import to_naive_utc, utcnow

PHONE_PATTERN = re.compile(r'^(\+8801|8801|01)[3-9]\d{8}$')
PASSWORD_SPECIALS = re.compile(r'[!@#$%^&*()_+\-=\[\]{};\':"\\|,.<>?]')
MAX_PRICE = Decimal('9999999.99')


def _normalize_phone(value):
    if not isinstance(value, str):
        return value
    phone = re.sub(r'\s', '', value)
    if not PHONE_PATTERN.match(phone):
        raise ValueError('Invalid Bangladesh phone number format')
    return phone


def _check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError('Password must be at least 8 characters')
    if not re.search(r'[A-Z]', value):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', value):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'\d', value):
        raise ValueError('Password must contain at least one number')
    if not PASSWORD_SPECIALS.search(value):
        raise ValueError('Password must contain at least one special character')
    return value


def _check_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError('Invalid URL')
    return value


def _check_uuid(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError:
        raise ValueError('Invalid ID')
    return value


Phone = Annotated[str, BeforeValidator(_normalize_phone)]
Password = Annotated[str, AfterValidator(_check_password_strength)]
Email = Annotated[EmailStr, AfterValidator(str.lower)]
Url = Annotated[str, AfterValidator(_check_url)]
EntityId = Annotated[str, AfterValidator(_check_uuid)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Timestamp = Annotated[datetime, AfterValidator(to_naive_utc)]
Price = Annotated[Decimal, Field(gt=0, le=MAX_PRICE)]


class RequestSchema(BaseModel):
    """Base for all request schemas"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        str_strip_whitespace=True,
    )

    def changes(self) -> Dict[str, Any]:
        """Fields the client actually sent"""
        return self.model_dump(exclude_unset=True)


class PaginationQuery(RequestSchema):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    sort: Optional[str] = None
    order: Literal['asc', 'desc'] = 'desc'


# Authentication schemas

class RegisterSchema(RequestSchema):
    email: Email
    password: Password
    name: Name
    phone: Optional[Phone] = None
    role: UserRole = UserRole.BUYER
    seller_role: Optional[SellerRole] = None
    business_name: Optional[str] = Field(None, min_length=1, max_length=200)
    business_phone: Optional[Phone] = None
    business_address: Optional[str] = Field(None, min_length=1, max_length=500)

    @field_validator('role')
    @classmethod
    def public_roles_only(cls, value: UserRole) -> UserRole:
        if value not in (UserRole.BUYER, UserRole.SELLER):
            raise ValueError('Role must be BUYER or SELLER')
        return value

    @model_validator(mode='after')
    def seller_details_required(self):
        if self.role == UserRole.SELLER and not all(
            (self.seller_role, self.business_name, self.business_phone, self.business_address)
        ):
            raise ValidationError(
                'Seller role, business name, phone, and address are required for seller registration',
                field='sellerRole',
            )
        return self


class LoginSchema(RequestSchema):
    email: Email
    password: str = Field(min_length=1)


class RefreshTokenSchema(RequestSchema):
    refresh_token: Optional[str] = None


class ChangePasswordSchema(RequestSchema):
    current_password: str = Field(min_length=1)
    new_password: Password
    confirm_password: str = Field(min_length=1)

    @model_validator(mode='after')
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValidationError('Passwords do not match', field='confirmPassword')
        return self


class ForgotPasswordSchema(RequestSchema):
    email: Email


class ResetPasswordSchema(RequestSchema):
    token: str = Field(min_length=1)
    password: Password


# User schemas

class UpdateProfileSchema(RequestSchema):
    name: Optional[Name] = None
    phone: Optional[Phone] = None
    business_name: Optional[str] = Field(None, min_length=1, max_length=200)
    business_phone: Optional[Phone] = None
    business_address: Optional[str] = Field(None, min_length=1, max_length=500)
    avatar: Optional[Url] = None

    @field_validator('name', mode='before')
    @classmethod
    def name_not_null(cls, value):
        if value is None:
            raise ValueError('Name cannot be empty')
        return value


class UserFilterSchema(PaginationQuery):
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    search: Optional[str] = None


class UserStatusUpdateSchema(RequestSchema):
    status: UserStatus
    reason: Optional[str] = Field(None, max_length=500)


class NotificationFilterSchema(PaginationQuery):
    unread_only: bool = False


# Category schemas

class CategoryCreateSchema(RequestSchema):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[Url] = None
    is_active: bool = True


class CategoryUpdateSchema(RequestSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[Url] = None
    is_active: Optional[bool] = None


class CategoryFilterSchema(RequestSchema):
    include_inactive: bool = False


# Product schemas

def _future(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value <= utcnow():
        raise ValueError('Discount end date must be in the future')
    return value


class ProductCreateSchema(RequestSchema):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    price: Price
    discount_price: Optional[Price] = None
    discount_end_date: Optional[Annotated[Timestamp, AfterValidator(_future)]] = None
    stock: int = Field(ge=0, le=999999)
    category_id: EntityId
    images: List[Url] = Field(min_length=1, max_length=10)
    video: Optional[Url] = None
    is_active: bool = True

    @model_validator(mode='after')
    def discount_below_price(self):
        if self.discount_price is not None and self.discount_price >= self.price:
            raise ValidationError('Discount price must be less than regular price',
                                  field='discountPrice')
        return self


class ProductUpdateSchema(RequestSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    price: Optional[Price] = None
    discount_price: Optional[Price] = None
    discount_end_date: Optional[Annotated[Timestamp, AfterValidator(_future)]] = None
    stock: Optional[int] = Field(None, ge=0, le=999999)
    category_id: Optional[EntityId] = None
    images: Optional[List[Url]] = Field(None, min_length=1, max_length=10)
    video: Optional[Url] = None
    is_active: Optional[bool] = None


PRODUCT_SORT_FIELDS = {
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
    'price': 'price',
    'title': 'title',
    'stock': 'stock',
}


class ProductFilterSchema(PaginationQuery):
    sort: Literal['createdAt', 'updatedAt', 'price', 'title', 'stock'] = 'createdAt'
    category: Optional[str] = None
    search: Optional[str] = None
    min_price: Optional[Decimal] = Field(None, gt=0)
    max_price: Optional[Decimal] = Field(None, gt=0)
    seller_id: Optional[EntityId] = None
    in_stock: Optional[bool] = None
    is_active: bool = True


class SearchSchema(RequestSchema):
    q: str = Field(min_length=1)
    category: Optional[str] = None
    min_price: Optional[Decimal] = Field(None, gt=0)
    max_price: Optional[Decimal] = Field(None, gt=0)
    rating: Optional[int] = Field(None, ge=1, le=5)
    sort_by: Literal['price_asc', 'price_desc', 'rating', 'newest', 'popular'] = 'newest'
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


# Order schemas

class AddressSchema(RequestSchema):
    name: Name
    phone: Phone
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)


class OrderItemSchema(RequestSchema):
    product_id: EntityId
    quantity: int = Field(ge=1, le=999)


class OrderCreateSchema(RequestSchema):
    items: List[OrderItemSchema] = Field(min_length=1)
    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = None
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=1000)


class OrderStatusUpdateSchema(RequestSchema):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=1000)


class OrderCancelSchema(RequestSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class OrderFilterSchema(PaginationQuery):
    status: Optional[OrderStatus] = None
    payment_method: Optional[PaymentMethod] = None
    buyer_id: Optional[EntityId] = None
    seller_id: Optional[EntityId] = None
    date_from: Optional[Timestamp] = None
    date_to: Optional[Timestamp] = None


# Cart schemas

class CartAddSchema(RequestSchema):
    product_id: EntityId
    quantity: int = Field(1, ge=1, le=999)


class CartUpdateSchema(RequestSchema):
    quantity: int = Field(ge=1, le=999)


# Review schemas

class ReviewCreateSchema(RequestSchema):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    images: List[Url] = Field(default_factory=list, max_length=5)


class ReviewFilterSchema(PaginationQuery):
    rating: Optional[int] = Field(None, ge=1, le=5)


# Upload, payment, analytics and announcement schemas

class UploadTypeSchema(RequestSchema):
    type: Literal['image', 'video'] = 'image'


class BkashCreateSchema(RequestSchema):
    order_id: EntityId


class AnalyticsFilterSchema(RequestSchema):
    date_from: Optional[Timestamp] = None
    date_to: Optional[Timestamp] = None
    seller_id: Optional[EntityId] = None


class AnnouncementSchema(RequestSchema):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    roles: List[UserRole] = Field(default_factory=list)


def format_validation_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    """Field-level error list for the error envelope; password values are never echoed"""
    errors = []
    for error in exc.errors():
        field = '.'.join(str(part) for part in error['loc']) or 'body'
        message = error['msg']
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        entry = {'field': field, 'message': message}
        if error['type'] != 'missing' and error['loc'] and 'password' not in field.lower():
            value = error.get('input')
            if value is None or isinstance(value, (str, int, float, bool)):
                entry['value'] = value
        errors.append(entry)
    return errors


def _payload(location: str) -> Dict[str, Any]:
    if location == 'query':
        return request.args.to_dict()
    if location == 'form':
        return request.form.to_dict()
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def validate_request(schema, location: str = 'json'):
    """
    Validate the request payload against ``schema`` before the view runs.

    The parsed model is stored on ``g.validated_data``.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            g.validated_data = schema.model_validate(_payload(location))
            return f(*args, **kwargs)
        return decorated_function
    return decorator
