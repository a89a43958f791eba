# api/products.py
"""
Product catalog API: listing, search, seller management and reviews
"""

import logging
from typing import Any, Dict

from flask import Blueprint, g
from sqlalchemy import func, or_, select

from core.database_models import (
    db, Category, Order, OrderItem, OrderStatus, Product, Review, UserRole
)
from core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from core.responses import pagination_meta, success_response
from core.utils import generate_sku, sanitize_string
from core.validation import (
    PRODUCT_SORT_FIELDS, ProductCreateSchema, ProductFilterSchema,
    ProductUpdateSchema, ReviewCreateSchema, ReviewFilterSchema, SearchSchema, validate_request
)
from middleware.security import authenticate, buyer_only, can_manage_products, optional_auth

products_bp = Blueprint('products', __name__)
logger = logging.getLogger(__name__)

PRODUCT_DETAIL_REVIEWS = 20
NULLABLE_PRODUCT_FIELDS = ('discount_price', 'discount_end_date', 'video')


def _review_stats():
    return (
        select(
            Review.product_id.label('product_id'),
            func.avg(Review.rating).label('avg_rating'),
            func.count(Review.id).label('total_reviews'),
        )
        .group_by(Review.product_id)
        .subquery()
    )


def _sales_stats():
    return (
        select(
            OrderItem.product_id.label('product_id'),
            func.count(OrderItem.id).label('total_sales'),
        )
        .group_by(OrderItem.product_id)
        .subquery()
    )


def _product_query():
    """Products joined with their rating and sales aggregates"""
    reviews = _review_stats()
    sales = _sales_stats()
    avg_rating = func.coalesce(reviews.c.avg_rating, 0)
    total_sales = func.coalesce(sales.c.total_sales, 0)
    query = (
        db.session.query(
            Product,
            avg_rating.label('avg_rating'),
            func.coalesce(reviews.c.total_reviews, 0).label('total_reviews'),
            total_sales.label('total_sales'),
        )
        .outerjoin(reviews, reviews.c.product_id == Product.id)
        .outerjoin(sales, sales.c.product_id == Product.id)
    )
    return query, avg_rating, total_sales


def _with_stats(row, include_seller: bool = True) -> Dict[str, Any]:
    product, avg_rating, total_reviews, total_sales = row
    data = product.to_dict(include_seller=include_seller)
    data.update({
        'avgRating': round(float(avg_rating or 0), 1),
        'totalReviews': int(total_reviews or 0),
        'totalSales': int(total_sales or 0),
    })
    return data


def _text_filter(search: str):
    pattern = f'%{search}%'
    return or_(Product.title.ilike(pattern), Product.description.ilike(pattern))


def _category_filter(category: str):
    return Product.category.has(or_(
        Category.slug == category,
        Category.id == category,
        Category.name.ilike(f'%{category}%'),
    ))


def _get_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product')
    return product


def _owned_product(product_id: str) -> Product:
    product = _get_product(product_id)
    user = g.current_user
    if user.role == UserRole.SELLER and product.seller_id != user.id:
        raise PermissionDeniedError('You can only manage your own products')
    return product


def _require_category(category_id: str) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError('Category')
    return category


@products_bp.route('', methods=['GET'])
@optional_auth
@validate_request(ProductFilterSchema, location='query')
def list_products():
    """Paginated catalog with filters"""
    params = g.validated_data
    query, _, _ = _product_query()

    query = query.filter(Product.is_active == params.is_active)
    if params.category:
        query = query.filter(_category_filter(params.category))
    if params.search:
        query = query.filter(_text_filter(params.search))
    if params.min_price is not None:
        query = query.filter(Product.price >= params.min_price)
    if params.max_price is not None:
        query = query.filter(Product.price <= params.max_price)
    if params.seller_id:
        query = query.filter(Product.seller_id == params.seller_id)
    if params.in_stock:
        query = query.filter(Product.stock > 0)

    column = getattr(Product, PRODUCT_SORT_FIELDS[params.sort])
    query = query.order_by(column.asc() if params.order == 'asc' else column.desc())

    page = query.paginate(page=params.page, per_page=params.limit, error_out=False)
    return success_response(
        'Products retrieved successfully',
        {'products': [_with_stats(row) for row in page.items]},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@products_bp.route('/search', methods=['GET'])
@optional_auth
@validate_request(SearchSchema, location='query')
def search_products():
    """Search active, in-stock products"""
    params = g.validated_data
    query, avg_rating, total_sales = _product_query()

    query = query.filter(
        Product.is_active.is_(True),
        Product.stock > 0,
        _text_filter(params.q),
    )
    if params.category:
        query = query.filter(or_(
            Product.category_id == params.category,
            Product.category.has(Category.slug == params.category),
        ))
    if params.min_price is not None:
        query = query.filter(Product.price >= params.min_price)
    if params.max_price is not None:
        query = query.filter(Product.price <= params.max_price)
    if params.rating:
        query = query.filter(avg_rating >= params.rating)

    ordering = {
        'price_asc': Product.price.asc(),
        'price_desc': Product.price.desc(),
        'rating': avg_rating.desc(),
        'popular': total_sales.desc(),
        'newest': Product.created_at.desc(),
    }[params.sort_by]
    query = query.order_by(ordering, Product.created_at.desc())

    page = query.paginate(page=params.page, per_page=params.limit, error_out=False)
    return success_response(
        'Search completed successfully',
        {'products': [_with_stats(row) for row in page.items], 'query': params.q},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@products_bp.route('/seller/my-products', methods=['GET'])
@authenticate
@can_manage_products
@validate_request(ProductFilterSchema, location='query')
def seller_products():
    """The caller's own products, active or not"""
    params = g.validated_data
    query, _, _ = _product_query()
    query = query.filter(Product.seller_id == g.current_user.id)
    if 'is_active' in params.model_fields_set:
        query = query.filter(Product.is_active == params.is_active)
    if params.search:
        query = query.filter(_text_filter(params.search))

    column = getattr(Product, PRODUCT_SORT_FIELDS[params.sort])
    query = query.order_by(column.asc() if params.order == 'asc' else column.desc())

    page = query.paginate(page=params.page, per_page=params.limit, error_out=False)
    return success_response(
        'Seller products retrieved successfully',
        {'products': [_with_stats(row, include_seller=False) for row in page.items]},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@products_bp.route('/<product_id>', methods=['GET'])
@optional_auth
def get_product(product_id):
    query, _, _ = _product_query()
    row = query.filter(Product.id == product_id).first()
    if row is None:
        raise NotFoundError('Product')

    product = row[0]
    data = _with_stats(row)
    if product.seller:
        data['seller']['businessPhone'] = product.seller.business_phone
    data['reviews'] = [review.to_dict() for review in product.reviews[:PRODUCT_DETAIL_REVIEWS]]
    return success_response('Product retrieved successfully', {'product': data})


@products_bp.route('', methods=['POST'])
@authenticate
@can_manage_products
@validate_request(ProductCreateSchema)
def create_product():
    data = g.validated_data
    category = _require_category(data.category_id)

    product = Product(
        title=sanitize_string(data.title),
        description=sanitize_string(data.description),
        price=data.price,
        discount_price=data.discount_price,
        discount_end_date=data.discount_end_date,
        stock=data.stock,
        sku=generate_sku(data.title, category.name),
        images=list(data.images),
        video=data.video,
        is_active=data.is_active,
        category_id=category.id,
        seller_id=g.current_user.id,
    )
    db.session.add(product)
    db.session.commit()

    logger.info(f"Product {product.id} ({product.sku}) created by {g.current_user.id}")
    return success_response('Product created successfully', {'product': product.to_dict()}, status=201)


@products_bp.route('/<product_id>', methods=['PUT'])
@authenticate
@can_manage_products
@validate_request(ProductUpdateSchema)
def update_product(product_id):
    product = _owned_product(product_id)
    changes = {
        field: value for field, value in g.validated_data.changes().items()
        if value is not None or field in NULLABLE_PRODUCT_FIELDS
    }

    if changes.get('category_id') and changes['category_id'] != product.category_id:
        _require_category(changes['category_id'])
    for field in ('title', 'description'):
        if changes.get(field):
            changes[field] = sanitize_string(changes[field])

    price = changes.get('price', product.price)
    discount_price = changes.get('discount_price', product.discount_price)
    if discount_price is not None and price is not None and discount_price >= price:
        raise ValidationError('Discount price must be less than regular price', field='discountPrice')

    for field, value in changes.items():
        setattr(product, field, value)
    db.session.commit()

    return success_response('Product updated successfully', {'product': product.to_dict()})


@products_bp.route('/<product_id>', methods=['DELETE'])
@authenticate
@can_manage_products
def delete_product(product_id):
    """Hard delete, or deactivate when orders still reference the product"""
    product = _owned_product(product_id)

    if OrderItem.query.filter_by(product_id=product.id).count():
        product.is_active = False
        db.session.commit()
        logger.info(f"Product {product.id} deactivated (has existing orders)")
        return success_response('Product deactivated successfully (has existing orders)')

    db.session.delete(product)
    db.session.commit()
    logger.info(f"Product {product_id} deleted by {g.current_user.id}")
    return success_response('Product deleted successfully')


# Reviews

@products_bp.route('/<product_id>/reviews', methods=['GET'])
@validate_request(ReviewFilterSchema, location='query')
def list_reviews(product_id):
    params = g.validated_data
    _get_product(product_id)

    query = Review.query.filter_by(product_id=product_id)
    if params.rating:
        query = query.filter_by(rating=params.rating)

    page = query.order_by(Review.created_at.desc()).paginate(
        page=params.page, per_page=params.limit, error_out=False
    )
    return success_response(
        'Reviews retrieved successfully',
        {'reviews': [review.to_dict() for review in page.items]},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@products_bp.route('/<product_id>/reviews', methods=['POST'])
@authenticate
@buyer_only
@validate_request(ReviewCreateSchema)
def create_review(product_id):
    """Buyers review products from their completed orders, once per product"""
    data = g.validated_data
    user = g.current_user
    product = _get_product(product_id)

    purchased = db.session.scalar(
        select(func.count(OrderItem.id))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.buyer_id == user.id,
            Order.status == OrderStatus.COMPLETED,
            OrderItem.product_id == product.id,
        )
    )
    if not purchased:
        raise PermissionDeniedError('You can only review products from your completed orders')

    if Review.query.filter_by(product_id=product.id, user_id=user.id).first():
        raise ConflictError('You have already reviewed this product', code='REVIEW_EXISTS')

    review = Review(
        rating=data.rating,
        comment=sanitize_string(data.comment),
        images=list(data.images),
        product_id=product.id,
        user_id=user.id,
    )
    db.session.add(review)
    db.session.commit()
    return success_response('Review added successfully', {'review': review.to_dict()}, status=201)
