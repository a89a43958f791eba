# api/categories.py
"""
Category API: public browsing, admin management
"""

import logging

from flask import Blueprint, g
from sqlalchemy import func, or_

from core.database_models import db, Category, Product, UserRole
from core.errors import ConflictError, NotFoundError, ValidationError
from core.responses import success_response
from core.utils import generate_slug, sanitize_string
from core.validation import (
    CategoryCreateSchema, CategoryFilterSchema, CategoryUpdateSchema, validate_request
)
from middleware.security import admin_only, authenticate, optional_auth

categories_bp = Blueprint('categories', __name__)
logger = logging.getLogger(__name__)


def _active_product_counts():
    rows = (
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.is_active.is_(True))
        .group_by(Product.category_id)
        .all()
    )
    return dict(rows)


def _with_count(category: Category, counts) -> dict:
    data = category.to_dict()
    data['productCount'] = int(counts.get(category.id, 0))
    return data


def _find_category(key: str) -> Category:
    category = Category.query.filter(or_(Category.id == key, Category.slug == key)).first()
    if category is None:
        raise NotFoundError('Category')
    return category


def _category_slug(name: str) -> str:
    slug = generate_slug(name)
    if not slug:
        raise ValidationError('Category name must contain letters or numbers', field='name')
    return slug


def _ensure_unique(name: str, slug: str, exclude_id: str = None):
    query = Category.query.filter(or_(func.lower(Category.name) == name.lower(), Category.slug == slug))
    if exclude_id:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError('Category with this name already exists', code='CATEGORY_EXISTS')


@categories_bp.route('', methods=['GET'])
@optional_auth
@validate_request(CategoryFilterSchema, location='query')
def list_categories():
    """Active categories; admins may ask for inactive ones too"""
    user = g.current_user
    query = Category.query
    if not (g.validated_data.include_inactive and user is not None and user.role == UserRole.ADMIN):
        query = query.filter(Category.is_active.is_(True))

    counts = _active_product_counts()
    categories = [_with_count(category, counts) for category in query.order_by(Category.name).all()]
    return success_response('Categories retrieved successfully', {'categories': categories})


@categories_bp.route('/<key>', methods=['GET'])
def get_category(key):
    """Look up a category by id or slug"""
    category = _find_category(key)
    return success_response('Category retrieved successfully', {
        'category': _with_count(category, _active_product_counts()),
    })


@categories_bp.route('', methods=['POST'])
@authenticate
@admin_only
@validate_request(CategoryCreateSchema)
def create_category():
    data = g.validated_data
    name = sanitize_string(data.name)
    slug = _category_slug(name)
    _ensure_unique(name, slug)

    category = Category(
        name=name,
        slug=slug,
        description=sanitize_string(data.description),
        image=data.image,
        is_active=data.is_active,
    )
    db.session.add(category)
    db.session.commit()

    logger.info(f"Category {category.slug} created")
    return success_response('Category created successfully', {'category': category.to_dict()}, status=201)


@categories_bp.route('/<category_id>', methods=['PUT'])
@authenticate
@admin_only
@validate_request(CategoryUpdateSchema)
def update_category(category_id):
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError('Category')

    changes = {
        field: value for field, value in g.validated_data.changes().items()
        if value is not None or field in ('description', 'image')
    }
    if changes.get('name'):
        changes['name'] = sanitize_string(changes['name'])
        changes['slug'] = _category_slug(changes['name'])
        _ensure_unique(changes['name'], changes['slug'], exclude_id=category.id)
    if 'description' in changes:
        changes['description'] = sanitize_string(changes['description'])

    for field, value in changes.items():
        setattr(category, field, value)
    db.session.commit()
    return success_response('Category updated successfully', {'category': category.to_dict()})


@categories_bp.route('/<category_id>', methods=['DELETE'])
@authenticate
@admin_only
def delete_category(category_id):
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError('Category')

    product_count = Product.query.filter_by(category_id=category.id).count()
    if product_count:
        raise ConflictError(
            'Cannot delete a category that still has products',
            code='CATEGORY_IN_USE',
            details={'productCount': product_count},
        )

    db.session.delete(category)
    db.session.commit()
    logger.info(f"Category {category_id} deleted")
    return success_response('Category deleted successfully')
