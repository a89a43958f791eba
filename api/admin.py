# api/admin.py
"""
Administration API: marketplace analytics, user management and announcements
"""

import logging

from flask import Blueprint, g
from sqlalchemy import or_

from core.database_models import db, NotificationType, User, UserStatus
from core.errors import NotFoundError, ValidationError
from core.responses import pagination_meta, success_response
from core.security_manager import security_manager
from core.tokens import revoke_all_refresh_tokens
from core.validation import (
    AnalyticsFilterSchema, AnnouncementSchema, UserFilterSchema, UserStatusUpdateSchema,
    validate_request
)
from middleware.security import admin_only, authenticate
from api.realtime import broadcast_system_announcement, connected_user_count
from services.analytics import analytics_service
from services.notifications import create_notification

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)


def _get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User')
    return user


@admin_bp.route('/analytics', methods=['GET'])
@authenticate
@admin_only
@validate_request(AnalyticsFilterSchema, location='query')
def analytics():
    """Dashboard figures, optionally narrowed to a date range or seller"""
    params = g.validated_data
    data = analytics_service.get_admin_analytics(params.date_from, params.date_to, params.seller_id)
    data['connectedUsers'] = connected_user_count()
    return success_response('Analytics retrieved successfully', {'analytics': data})


@admin_bp.route('/users', methods=['GET'])
@authenticate
@admin_only
@validate_request(UserFilterSchema, location='query')
def list_users():
    params = g.validated_data
    query = User.query
    if params.role:
        query = query.filter(User.role == params.role)
    if params.status:
        query = query.filter(User.status == params.status)
    if params.search:
        pattern = f'%{params.search}%'
        query = query.filter(or_(
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            User.business_name.ilike(pattern),
        ))

    column = User.name if params.sort == 'name' else User.created_at
    query = query.order_by(column.asc() if params.order == 'asc' else column.desc())

    page = query.paginate(page=params.page, per_page=params.limit, error_out=False)
    return success_response(
        'Users retrieved successfully',
        {'users': [user.to_dict() for user in page.items]},
        meta=pagination_meta(params.page, params.limit, page.total),
    )


@admin_bp.route('/users/<user_id>', methods=['GET'])
@authenticate
@admin_only
def get_user(user_id):
    return success_response('User retrieved successfully', {'user': _get_user(user_id).to_dict()})


@admin_bp.route('/users/<user_id>/status', methods=['PATCH'])
@authenticate
@admin_only
@validate_request(UserStatusUpdateSchema)
def update_user_status(user_id):
    """Suspend, ban or reactivate an account; leaving ACTIVE signs the user out everywhere"""
    data = g.validated_data
    user = _get_user(user_id)
    if user.id == g.current_user.id:
        raise ValidationError('You cannot change your own status', field='status')

    previous = user.status
    user.status = data.status
    revoked = 0
    if data.status != UserStatus.ACTIVE:
        revoked = revoke_all_refresh_tokens(user.id, commit=False)
    db.session.commit()

    security_manager.log_security_event('user_status_changed', {
        'target_user': user.id,
        'from': previous.value,
        'to': data.status.value,
        'reason': data.reason,
        'revoked_tokens': revoked,
    })
    if data.status == UserStatus.ACTIVE:
        create_notification(
            user.id,
            'Account Reactivated',
            'Your account has been reactivated.',
            NotificationType.GENERAL,
        )

    return success_response('User status updated successfully', {'user': user.to_dict()})


@admin_bp.route('/announcements', methods=['POST'])
@authenticate
@admin_only
@validate_request(AnnouncementSchema)
def announce():
    data = g.validated_data
    payload = broadcast_system_announcement(
        {'title': data.title, 'message': data.message, 'type': 'announcement'},
        roles=data.roles,
    )
    return success_response('Announcement sent successfully', {'announcement': payload}, status=201)
