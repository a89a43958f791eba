# core/responses.py
"""
Helpers that shape the standard JSON envelope:
``{success, message, data?, meta?, error?}``
"""

import math
from typing import Any, Dict, Optional

from flask import jsonify


def success_response(message: str, data: Any = None, meta: Optional[Dict[str, Any]] = None,
                     status: int = 200):
    body = {'success': True, 'message': message}
    if data is not None:
        body['data'] = data
    if meta is not None:
        body['meta'] = meta
    return jsonify(body), status


def error_body(message: str, status_code: int, code: Optional[str] = None,
               **extra: Any) -> Dict[str, Any]:
    error = {'code': code, 'statusCode': status_code}
    error.update(extra)
    return {'success': False, 'message': message, 'error': error}


def error_response(message: str, status_code: int, code: Optional[str] = None, **extra: Any):
    return jsonify(error_body(message, status_code, code, **extra)), status_code


def pagination_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    """Pagination block for list endpoints"""
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': total_pages,
        'hasNext': page < total_pages,
        'hasPrev': page > 1,
    }
