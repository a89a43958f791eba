# api/uploads.py
"""
Media uploads stored on local disk and served from ``/uploads/<name>``
"""

import logging
import os

from flask import Blueprint, current_app, g, request, send_from_directory, url_for
from werkzeug.utils import secure_filename

from core.database_models import UserRole
from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from core.responses import success_response
from core.utils import generate_file_name, get_file_extension
from core.validation import UploadTypeSchema, validate_request
from middleware.security import authenticate, authorize

uploads_bp = Blueprint('uploads', __name__)
media_bp = Blueprint('media', __name__)
logger = logging.getLogger(__name__)


def upload_folder() -> str:
    folder = current_app.config['UPLOAD_FOLDER']
    os.makedirs(folder, exist_ok=True)
    return folder


def _allowed(media_type: str):
    config = current_app.config
    if media_type == 'video':
        return config['VIDEO_EXTENSIONS'], config['VIDEO_MIMETYPES']
    return config['IMAGE_EXTENSIONS'], config['IMAGE_MIMETYPES']


def _validate_file(file, media_type: str):
    if file is None or not file.filename:
        raise ValidationError('No file uploaded', code='FILE_UPLOAD_ERROR', field='file')

    extensions, mimetypes = _allowed(media_type)
    extension = get_file_extension(file.filename)
    if extension not in extensions or file.mimetype not in mimetypes:
        raise ValidationError(
            f"Invalid {media_type} file. Allowed types: {', '.join(sorted(extensions))}",
            code='FILE_UPLOAD_ERROR',
            field='file',
        )


def _uploader_id(name: str):
    parts = name.split('_')
    return parts[1] if len(parts) >= 4 else None


def _store(file, media_type: str) -> dict:
    # <type>_<uploader id>_<millis>_<token>.<ext>
    name = generate_file_name(secure_filename(file.filename) or file.filename,
                              prefix=f'{media_type}_{g.current_user.id}')
    path = os.path.join(upload_folder(), name)
    file.save(path)
    logger.info(f"Stored upload {name} for user {g.current_user.id}")
    return {
        'url': url_for('media.serve_upload', filename=name, _external=True),
        'fileName': name,
        'originalName': file.filename,
        'size': os.path.getsize(path),
        'mimeType': file.mimetype,
        'type': media_type,
    }


@uploads_bp.route('/single', methods=['POST'])
@authenticate
@validate_request(UploadTypeSchema, location='form')
def upload_single():
    media_type = g.validated_data.type
    file = request.files.get('file')
    _validate_file(file, media_type)
    return success_response('File uploaded successfully', {'file': _store(file, media_type)}, status=201)


@uploads_bp.route('/multiple', methods=['POST'])
@authenticate
@validate_request(UploadTypeSchema, location='form')
def upload_multiple():
    media_type = g.validated_data.type
    files = [file for file in request.files.getlist('files') if file and file.filename]
    max_files = current_app.config['MAX_FILES_PER_UPLOAD']

    if not files:
        raise ValidationError('No files uploaded', code='FILE_UPLOAD_ERROR', field='files')
    if len(files) > max_files:
        raise ValidationError(f'Too many files. Maximum is {max_files}',
                              code='FILE_UPLOAD_ERROR', field='files')

    # Reject the whole batch before anything is written
    for file in files:
        _validate_file(file, media_type)

    stored = [_store(file, media_type) for file in files]
    return success_response(f'{len(stored)} files uploaded successfully', {'files': stored}, status=201)


@uploads_bp.route('/<filename>', methods=['DELETE'])
@authenticate
@authorize(UserRole.SELLER, UserRole.ADMIN)
def delete_upload(filename):
    name = secure_filename(filename)
    path = os.path.join(upload_folder(), name)
    if not name or not os.path.isfile(path):
        raise NotFoundError('File')
    user = g.current_user
    if user.role != UserRole.ADMIN and _uploader_id(name) != user.id:
        raise PermissionDeniedError('You can only delete your own uploads')

    os.remove(path)
    logger.info(f"Upload {name} deleted by {g.current_user.id}")
    return success_response('File deleted successfully')


@media_bp.route('/uploads/<path:filename>', methods=['GET'])
def serve_upload(filename):
    return send_from_directory(upload_folder(), filename)
