#!/usr/bin/env python3
"""
Photobooth - Flask Server with Database API
"""

from flask import Flask, jsonify, request, send_file
from werkzeug.exceptions import HTTPException
import os
import json
import logging
from logging.handlers import RotatingFileHandler
from io import BytesIO

import config
from analytics import AnalyticsLog
from capture_pipeline import CapturePipeline
from capture_sequencer import BlockingScheduler, CaptureSequencer
from compositor import Compositor, encode_placeholder
from db_store import PhotoboothStore
from errors import (
    CaptureError, CompositionError, DeviceError, InvalidLayoutError,
    NotFoundError, PhotoboothError, ValidationError,
)
from file_operations import is_within, resolve_local_resource, to_local_resource_url
from frame_source import OpenCVFrameSource, list_camera_devices
from group_service import GroupService
from models import GroupPatch, SettingsPatch, TemplateInput, TemplateOverrides, TemplatePatch
from photo_filters import FilterSettings
from photo_service import PhotoService
from session_service import SessionService
from settings_service import SettingsService
from template_service import TemplateService

app = Flask(__name__)

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Services - initialized by init_services() on startup
STORE = None
SETTINGS_SERVICE = None
SESSION_SERVICE = None
PHOTO_SERVICE = None
TEMPLATE_SERVICE = None
GROUP_SERVICE = None
ANALYTICS = None
CAPTURE = None

# ============================================================================
# LOGGING CONFIGURATION (print() for startup + persistent rotating logs)
# ============================================================================

app.logger.setLevel(logging.INFO)

error_logger = logging.getLogger('errors')
error_logger.setLevel(logging.WARNING)


def configure_logging(log_dir, level='INFO'):
    """Attach a rotating file handler and a console handler to the root logger"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'photobooth.log'),
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            print(f"⚠️  Warning: Could not create log directory {log_dir}: {e}")

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)


def init_services(store=None, frame_source=None, scheduler=None):
    """
    Open the store and wire every service against it.

    Args:
        store: PhotoboothStore (default: paths from config)
        frame_source: FrameSource for captures (default: OpenCV camera)
        scheduler: Scheduler for the capture sequencer (default: blocking)
    """
    global STORE, SETTINGS_SERVICE, SESSION_SERVICE, PHOTO_SERVICE, TEMPLATE_SERVICE
    global GROUP_SERVICE, ANALYTICS, CAPTURE

    STORE = store or PhotoboothStore()
    STORE.open()

    SETTINGS_SERVICE = SettingsService(STORE)
    SESSION_SERVICE = SessionService(STORE)
    PHOTO_SERVICE = PhotoService(STORE, SETTINGS_SERVICE, SESSION_SERVICE)
    TEMPLATE_SERVICE = TemplateService(STORE, PHOTO_SERVICE)
    GROUP_SERVICE = GroupService(STORE)
    ANALYTICS = AnalyticsLog(STORE)

    sequencer = CaptureSequencer(frame_source or OpenCVFrameSource(), scheduler or BlockingScheduler())
    CAPTURE = CapturePipeline(
        sequencer,
        Compositor(TEMPLATE_SERVICE),
        PHOTO_SERVICE,
        SESSION_SERVICE,
        SETTINGS_SERVICE,
        ANALYTICS,
    )
    return STORE


# ============================================================================
# ERRORS
# ============================================================================

def error_status(error):
    """HTTP status for a domain error"""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ValidationError, InvalidLayoutError)):
        return 400
    if isinstance(error, DeviceError):
        return 503
    if isinstance(error, (CaptureError, CompositionError)):
        return 422
    return 500


@app.errorhandler(PhotoboothError)
def handle_photobooth_error(e):
    status = error_status(e)
    if status >= 500:
        error_logger.error(f"{request.method} {request.path} failed: {e}")
    else:
        app.logger.info(f"{request.method} {request.path} -> {status}: {e}")
    return jsonify({'error': str(e)}), status


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({'error': e.description}), e.code
    error_logger.exception(f"{request.method} {request.path} failed: {e}")
    return jsonify({'error': str(e)}), 500


def get_json_body():
    """Request JSON object ({} when the body is empty)"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def photo_json(photo):
    data = photo.to_dict()
    data['url'] = to_local_resource_url(photo.filepath)
    data['thumbnail_url'] = to_local_resource_url(photo.thumbnail_path) if photo.thumbnail_path else None
    return data


# ============================================================================
# SETTINGS
# ============================================================================

@app.route('/api/settings', methods=['GET'])
def get_settings():
    return jsonify(SETTINGS_SERVICE.get_settings().to_dict())


@app.route('/api/settings', methods=['PUT', 'PATCH'])
def update_settings():
    """Partial update; only the keys present in the body change"""
    patch = SettingsPatch.from_dict(get_json_body())
    return jsonify(SETTINGS_SERVICE.update_settings(patch).to_dict())


@app.route('/api/settings/reset', methods=['POST'])
def reset_settings():
    return jsonify(SETTINGS_SERVICE.reset_settings().to_dict())


# ============================================================================
# PHOTOS
# ============================================================================

@app.route('/api/photos', methods=['GET'])
def list_photos():
    """
    Query params:
    - limit: number of photos (default 100)
    - offset: pagination offset (default 0)
    """
    limit = request.args.get('limit', 100, type=int)
    offset = request.args.get('offset', 0, type=int)
    if limit < 0 or offset < 0:
        raise ValidationError("limit and offset must be non-negative")
    photos = PHOTO_SERVICE.list_photos(limit=limit, offset=offset)
    return jsonify({'photos': [photo_json(p) for p in photos], 'limit': limit, 'offset': offset})


@app.route('/api/photos', methods=['POST'])
def save_photo():
    """
    Save an encoded image as a new photo.

    Accepts multipart ('photo' file + optional session_id, layout_type,
    metadata form fields) or a raw image body with the same query params.
    """
    upload = request.files.get('photo')
    image_bytes = upload.read() if upload else request.get_data()
    if not image_bytes:
        raise ValidationError("No image data provided")

    fields = request.form if upload else request.args
    metadata = fields.get('metadata')
    if metadata:
        try:
            metadata = json.loads(metadata)
        except ValueError:
            raise ValidationError("metadata must be JSON")

    session_id = fields.get('session_id') or None
    if session_id:
        SESSION_SERVICE.get_session(session_id)

    photo = PHOTO_SERVICE.save(
        image_bytes,
        session_id=session_id,
        layout_type=fields.get('layout_type', 'single'),
        metadata=metadata,
    )
    ANALYTICS.record_event('photo_saved', {'photo_id': photo.id, 'source': 'upload'})
    return jsonify(photo_json(photo)), 201


@app.route('/api/photos/<photo_id>', methods=['GET'])
def get_photo(photo_id):
    return jsonify(photo_json(PHOTO_SERVICE.get_photo(photo_id)))


@app.route('/api/photos/<photo_id>', methods=['DELETE'])
def delete_photo(photo_id):
    PHOTO_SERVICE.delete_photo(photo_id)
    ANALYTICS.record_event('photo_deleted', {'photo_id': photo_id})
    return jsonify({'success': True})


@app.route('/api/photos/<photo_id>/display')
def get_photo_display(photo_id):
    """Thumbnail, else the primary image, else a placeholder"""
    photo = PHOTO_SERVICE.get_photo(photo_id)
    path = PHOTO_SERVICE.display_path(photo)
    if path:
        return send_file(path)
    return send_file(BytesIO(encode_placeholder()), mimetype='image/jpeg')


@app.route('/api/photos/<photo_id>/file')
def get_photo_file(photo_id):
    photo = PHOTO_SERVICE.get_photo(photo_id)
    if not os.path.isfile(photo.filepath):
        raise NotFoundError('file', photo.filepath)
    return send_file(photo.filepath)


@app.route('/api/photos/<photo_id>/filters', methods=['POST'])
def apply_photo_filters(photo_id):
    """Body: {type, brightness, contrast}; saves a filtered copy"""
    settings = FilterSettings.from_dict(get_json_body())
    photo = PHOTO_SERVICE.save_filtered_copy(photo_id, settings)
    ANALYTICS.record_event('photo_saved', {'photo_id': photo.id, 'source': 'filters'})
    return jsonify(photo_json(photo)), 201


# ============================================================================
# TEMPLATES
# ============================================================================

@app.route('/api/templates', methods=['GET'])
def list_templates():
    active_only = request.args.get('active_only', 'true').lower() not in ('0', 'false', 'no')
    templates = TEMPLATE_SERVICE.list_templates(active_only=active_only)
    return jsonify({'templates': [t.to_dict() for t in templates]})


@app.route('/api/templates/<template_id>', methods=['GET'])
def get_template(template_id):
    return jsonify(TEMPLATE_SERVICE.get_template(template_id).to_dict())


@app.route('/api/templates', methods=['POST'])
def create_template():
    template = TEMPLATE_SERVICE.create_template(TemplateInput.from_dict(get_json_body()))
    return jsonify(template.to_dict()), 201


@app.route('/api/templates/<template_id>', methods=['PUT', 'PATCH'])
def update_template(template_id):
    patch = TemplatePatch.from_dict(get_json_body())
    return jsonify(TEMPLATE_SERVICE.update_template(template_id, patch).to_dict())


@app.route('/api/templates/<template_id>', methods=['DELETE'])
def delete_template(template_id):
    TEMPLATE_SERVICE.delete_template(template_id)
    return jsonify({'success': True})


@app.route('/api/templates/<template_id>/apply', methods=['POST'])
def apply_template_to_photo(template_id):
    """Body: {photo_id, overrides: {guestName, eventDate, customText}}"""
    data = get_json_body()
    photo_id = data.get('photo_id')
    if not photo_id:
        raise ValidationError("photo_id is required")
    overrides = TemplateOverrides.from_dict(data.get('overrides') or {})
    photo = TEMPLATE_SERVICE.apply_to_photo(photo_id, template_id, overrides)
    ANALYTICS.record_event('template_applied', {
        'template_id': template_id,
        'photo_id': photo_id,
        'result_photo_id': photo.id,
    })
    return jsonify(photo_json(photo)), 201


@app.route('/api/templates/seed', methods=['POST'])
def seed_templates():
    created = TEMPLATE_SERVICE.apply_defaults()
    return jsonify({'created': [t.to_dict() for t in created]})


# ============================================================================
# SESSIONS
# ============================================================================

@app.route('/api/sessions', methods=['GET'])
def list_sessions():
    return jsonify({'sessions': [s.to_dict() for s in SESSION_SERVICE.list_sessions()]})


@app.route('/api/sessions', methods=['POST'])
def create_session():
    session = SESSION_SERVICE.create_session(get_json_body().get('name'))
    ANALYTICS.record_event('session_started', {'session_id': session.id})
    return jsonify(session.to_dict()), 201


@app.route('/api/sessions/active', methods=['GET'])
def get_active_session():
    """Current active session; one is started if none is active"""
    return jsonify(SESSION_SERVICE.get_active_session().to_dict())


@app.route('/api/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(SESSION_SERVICE.get_session(session_id).to_dict())


@app.route('/api/sessions/<session_id>/end', methods=['POST'])
def end_session(session_id):
    session = SESSION_SERVICE.end_session(session_id)
    ANALYTICS.record_event('session_ended', {'session_id': session_id, 'photo_count': session.photo_count})
    return jsonify(session.to_dict())


@app.route('/api/sessions/<session_id>/cancel', methods=['POST'])
def cancel_session(session_id):
    return jsonify(SESSION_SERVICE.cancel_session(session_id).to_dict())


@app.route('/api/sessions/<session_id>/photos', methods=['GET'])
def list_session_photos(session_id):
    SESSION_SERVICE.get_session(session_id)
    photos = PHOTO_SERVICE.list_session_photos(session_id)
    return jsonify({'photos': [photo_json(p) for p in photos]})


@app.route('/api/sessions/<session_id>/update-count', methods=['POST'])
def update_session_count(session_id):
    return jsonify({'photo_count': SESSION_SERVICE.update_photo_count(session_id)})


@app.route('/api/sessions/<session_id>/export', methods=['POST'])
def export_session(session_id):
    """Body: {destination, format: 'folder' | 'zip'}"""
    data = get_json_body()
    destination = data.get('destination')
    if not destination:
        raise ValidationError("destination is required")
    path = SESSION_SERVICE.export_session(session_id, destination, data.get('format', 'folder'))
    return jsonify({'path': path})


@app.route('/api/sessions/<session_id>', methods=['DELETE'])
def delete_session(session_id):
    SESSION_SERVICE.delete_session(session_id)
    return jsonify({'success': True})


@app.route('/api/sessions/<session_id>/stats', methods=['GET'])
def get_session_stats(session_id):
    return jsonify(SESSION_SERVICE.get_session_stats(session_id).to_dict())


# ============================================================================
# GROUPS
# ============================================================================

def get_photo_ids(data):
    photo_ids = data.get('photo_ids')
    if not isinstance(photo_ids, list):
        raise ValidationError("photo_ids must be a list")
    return photo_ids


@app.route('/api/groups', methods=['GET'])
def list_groups():
    return jsonify({'groups': [g.to_dict() for g in GROUP_SERVICE.list_groups()]})


@app.route('/api/groups', methods=['POST'])
def create_group():
    data = get_json_body()
    group = GROUP_SERVICE.create_group(
        data.get('name'),
        description=data.get('description'),
        thumbnail_path=data.get('thumbnail_path'),
    )
    return jsonify(group.to_dict()), 201


@app.route('/api/groups/<int:group_id>', methods=['GET'])
def get_group(group_id):
    return jsonify(GROUP_SERVICE.get_group(group_id).to_dict())


@app.route('/api/groups/<int:group_id>', methods=['PUT', 'PATCH'])
def update_group(group_id):
    patch = GroupPatch.from_dict(get_json_body())
    return jsonify(GROUP_SERVICE.update_group(group_id, patch).to_dict())


@app.route('/api/groups/<int:group_id>', methods=['DELETE'])
def delete_group(group_id):
    GROUP_SERVICE.delete_group(group_id)
    return jsonify({'success': True})


@app.route('/api/groups/<int:group_id>/photos', methods=['GET'])
def list_group_photos(group_id):
    GROUP_SERVICE.get_group(group_id)
    return jsonify({'photo_ids': GROUP_SERVICE.list_photo_ids(group_id)})


@app.route('/api/groups/<int:group_id>/photos', methods=['POST'])
def add_group_photos(group_id):
    added = GROUP_SERVICE.add_photos(group_id, get_photo_ids(get_json_body()))
    return jsonify({'added': added, 'group': GROUP_SERVICE.get_group(group_id).to_dict()})


@app.route('/api/groups/<int:group_id>/photos', methods=['DELETE'])
def remove_group_photos(group_id):
    removed = GROUP_SERVICE.remove_photos(group_id, get_photo_ids(get_json_body()))
    return jsonify({'removed': removed, 'group': GROUP_SERVICE.get_group(group_id).to_dict()})


@app.route('/api/groups/<int:group_id>/update-count', methods=['POST'])
def update_group_count(group_id):
    return jsonify({'photo_count': GROUP_SERVICE.update_photo_count(group_id)})


# ============================================================================
# CAPTURE
# ============================================================================

@app.route('/api/cameras', methods=['GET'])
def list_cameras():
    devices = list_camera_devices()
    return jsonify({'cameras': [
        {'device_id': d.device_id, 'name': d.name, 'excluded': d.excluded}
        for d in devices
    ]})


@app.route('/api/capture', methods=['POST'])
def start_capture():
    """Body: {layout}; blocks until the run completes"""
    layout = get_json_body().get('layout', 'single')
    run = CAPTURE.capture(layout)
    return jsonify(run.to_dict()), 201


@app.route('/api/capture/<run_id>', methods=['GET'])
def get_capture(run_id):
    return jsonify(CAPTURE.get_run(run_id).to_dict())


@app.route('/api/capture/<run_id>/keep', methods=['POST'])
def keep_capture(run_id):
    """Body: {template_id?, overrides?, session_id?}"""
    data = get_json_body()
    photo = CAPTURE.keep(
        run_id,
        template_id=data.get('template_id'),
        overrides=data.get('overrides'),
        session_id=data.get('session_id'),
    )
    return jsonify(photo_json(photo)), 201


@app.route('/api/capture/<run_id>/discard', methods=['POST'])
def discard_capture(run_id):
    CAPTURE.discard(run_id)
    return jsonify({'success': True})


@app.route('/api/capture/abort', methods=['POST'])
def abort_capture():
    return jsonify({'aborted': CAPTURE.abort()})


# ============================================================================
# ANALYTICS
# ============================================================================

@app.route('/api/analytics', methods=['GET'])
def list_analytics():
    events = ANALYTICS.list_events(
        event_type=request.args.get('type'),
        limit=request.args.get('limit', 100, type=int),
    )
    return jsonify({'events': events})


# ============================================================================
# LOCAL RESOURCES
# ============================================================================

def is_allowed_resource(path):
    """Save directory, template directory, or a path a photo row points at"""
    settings = SETTINGS_SERVICE.get_settings()
    for root in (settings.save_directory, STORE.default_save_directory, STORE.template_directory):
        if is_within(path, root):
            return True
    row = STORE.connection.execute(
        "SELECT 1 FROM photos WHERE filepath = ? OR thumbnail_path = ? LIMIT 1", (path, path)
    ).fetchone()
    return row is not None


@app.route('/local-resource/<path:resource>')
def local_resource(resource):
    """Read-only access to stored media by absolute path"""
    path = resolve_local_resource(resource)
    if not is_allowed_resource(path):
        return jsonify({'error': 'Access denied'}), 403
    if not os.path.isfile(path):
        return jsonify({'error': 'File not found on disk'}), 404
    return send_file(path)


if __name__ == '__main__':
    print("\n📸 Photobooth Starting...")

    server_config = config.load_config()
    configure_logging(config.get_log_directory(), server_config.get('log_level', 'INFO'))

    try:
        store = init_services()
    except PhotoboothError as e:
        print(f"❌ Database initialization failed: {e}")
        raise SystemExit(1)

    print(f"✅ Database: {store.db_path}")
    created = TEMPLATE_SERVICE.apply_defaults()
    if created:
        print(f"✅ Seeded {len(created)} default templates")

    host = server_config.get('host', '127.0.0.1')
    port = server_config.get('port', 5001)
    print(f"🌐 Open: http://{host}:{port}\n")

    # Single-threaded: one capture run and one store writer at a time
    app.run(debug=server_config.get('debug', False), port=port, host=host, threaded=False)
