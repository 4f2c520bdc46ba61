"""
File Operations - shared filesystem helpers for the photo store

Provides centralized functions for:
- Date-stamped photo folders and collision-resistant filenames
- Best-effort file removal (a missing file is not an error)
- Empty folder cleanup after deletes
- Translating /local-resource/ URLs back to absolute paths
"""

import logging
import os
import secrets
import string
import sys
import time
from datetime import datetime
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

LOCAL_RESOURCE_PREFIX = '/local-resource/'
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def date_folder(now=None):
    """YYYY-MM-DD subfolder name for a capture time"""
    return (now or datetime.now()).strftime('%Y-%m-%d')


def generate_photo_filename(extension, now_ms=None):
    """
    Build a filename that will not collide with other captures.

    Args:
        extension: 'jpg' or 'png' (no dot)
        now_ms: epoch milliseconds (default: current time)

    Returns:
        str: e.g. photo_1729159200123_k3x9qa.jpg
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = ''.join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"photo_{now_ms}_{suffix}.{extension}"


def thumbnail_filename(filename):
    """Thumbnails are always JPEG: photo_x.png -> thumb_photo_x.jpg"""
    stem = os.path.splitext(filename)[0]
    return f"thumb_{stem}.jpg"


def remove_file_best_effort(path):
    """
    Delete a file, treating "already gone" as success.

    Returns:
        bool: True if a file was removed, False if it did not exist

    Raises:
        OSError: any failure other than the file being missing
    """
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


def cleanup_empty_folders(file_path, root):
    """
    Remove now-empty folders above a deleted file, stopping at root.
    Only completely empty folders are removed.
    """
    current_dir = os.path.dirname(os.path.abspath(file_path))
    root_abs = os.path.abspath(root)

    while current_dir != root_abs and current_dir.startswith(root_abs + os.sep):
        try:
            if os.listdir(current_dir):
                break
            os.rmdir(current_dir)
            logger.info(f"Deleted empty folder: {os.path.relpath(current_dir, root_abs)}")
        except OSError as e:
            # Cleanup never fails the delete that triggered it
            logger.warning(f"Cleanup failed for {current_dir}: {e}")
            break
        current_dir = os.path.dirname(current_dir)


def resolve_local_resource(url_path, platform=None):
    """
    Map a /local-resource/<path> URL back to the absolute filesystem path.

    Percent-escapes are decoded. On Windows, URLs carry a leading separator
    before the drive letter (/C:/photos/x.jpg) which is stripped.

    Args:
        url_path: full URL path or just the part after the prefix
        platform: override sys.platform (for tests)

    Returns:
        str: absolute path
    """
    platform = platform or sys.platform
    path = url_path
    if path.startswith(LOCAL_RESOURCE_PREFIX):
        path = path[len(LOCAL_RESOURCE_PREFIX) - 1:]
    path = unquote(path)

    if platform == 'win32':
        stripped = path.lstrip('/')
        if len(stripped) >= 2 and stripped[1] == ':':
            return stripped
        return path
    if not path.startswith('/'):
        path = '/' + path
    return path


def to_local_resource_url(path):
    """Absolute path -> /local-resource/ URL"""
    normalized = path.replace('\\', '/')
    if not normalized.startswith('/'):
        normalized = '/' + normalized
    return LOCAL_RESOURCE_PREFIX.rstrip('/') + quote(normalized)


def is_within(path, root):
    """True if path resolves to somewhere under root"""
    if not root:
        return False
    path_abs = os.path.realpath(path)
    root_abs = os.path.realpath(root)
    return path_abs == root_abs or path_abs.startswith(root_abs + os.sep)
