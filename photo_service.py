"""
Photo Service - writes finished photos to disk and records them

save flow:
    1. resolve save directory (settings override, else default) + YYYY-MM-DD folder
    2. generate a collision-resistant filename
    3. encode primary + 300x300 thumbnail, write both
    4. read back file size, take pixel size from the bitmap
    5. insert the photos row
    6. return the Photo record

Filesystem and database are not transactional: if the insert fails after
the files are written, the files stay on disk and the error propagates.

delete flow: files first (missing files ignored), then the row.
"""

import json
import logging
import os
import uuid
from datetime import datetime

from compositor import encode_image, encode_thumbnail, load_image
from errors import NotFoundError
from file_operations import (
    cleanup_empty_folders, date_folder, generate_photo_filename,
    remove_file_best_effort, thumbnail_filename,
)
from group_service import recount_groups
from models import FilterMetadata, Photo, parse_layout
from photo_filters import apply_filters

logger = logging.getLogger(__name__)


class PhotoService:

    def __init__(self, store, settings_service, session_service=None):
        """
        Args:
            store: PhotoboothStore
            settings_service: SettingsService (save dir, format, quality)
            session_service: optional SessionService; owned-photo counts are
                refreshed on save/delete when given
        """
        self.store = store
        self.settings_service = settings_service
        self.session_service = session_service

    def get_save_directory(self, settings=None):
        """Settings override, else the default directory (created on demand)"""
        settings = settings or self.settings_service.get_settings()
        save_directory = settings.save_directory or self.store.default_save_directory
        os.makedirs(save_directory, exist_ok=True)
        return save_directory

    def save(self, image_bytes, session_id=None, layout_type='single', metadata=None):
        """Save raw encoded image bytes (JPEG/PNG/HEIC) as a new photo"""
        return self.save_image(load_image(image_bytes), session_id=session_id,
                               layout_type=layout_type, metadata=metadata)

    def save_image(self, img, session_id=None, layout_type='single', metadata=None,
                   photo_format=None, quality=None, settings=None, has_overlay=False, has_filter=False):
        """
        Encode and store a bitmap, then insert its photos row.

        Args:
            img: PIL image
            session_id: owning session (optional)
            layout_type: 'single' | 'strip-3' | 'strip-4' | 'template'
            metadata: dict (serialized to JSON) or pre-serialized str
            photo_format: override settings photo_format
            quality: override settings photo_quality
            settings: settings snapshot (defaults to the current row)
            has_overlay: a template was applied
            has_filter: edit filters were applied

        Returns:
            Photo
        """
        layout_type = parse_layout(layout_type).value
        settings = settings or self.settings_service.get_settings()
        photo_format = photo_format or settings.photo_format or 'jpg'
        quality = quality or settings.photo_quality or 80

        now = datetime.now()
        photo_id = str(uuid.uuid4())

        # Encode before touching the disk so encoding errors write nothing
        primary_bytes = encode_image(img, photo_format, quality, taken_at=now)
        thumbnail_bytes = encode_thumbnail(img)

        photo_dir = os.path.join(self.get_save_directory(settings), date_folder(now))
        os.makedirs(photo_dir, exist_ok=True)

        filename = generate_photo_filename(photo_format, int(now.timestamp() * 1000))
        filepath = os.path.join(photo_dir, filename)
        thumbnail_path = os.path.join(photo_dir, thumbnail_filename(filename))

        with open(filepath, 'wb') as f:
            f.write(primary_bytes)
        with open(thumbnail_path, 'wb') as f:
            f.write(thumbnail_bytes)

        if isinstance(metadata, (dict, list)):
            metadata = json.dumps(metadata)

        photo = Photo(
            id=photo_id,
            session_id=session_id,
            filename=filename,
            filepath=os.path.abspath(filepath),
            thumbnail_path=os.path.abspath(thumbnail_path),
            width=img.width,
            height=img.height,
            file_size=os.path.getsize(filepath),
            taken_at=now.isoformat(),
            layout_type=layout_type,
            metadata=metadata,
            has_overlay=has_overlay,
            has_filter=has_filter,
        )

        try:
            self.store.connection.execute("""
                INSERT INTO photos (
                    id, session_id, filename, filepath, thumbnail_path,
                    width, height, file_size, taken_at, layout_type, metadata,
                    has_overlay, has_filter
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                photo.id, photo.session_id, photo.filename, photo.filepath,
                photo.thumbnail_path, photo.width, photo.height, photo.file_size,
                photo.taken_at, photo.layout_type, photo.metadata,
                int(photo.has_overlay), int(photo.has_filter),
            ))
        except Exception as e:
            logger.error(f"Error saving photo {photo_id} (files left at {filepath}): {e}")
            raise

        if session_id and self.session_service is not None:
            self.session_service.update_photo_count(session_id)

        logger.info(f"Photo saved: {photo_id} at {filepath}")
        return photo

    def list_photos(self, limit=100, offset=0):
        rows = self.store.connection.execute(
            "SELECT * FROM photos ORDER BY taken_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [Photo.from_row(row) for row in rows]

    def list_session_photos(self, session_id):
        rows = self.store.connection.execute(
            "SELECT * FROM photos WHERE session_id = ? ORDER BY taken_at ASC",
            (session_id,),
        ).fetchall()
        return [Photo.from_row(row) for row in rows]

    def find_photo(self, photo_id):
        row = self.store.connection.execute(
            "SELECT * FROM photos WHERE id = ?", (photo_id,)
        ).fetchone()
        return Photo.from_row(row) if row else None

    def get_photo(self, photo_id) -> Photo:
        photo = self.find_photo(photo_id)
        if photo is None:
            raise NotFoundError('photo', photo_id)
        return photo

    def delete_photo(self, photo_id):
        """
        Remove the primary and thumbnail files, then the row.

        A missing file is ignored; any other file error aborts before the
        row is touched.
        """
        photo = self.get_photo(photo_id)

        try:
            remove_file_best_effort(photo.filepath)
            remove_file_best_effort(photo.thumbnail_path)
        except OSError as e:
            logger.error(f"Error deleting files for photo {photo_id}: {e}")
            raise

        self.store.connection.execute("DELETE FROM photos WHERE id = ?", (photo_id,))
        recount_groups(self.store.connection)

        photo_dir = os.path.dirname(photo.filepath)
        cleanup_empty_folders(photo.filepath, os.path.dirname(photo_dir))

        if photo.session_id and self.session_service is not None:
            self.session_service.update_photo_count(photo.session_id)

        logger.info(f"Photo deleted: {photo_id}")
        return True

    def display_path(self, photo):
        """
        Path the gallery should show: thumbnail, else primary, else None
        (caller shows its placeholder).
        """
        for path in (photo.thumbnail_path, photo.filepath):
            if path and os.path.isfile(path):
                return path
        return None

    def save_filtered_copy(self, photo_id, filter_settings):
        """Apply edit filters to a stored photo and save the result as a new photo"""
        photo = self.get_photo(photo_id)
        with open(photo.filepath, 'rb') as f:
            source = load_image(f.read())
        result = apply_filters(source, filter_settings)

        metadata = FilterMetadata(
            original_photo_id=photo.id,
            filter_type=filter_settings.type.value,
            brightness=filter_settings.brightness,
            contrast=filter_settings.contrast,
            timestamp=datetime.now().isoformat(),
        )
        new_photo = self.save_image(
            result,
            session_id=photo.session_id,
            layout_type=photo.layout_type,
            metadata=metadata.to_dict(),
            has_filter=True,
        )
        logger.info(f"Filtered copy of {photo_id} saved as {new_photo.id}")
        return new_photo
