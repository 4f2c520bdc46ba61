#!/usr/bin/env python3
"""
Regenerate missing thumbnails for stored photos
- 300x300 center-cropped JPEG next to the primary image (thumb_<name>.jpg)
- Only photos whose thumbnail is unset or missing on disk are touched
- Shows progress bar

Usage:
    python generate_thumbnails.py [path/to/photobooth.db]
"""

import logging
import os
import sys

from PIL import Image, ImageFile
from tqdm import tqdm

from compositor import encode_thumbnail
from db_store import PhotoboothStore
from file_operations import thumbnail_filename
from models import Photo

# Allow loading truncated images (suppress warnings)
ImageFile.LOAD_TRUNCATED_IMAGES = True

logger = logging.getLogger(__name__)


def find_missing_thumbnails(store):
    """Photos whose thumbnail is unset or gone from disk"""
    rows = store.connection.execute("SELECT * FROM photos ORDER BY taken_at").fetchall()
    photos = [Photo.from_row(row) for row in rows]
    return [p for p in photos if not p.thumbnail_path or not os.path.exists(p.thumbnail_path)]


def generate_thumbnail(photo):
    """
    Write the thumbnail for one photo.

    Returns:
        str: thumbnail path
    """
    thumbnail_path = photo.thumbnail_path or os.path.join(
        os.path.dirname(photo.filepath), thumbnail_filename(photo.filename)
    )
    with Image.open(photo.filepath) as img:
        data = encode_thumbnail(img)
    with open(thumbnail_path, 'wb') as f:
        f.write(data)
    return thumbnail_path


def regenerate_missing_thumbnails(store, progress=True):
    """
    Regenerate every missing thumbnail and point the rows at the new files.

    Args:
        store: PhotoboothStore
        progress: show a tqdm progress bar

    Returns:
        tuple: (success_count, error_count)
    """
    to_generate = find_missing_thumbnails(store)
    success_count = 0
    error_count = 0

    for photo in tqdm(to_generate, desc="Progress", unit="photo", disable=not progress):
        if not os.path.exists(photo.filepath):
            error_count += 1
            logger.warning(f"Primary file missing for photo {photo.id}: {photo.filepath}")
            continue

        try:
            thumbnail_path = generate_thumbnail(photo)
        except OSError as e:
            error_count += 1
            logger.error(f"Error generating thumbnail for photo {photo.id}: {e}")
            continue

        store.connection.execute(
            "UPDATE photos SET thumbnail_path = ? WHERE id = ?",
            (os.path.abspath(thumbnail_path), photo.id),
        )
        success_count += 1

    return success_count, error_count


def main():
    print("🖼️  Photobooth Thumbnail Generator")
    print("=" * 50)

    db_path = sys.argv[1] if len(sys.argv) > 1 else None
    store = PhotoboothStore(db_path)
    store.open()

    try:
        print(f"\n📊 Database: {store.db_path}")
        missing = len(find_missing_thumbnails(store))
        print(f"   ⏳ Need to generate: {missing:,}")

        if missing == 0:
            print("\n✨ All thumbnails already generated!")
            return

        print(f"\n🚀 Generating {missing:,} thumbnails...")
        success_count, error_count = regenerate_missing_thumbnails(store)

        print("\n" + "=" * 50)
        print("✅ Thumbnail generation complete!")
        print(f"   Success: {success_count:,}")
        print(f"   Errors: {error_count:,}")
    finally:
        store.close()


if __name__ == '__main__':
    main()
