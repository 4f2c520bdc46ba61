"""Tests for thumbnail regeneration."""

import os

from PIL import Image

from conftest import RED, make_frame
from generate_thumbnails import find_missing_thumbnails, regenerate_missing_thumbnails


def test_regenerates_only_missing_thumbnails(store, photo_service) -> None:
    intact = photo_service.save_image(make_frame(RED))
    missing = photo_service.save_image(make_frame(RED))
    os.remove(missing.thumbnail_path)
    untracked = photo_service.save_image(make_frame(RED))
    os.remove(untracked.thumbnail_path)
    store.connection.execute("UPDATE photos SET thumbnail_path = NULL WHERE id = ?", (untracked.id,))

    assert {p.id for p in find_missing_thumbnails(store)} == {missing.id, untracked.id}

    assert regenerate_missing_thumbnails(store, progress=False) == (2, 0)

    assert find_missing_thumbnails(store) == []
    for photo_id in (missing.id, untracked.id):
        photo = photo_service.get_photo(photo_id)
        with Image.open(photo.thumbnail_path) as thumb:
            assert thumb.size == (300, 300)
    assert photo_service.get_photo(intact.id).thumbnail_path == intact.thumbnail_path


def test_missing_primary_counts_as_error(store, photo_service) -> None:
    photo = photo_service.save_image(make_frame(RED))
    os.remove(photo.thumbnail_path)
    os.remove(photo.filepath)

    assert regenerate_missing_thumbnails(store, progress=False) == (0, 1)
