"""
Settings Service - singleton settings row (id = 1)

The row is created by PhotoboothStore.open(); this service only reads,
patches and resets it.
"""

import logging
from datetime import datetime

from errors import NotFoundError
from models import Settings, SettingsPatch

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'camera_device_id': None,
    'resolution': '1920x1080',
    'countdown_duration': 3,
    'enable_flash': True,
    'enable_sound': True,
    'photo_format': 'jpg',
    'photo_quality': 95,
    'printer_id': None,
    'auto_print': False,
}


class SettingsService:

    def __init__(self, store):
        self.store = store

    def get_settings(self) -> Settings:
        row = self.store.connection.execute("SELECT * FROM settings WHERE id = 1").fetchone()
        if row is None:
            raise NotFoundError('settings', 1)
        return Settings.from_row(row)

    def update_settings(self, patch: SettingsPatch) -> Settings:
        """
        Apply only the fields set on the patch and refresh updated_at.

        Returns:
            Settings: the row after the update
        """
        patch.validate()
        changes = patch.changes()
        if not changes:
            return self.get_settings()

        columns = [f"{column} = ?" for column in changes]
        values = [_to_db(value) for value in changes.values()]
        columns.append("updated_at = ?")
        values.append(datetime.now().isoformat())

        try:
            self.store.connection.execute(
                f"UPDATE settings SET {', '.join(columns)} WHERE id = 1", values
            )
        except Exception as e:
            logger.error(f"Error updating settings: {e}")
            raise

        logger.info(f"Settings updated: {sorted(changes)}")
        return self.get_settings()

    def reset_settings(self) -> Settings:
        """Restore defaults; the save directory is pinned to the default location"""
        patch = SettingsPatch(save_directory=self.store.default_save_directory, **DEFAULT_SETTINGS)
        settings = self.update_settings(patch)
        logger.info("Settings reset to defaults")
        return settings


def _to_db(value):
    if isinstance(value, bool):
        return 1 if value else 0
    return value
