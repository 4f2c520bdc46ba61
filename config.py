"""
Application configuration - paths and .config.json

Paths default to a platform user-data directory and can be redirected with
environment variables:

    PHOTOBOOTH_DATA_DIR   base directory for db, photos, templates, logs
    PHOTOBOOTH_DB_PATH    database file (default <data dir>/photobooth.db)

Server options (host, port, debug, log_level) live in <data dir>/.config.json.
"""

import json
import logging
import os
import sys

logger = logging.getLogger(__name__)

APP_NAME = 'photobooth'
DB_FILENAME = 'photobooth.db'

DEFAULT_CONFIG = {
    'host': '127.0.0.1',
    'port': 5001,
    'debug': False,
    'log_level': 'INFO',
}


def get_user_data_dir():
    """Platform user-data directory for this app"""
    override = os.environ.get('PHOTOBOOTH_DATA_DIR')
    if override:
        return os.path.abspath(os.path.expanduser(override))

    home = os.path.expanduser('~')
    if sys.platform == 'darwin':
        base = os.path.join(home, 'Library', 'Application Support')
    elif sys.platform == 'win32':
        base = os.environ.get('APPDATA') or os.path.join(home, 'AppData', 'Roaming')
    else:
        base = os.environ.get('XDG_DATA_HOME') or os.path.join(home, '.local', 'share')
    return os.path.join(base, APP_NAME)


def get_database_path():
    return os.environ.get('PHOTOBOOTH_DB_PATH') or os.path.join(get_user_data_dir(), DB_FILENAME)


def get_default_save_directory():
    return os.path.join(get_user_data_dir(), 'photos')


def get_template_directory():
    return os.path.join(get_user_data_dir(), 'templates')


def get_log_directory():
    return os.path.join(get_user_data_dir(), 'logs')


def get_config_file():
    return os.path.join(get_user_data_dir(), '.config.json')


def load_config():
    """Load server configuration; missing or unreadable file means defaults"""
    config = dict(DEFAULT_CONFIG)
    config_file = get_config_file()
    if os.path.exists(config_file):
        try:
            with open(config_file, 'r') as f:
                config.update(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config {config_file}: {e}")
            print(f"⚠️  Failed to load config: {e}")
    return config


def save_config(config):
    """Persist server configuration to .config.json"""
    config_file = get_config_file()
    os.makedirs(os.path.dirname(config_file), exist_ok=True)
    with open(config_file, 'w') as f:
        json.dump(config, f, indent=2)
