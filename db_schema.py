"""
Single Source of Truth for Database Schema

Schema changes are declared here as an ordered list of named migrations.
migrate_db.run_migrations() applies the ones missing from the `migrations`
ledger, in list order, each inside its own transaction.

Rules:
- Never edit or reorder a migration that has shipped; append a new one.
- Migrations are additive only (new tables, new columns with defaults).
- One SQL statement per list entry (statements run inside a transaction,
  so no executescript()).

Version History:
- 001: settings, sessions, photos, templates, print_jobs
- 002: analytics_events append log
- 003: template canvas/overlay columns
- 004: groups + group_photos association
"""

from collections import namedtuple

Migration = namedtuple('Migration', ['name', 'statements'])

MIGRATIONS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS migrations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

SETTINGS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        camera_device_id TEXT,
        resolution TEXT DEFAULT '1920x1080',
        countdown_duration INTEGER DEFAULT 3,
        enable_flash BOOLEAN DEFAULT 1,
        enable_sound BOOLEAN DEFAULT 1,
        save_directory TEXT,
        photo_format TEXT DEFAULT 'jpg',
        photo_quality INTEGER DEFAULT 95,
        printer_id TEXT,
        auto_print BOOLEAN DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

SESSIONS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        name TEXT,
        started_at TEXT DEFAULT CURRENT_TIMESTAMP,
        ended_at TEXT,
        photo_count INTEGER DEFAULT 0,
        status TEXT DEFAULT 'active' CHECK (status IN ('active', 'completed', 'cancelled'))
    )
"""

PHOTOS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS photos (
        id TEXT PRIMARY KEY,
        session_id TEXT,
        filename TEXT NOT NULL,
        filepath TEXT NOT NULL,
        thumbnail_path TEXT,
        width INTEGER,
        height INTEGER,
        file_size INTEGER,
        taken_at TEXT DEFAULT CURRENT_TIMESTAMP,
        layout_type TEXT DEFAULT 'single',
        has_overlay BOOLEAN DEFAULT 0,
        has_filter BOOLEAN DEFAULT 0,
        metadata TEXT,
        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE SET NULL
    )
"""

TEMPLATES_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS templates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        layout_type TEXT NOT NULL,
        frame_path TEXT,
        overlay_data TEXT,
        is_active BOOLEAN DEFAULT 1,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

# Schema only: printing is handled by an external collaborator
PRINT_JOBS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS print_jobs (
        id TEXT PRIMARY KEY,
        photo_id TEXT NOT NULL,
        printer_id TEXT,
        status TEXT DEFAULT 'pending' CHECK (status IN ('pending', 'printing', 'completed', 'failed', 'cancelled')),
        copies INTEGER DEFAULT 1,
        error_message TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        completed_at TEXT,
        FOREIGN KEY (photo_id) REFERENCES photos(id) ON DELETE CASCADE
    )
"""

INITIAL_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_photos_session ON photos(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_photos_taken_at ON photos(taken_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status)",
    "CREATE INDEX IF NOT EXISTS idx_print_jobs_status ON print_jobs(status)",
]

ANALYTICS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS analytics_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        event_data TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

ANALYTICS_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_analytics_type ON analytics_events(event_type)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_date ON analytics_events(created_at DESC)",
]

TEMPLATE_LAYOUT_COLUMNS = [
    "ALTER TABLE templates ADD COLUMN background_color TEXT DEFAULT '#ffffff'",
    "ALTER TABLE templates ADD COLUMN width INTEGER DEFAULT 1800",
    "ALTER TABLE templates ADD COLUMN height INTEGER DEFAULT 1200",
    "ALTER TABLE templates ADD COLUMN text_overlays TEXT",
    "ALTER TABLE templates ADD COLUMN is_default BOOLEAN DEFAULT 0",
    "ALTER TABLE templates ADD COLUMN thumbnail_path TEXT",
]

GROUPS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        photo_count INTEGER DEFAULT 0,
        thumbnail_path TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

# No uniqueness on (group_id, photo_id): callers avoid re-adding
GROUP_PHOTOS_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS group_photos (
        group_id INTEGER NOT NULL,
        photo_id TEXT NOT NULL,
        added_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (group_id) REFERENCES groups(id) ON DELETE CASCADE,
        FOREIGN KEY (photo_id) REFERENCES photos(id) ON DELETE CASCADE
    )
"""

GROUP_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_group_photos_group ON group_photos(group_id)",
    "CREATE INDEX IF NOT EXISTS idx_group_photos_photo ON group_photos(photo_id)",
]

MIGRATIONS = [
    Migration('001_initial_schema', [
        SETTINGS_TABLE_SCHEMA,
        SESSIONS_TABLE_SCHEMA,
        PHOTOS_TABLE_SCHEMA,
        TEMPLATES_TABLE_SCHEMA,
        PRINT_JOBS_TABLE_SCHEMA,
        *INITIAL_INDICES,
    ]),
    Migration('002_add_analytics', [
        ANALYTICS_TABLE_SCHEMA,
        *ANALYTICS_INDICES,
    ]),
    Migration('003_template_layout_columns', TEMPLATE_LAYOUT_COLUMNS),
    Migration('004_add_groups', [
        GROUPS_TABLE_SCHEMA,
        GROUP_PHOTOS_TABLE_SCHEMA,
        *GROUP_INDICES,
    ]),
]

SCHEMA_VERSION = len(MIGRATIONS)

TABLES = [
    'migrations', 'settings', 'sessions', 'photos', 'templates',
    'print_jobs', 'analytics_events', 'groups', 'group_photos',
]


def get_schema_info():
    """
    Get human-readable schema information for documentation.

    Returns:
        dict: version and the ordered migration names
    """
    return {
        'version': SCHEMA_VERSION,
        'migrations': [m.name for m in MIGRATIONS],
        'tables': TABLES,
    }
