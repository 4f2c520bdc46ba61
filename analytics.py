"""
Analytics - append-only usage event log in the shared store
"""

import json
import logging
from datetime import datetime

logger = logging.getLogger(__name__)


class AnalyticsLog:

    def __init__(self, store):
        self.store = store

    def record_event(self, event_type, data=None):
        cursor = self.store.connection.execute(
            "INSERT INTO analytics_events (event_type, event_data, created_at) VALUES (?, ?, ?)",
            (event_type, json.dumps(data) if data is not None else None, datetime.now().isoformat()),
        )
        logger.debug(f"Analytics event {event_type}: {data}")
        return cursor.lastrowid

    def list_events(self, event_type=None, limit=100):
        if event_type:
            rows = self.store.connection.execute(
                "SELECT * FROM analytics_events WHERE event_type = ? ORDER BY id DESC LIMIT ?",
                (event_type, limit),
            ).fetchall()
        else:
            rows = self.store.connection.execute(
                "SELECT * FROM analytics_events ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            {
                'id': row['id'],
                'event_type': row['event_type'],
                'event_data': json.loads(row['event_data']) if row['event_data'] else None,
                'created_at': row['created_at'],
            }
            for row in rows
        ]
