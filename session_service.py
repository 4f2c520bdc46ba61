"""
Session Service - one logical period of booth usage

Lifecycle:
    created (active) at first capture when none is active
    → photo_count refreshed as photos attach
    → ended (completed, ended_at stamped) or cancelled

The "current" session is the most recently started active one.
"""

import logging
import os
import shutil
import time
import uuid
import zipfile
from datetime import datetime

from errors import NotFoundError, ValidationError
from file_operations import remove_file_best_effort
from group_service import recount_groups
from models import Photo, Session, SessionStats, SessionStatus

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ('folder', 'zip')


class SessionService:

    def __init__(self, store):
        self.store = store

    def create_session(self, name=None) -> Session:
        now = datetime.now()
        session = Session(
            id=str(uuid.uuid4()),
            name=name or f"Session {now.strftime('%Y-%m-%d %H:%M:%S')}",
            started_at=now.isoformat(),
            ended_at=None,
            photo_count=0,
            status=SessionStatus.ACTIVE,
        )
        try:
            self.store.connection.execute(
                "INSERT INTO sessions (id, name, started_at, photo_count, status) VALUES (?, ?, ?, ?, ?)",
                (session.id, session.name, session.started_at, 0, session.status.value),
            )
        except Exception as e:
            logger.error(f"Error creating session: {e}")
            raise

        logger.info(f"Session created: {session.id}")
        return session

    def get_active_session(self) -> Session:
        """Most recently started active session, or a new one"""
        row = self.store.connection.execute(
            "SELECT * FROM sessions WHERE status = ? ORDER BY started_at DESC LIMIT 1",
            (SessionStatus.ACTIVE.value,),
        ).fetchone()
        if row:
            return Session.from_row(row)
        return self.create_session()

    def list_sessions(self):
        rows = self.store.connection.execute(
            "SELECT * FROM sessions ORDER BY started_at DESC"
        ).fetchall()
        return [Session.from_row(row) for row in rows]

    def find_session(self, session_id):
        row = self.store.connection.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return Session.from_row(row) if row else None

    def get_session(self, session_id) -> Session:
        session = self.find_session(session_id)
        if session is None:
            raise NotFoundError('session', session_id)
        return session

    def _close(self, session_id, status):
        cursor = self.store.connection.execute(
            "UPDATE sessions SET ended_at = ?, status = ? WHERE id = ?",
            (datetime.now().isoformat(), status.value, session_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError('session', session_id)
        logger.info(f"Session {status.value}: {session_id}")
        return self.get_session(session_id)

    def end_session(self, session_id) -> Session:
        return self._close(session_id, SessionStatus.COMPLETED)

    def cancel_session(self, session_id) -> Session:
        return self._close(session_id, SessionStatus.CANCELLED)

    def update_photo_count(self, session_id):
        """Set photo_count to the number of photo rows referencing the session"""
        conn = self.store.connection
        count = conn.execute(
            "SELECT COUNT(*) FROM photos WHERE session_id = ?", (session_id,)
        ).fetchone()[0]
        cursor = conn.execute(
            "UPDATE sessions SET photo_count = ? WHERE id = ?", (count, session_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError('session', session_id)
        return count

    def _session_photos(self, session_id):
        rows = self.store.connection.execute(
            "SELECT * FROM photos WHERE session_id = ? ORDER BY taken_at ASC", (session_id,)
        ).fetchall()
        return [Photo.from_row(row) for row in rows]

    def export_session(self, session_id, destination, export_format='folder'):
        """
        Copy a session's primary images out of the library.

        Args:
            session_id: session to export
            destination: existing or creatable directory
            export_format: 'folder' -> <destination>/session_<id>_<ms>/
                           'zip'    -> <destination>/session_<id>_<ms>.zip

        Returns:
            str: path of the created folder or archive
        """
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(f"Export format must be one of {', '.join(EXPORT_FORMATS)}")

        self.get_session(session_id)
        photos = self._session_photos(session_id)
        if not photos:
            raise ValidationError(f"No photos in session {session_id}")

        os.makedirs(destination, exist_ok=True)
        export_base = os.path.join(destination, f"session_{session_id}_{int(time.time() * 1000)}")
        available = [p for p in photos if os.path.isfile(p.filepath)]
        skipped = len(photos) - len(available)
        if skipped:
            logger.warning(f"Export of session {session_id}: {skipped} primary files missing, skipped")

        if export_format == 'folder':
            os.makedirs(export_base, exist_ok=True)
            for photo in available:
                shutil.copy2(photo.filepath, os.path.join(export_base, os.path.basename(photo.filepath)))
            logger.info(f"Session exported to folder: {export_base}")
            return export_base

        zip_path = f"{export_base}.zip"
        with zipfile.ZipFile(zip_path, 'w', compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for photo in available:
                archive.write(photo.filepath, arcname=os.path.basename(photo.filepath))
        logger.info(f"Session exported to ZIP: {zip_path} ({os.path.getsize(zip_path)} bytes)")
        return zip_path

    def delete_session(self, session_id):
        """
        Delete every owned photo file (best-effort), then the photo rows and
        the session row. Rows go with their files so no photo record points
        at a removed file.
        """
        self.get_session(session_id)
        for photo in self._session_photos(session_id):
            remove_file_best_effort(photo.filepath)
            remove_file_best_effort(photo.thumbnail_path)

        with self.store.transaction() as conn:
            conn.execute("DELETE FROM photos WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            recount_groups(conn)
        logger.info(f"Session deleted: {session_id}")
        return True

    def get_session_stats(self, session_id, now=None) -> SessionStats:
        session = self.get_session(session_id)
        started = datetime.fromisoformat(session.started_at)
        ended = datetime.fromisoformat(session.ended_at) if session.ended_at else (now or datetime.now())
        duration = max(0.0, (ended - started).total_seconds())
        avg = (session.photo_count / duration) * 60 if duration > 0 else 0
        return SessionStats(
            photo_count=session.photo_count,
            duration_seconds=duration,
            avg_photos_per_minute=avg,
        )
