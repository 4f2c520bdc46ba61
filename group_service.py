"""
Group Service - named photo collections (many-to-many via group_photos)

group_photos has no uniqueness on (group_id, photo_id); add_photos()
skips ids that are already members instead.
"""

import logging
from datetime import datetime

from errors import NotFoundError, ValidationError
from models import Group, GroupPatch

logger = logging.getLogger(__name__)


def recount_groups(conn):
    """Recompute every group's photo_count (after photo rows were deleted)"""
    conn.execute(
        "UPDATE groups SET photo_count = "
        "(SELECT COUNT(*) FROM group_photos WHERE group_photos.group_id = groups.id)"
    )


class GroupService:

    def __init__(self, store):
        self.store = store

    def list_groups(self):
        rows = self.store.connection.execute("SELECT * FROM groups ORDER BY name").fetchall()
        return [Group.from_row(row) for row in rows]

    def get_group(self, group_id) -> Group:
        row = self.store.connection.execute(
            "SELECT * FROM groups WHERE id = ?", (group_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError('group', group_id)
        return Group.from_row(row)

    def create_group(self, name, description=None, thumbnail_path=None) -> Group:
        if not name:
            raise ValidationError("Group name is required")
        now = datetime.now().isoformat()
        cursor = self.store.connection.execute(
            "INSERT INTO groups (name, description, thumbnail_path, photo_count, created_at, updated_at) "
            "VALUES (?, ?, ?, 0, ?, ?)",
            (name, description, thumbnail_path, now, now),
        )
        logger.info(f"Group created: {cursor.lastrowid}")
        return self.get_group(cursor.lastrowid)

    def update_group(self, group_id, patch: GroupPatch) -> Group:
        self.get_group(group_id)
        changes = patch.changes()
        columns = [f"{column} = ?" for column in changes]
        values = list(changes.values())
        columns.append("updated_at = ?")
        values.append(datetime.now().isoformat())
        values.append(group_id)
        self.store.connection.execute(
            f"UPDATE groups SET {', '.join(columns)} WHERE id = ?", values
        )
        logger.info(f"Group updated: {group_id}")
        return self.get_group(group_id)

    def delete_group(self, group_id):
        cursor = self.store.connection.execute("DELETE FROM groups WHERE id = ?", (group_id,))
        if cursor.rowcount == 0:
            raise NotFoundError('group', group_id)
        logger.info(f"Group deleted: {group_id}")
        return True

    def _check_photos_exist(self, photo_ids):
        placeholders = ', '.join('?' for _ in photo_ids)
        rows = self.store.connection.execute(
            f"SELECT id FROM photos WHERE id IN ({placeholders})", list(photo_ids)
        ).fetchall()
        missing = set(photo_ids) - {row['id'] for row in rows}
        if missing:
            raise NotFoundError('photo', ', '.join(sorted(missing)))

    def add_photos(self, group_id, photo_ids):
        """
        Add photos to a group in one transaction and refresh its count.

        Returns:
            int: number of memberships created
        """
        self.get_group(group_id)
        photo_ids = list(dict.fromkeys(photo_ids))
        if not photo_ids:
            return 0
        self._check_photos_exist(photo_ids)

        existing = set(self.list_photo_ids(group_id))
        new_ids = [photo_id for photo_id in photo_ids if photo_id not in existing]
        now = datetime.now().isoformat()
        with self.store.transaction() as conn:
            conn.executemany(
                "INSERT INTO group_photos (group_id, photo_id, added_at) VALUES (?, ?, ?)",
                [(group_id, photo_id, now) for photo_id in new_ids],
            )
        self.update_photo_count(group_id)
        logger.info(f"Added {len(new_ids)} photos to group {group_id}")
        return len(new_ids)

    def remove_photos(self, group_id, photo_ids):
        """
        Remove every listed photo from the group in a single statement.

        Returns:
            int: memberships removed
        """
        self.get_group(group_id)
        photo_ids = list(photo_ids)
        if not photo_ids:
            return 0
        placeholders = ', '.join('?' for _ in photo_ids)
        cursor = self.store.connection.execute(
            f"DELETE FROM group_photos WHERE group_id = ? AND photo_id IN ({placeholders})",
            [group_id, *photo_ids],
        )
        self.update_photo_count(group_id)
        logger.info(f"Removed {cursor.rowcount} photos from group {group_id}")
        return cursor.rowcount

    def list_photo_ids(self, group_id):
        rows = self.store.connection.execute(
            "SELECT photo_id FROM group_photos WHERE group_id = ? ORDER BY added_at, rowid",
            (group_id,),
        ).fetchall()
        return [row['photo_id'] for row in rows]

    def update_photo_count(self, group_id):
        """Recompute the cached photo_count from group_photos"""
        conn = self.store.connection
        count = conn.execute(
            "SELECT COUNT(*) FROM group_photos WHERE group_id = ?", (group_id,)
        ).fetchone()[0]
        cursor = conn.execute("UPDATE groups SET photo_count = ? WHERE id = ?", (count, group_id))
        if cursor.rowcount == 0:
            raise NotFoundError('group', group_id)
        return count
