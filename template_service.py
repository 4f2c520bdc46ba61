"""
Template Service - template records and the built-in defaults

Handles:
- CRUD over the templates table (partial updates via TemplatePatch)
- Seeding the built-in templates when the table is empty
- Applying a template to a stored photo (saved as a new 'template' photo)
"""

import logging
import uuid
from datetime import datetime

from compositor import TEMPLATE_OUTPUT_QUALITY, apply_template, load_image
from errors import TemplateNotFoundError
from models import (
    Layout, Template, TemplateInput, TemplateMetadata, TemplateOverrides,
    TemplatePatch, TextOverlay, serialize_overlays,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = [
    TemplateInput(
        name='Classic Single',
        description='Simple single photo with date overlay',
        layout_type=Layout.SINGLE.value,
        background_color='#ffffff',
        width=1800,
        height=1200,
        text_overlays=[
            TextOverlay(id='date', text='{{eventDate}}', x=900, y=1150, font_size=36,
                        font_family='Arial', color='#666666', align='center'),
        ],
        is_default=True,
    ),
    TemplateInput(
        name='Photo Strip',
        description='Vertical photo strip with branding',
        layout_type=Layout.STRIP_4.value,
        background_color='#ffffff',
        width=600,
        height=1800,
        text_overlays=[
            TextOverlay(id='branding', text='PhotoBooth Pro', x=300, y=1750, font_size=24,
                        font_family='Arial', color='#999999', align='center'),
            TextOverlay(id='guest', text='{{guestName}}', x=300, y=50, font_size=32,
                        font_family='Arial', color='#333333', align='center'),
        ],
        is_default=True,
    ),
]


class TemplateService:

    def __init__(self, store, photo_service=None):
        """
        Args:
            store: PhotoboothStore
            photo_service: PhotoService, needed only for apply_to_photo()
        """
        self.store = store
        self.photo_service = photo_service

    def create_template(self, template_input: TemplateInput) -> Template:
        template_input.validate()
        template_id = str(uuid.uuid4())
        timestamp = datetime.now().isoformat()
        try:
            self.store.connection.execute("""
                INSERT INTO templates (
                    id, name, description, layout_type, frame_path,
                    background_color, width, height, text_overlays,
                    is_default, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            """, (
                template_id,
                template_input.name,
                template_input.description,
                template_input.layout_type,
                template_input.frame_path,
                template_input.background_color,
                template_input.width,
                template_input.height,
                serialize_overlays(template_input.text_overlays),
                1 if template_input.is_default else 0,
                timestamp,
                timestamp,
            ))
        except Exception as e:
            logger.error(f"Error creating template: {e}")
            raise

        logger.info(f"Template created: {template_id}")
        return self.get_template(template_id)

    def list_templates(self, active_only=True):
        if active_only:
            query = ("SELECT * FROM templates WHERE is_active = 1 "
                     "ORDER BY is_default DESC, created_at DESC")
        else:
            query = "SELECT * FROM templates ORDER BY created_at DESC"
        rows = self.store.connection.execute(query).fetchall()
        return [Template.from_row(row) for row in rows]

    def find_template(self, template_id):
        row = self.store.connection.execute(
            "SELECT * FROM templates WHERE id = ?", (template_id,)
        ).fetchone()
        return Template.from_row(row) if row else None

    def get_template(self, template_id) -> Template:
        """Raises TemplateNotFoundError for unknown ids"""
        template = self.find_template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def update_template(self, template_id, patch: TemplatePatch) -> Template:
        """Partial update; a supplied overlay list replaces the stored one wholesale"""
        self.get_template(template_id)
        patch.validate()
        changes = patch.changes()
        if not changes:
            return self.get_template(template_id)

        columns = [f"{column} = ?" for column in changes]
        values = list(changes.values())
        columns.append("updated_at = ?")
        values.append(datetime.now().isoformat())
        values.append(template_id)

        try:
            self.store.connection.execute(
                f"UPDATE templates SET {', '.join(columns)} WHERE id = ?", values
            )
        except Exception as e:
            logger.error(f"Error updating template {template_id}: {e}")
            raise

        logger.info(f"Template updated: {template_id}")
        return self.get_template(template_id)

    def delete_template(self, template_id):
        cursor = self.store.connection.execute("DELETE FROM templates WHERE id = ?", (template_id,))
        if cursor.rowcount == 0:
            raise TemplateNotFoundError(template_id)
        logger.info(f"Template deleted: {template_id}")
        return True

    def apply_defaults(self):
        """
        Seed the built-in templates if the table is empty.

        Returns:
            list: templates created (empty when templates already existed)
        """
        count = self.store.connection.execute("SELECT COUNT(*) FROM templates").fetchone()[0]
        if count > 0:
            logger.info("Default templates already exist")
            return []

        created = [self.create_template(template_input) for template_input in DEFAULT_TEMPLATES]
        logger.info("Default templates initialized")
        return created

    def apply_to_photo(self, photo_id, template_id, overrides=None):
        """
        Apply a template to a stored photo and save the result as a new photo.

        Nothing is written when the template or photo does not exist.

        Returns:
            Photo: the new 'template' photo record
        """
        if self.photo_service is None:
            raise RuntimeError("apply_to_photo needs a PhotoService")

        overrides = overrides or TemplateOverrides()
        template = self.get_template(template_id)
        photo = self.photo_service.get_photo(photo_id)

        with open(photo.filepath, 'rb') as f:
            source = load_image(f.read())
        result = apply_template(source, template, overrides)

        metadata = TemplateMetadata(
            template_id=template.id,
            overrides=overrides,
            timestamp=datetime.now().isoformat(),
            original_photo_id=photo.id,
        )
        new_photo = self.photo_service.save_image(
            result,
            session_id=photo.session_id,
            layout_type=Layout.TEMPLATE.value,
            metadata=metadata.to_dict(),
            photo_format='jpg',
            quality=TEMPLATE_OUTPUT_QUALITY,
            has_overlay=True,
        )
        logger.info(f"Template {template_id} applied to photo {photo_id} -> {new_photo.id}")
        return new_photo
