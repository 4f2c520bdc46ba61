"""
Photobooth Records - typed views over the database rows

Provides:
- Record dataclasses built from sqlite3.Row (Settings, Session, Photo, Template, Group)
- Typed patch objects listing exactly which columns an update may touch
- Typed metadata views for each producer of the photo metadata blob

Patches use the UNSET sentinel so that "leave alone" and "set to NULL"
stay distinguishable.
"""

import json
import math
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from errors import InvalidLayoutError, ValidationError, CompositionError


class _Unset:
    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


UNSET = _Unset()


class Layout(Enum):
    """Shot-count / arrangement tag for a capture run and its composite"""
    SINGLE = 'single'
    STRIP_3 = 'strip-3'
    STRIP_4 = 'strip-4'
    TEMPLATE = 'template'


SHOT_COUNTS = {
    Layout.SINGLE: 1,
    Layout.STRIP_3: 3,
    Layout.STRIP_4: 4,
}

CAPTURE_LAYOUTS = tuple(SHOT_COUNTS)


def parse_layout(value) -> Layout:
    if isinstance(value, Layout):
        return value
    try:
        return Layout(value)
    except ValueError:
        raise InvalidLayoutError(value) from None


def shot_count(layout) -> int:
    """Number of frames a capture run for this layout grabs"""
    layout = parse_layout(layout)
    if layout not in SHOT_COUNTS:
        raise InvalidLayoutError(layout.value)
    return SHOT_COUNTS[layout]


class SessionStatus(Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


PHOTO_FORMATS = ('jpg', 'png')
RESOLUTION_PATTERN = re.compile(r'^(\d+)x(\d+)$')


def parse_resolution(resolution):
    """'1920x1080' -> (1920, 1080)"""
    match = RESOLUTION_PATTERN.match(resolution) if isinstance(resolution, str) else None
    if not match:
        raise ValidationError(f"Resolution must look like WIDTHxHEIGHT, got {resolution!r}")
    return int(match.group(1)), int(match.group(2))


def _bool(value):
    return None if value is None else bool(value)


def is_number(value):
    # bool is an int subclass; JSON true/false is not a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass
class Settings:
    """Singleton settings row (id is always 1)"""
    id: int
    camera_device_id: Optional[str]
    resolution: str
    countdown_duration: int
    enable_flash: bool
    enable_sound: bool
    save_directory: Optional[str]
    photo_format: str
    photo_quality: int
    printer_id: Optional[str]
    auto_print: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            camera_device_id=row['camera_device_id'],
            resolution=row['resolution'],
            countdown_duration=row['countdown_duration'],
            enable_flash=bool(row['enable_flash']),
            enable_sound=bool(row['enable_sound']),
            save_directory=row['save_directory'],
            photo_format=row['photo_format'],
            photo_quality=row['photo_quality'],
            printer_id=row['printer_id'],
            auto_print=bool(row['auto_print']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @property
    def resolution_size(self):
        return parse_resolution(self.resolution)

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class SettingsPatch:
    """Mutable settings columns. Anything left UNSET is not touched."""
    camera_device_id: Any = UNSET
    resolution: Any = UNSET
    countdown_duration: Any = UNSET
    enable_flash: Any = UNSET
    enable_sound: Any = UNSET
    save_directory: Any = UNSET
    photo_format: Any = UNSET
    photo_quality: Any = UNSET
    printer_id: Any = UNSET
    auto_print: Any = UNSET

    READ_ONLY = ('id', 'created_at', 'updated_at')

    @classmethod
    def from_dict(cls, data):
        """Build a patch from request JSON; read-only keys are dropped, unknown keys rejected"""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            if key in cls.READ_ONLY:
                continue
            if key not in known:
                raise ValidationError(f"Unknown settings field: {key}")
            values[key] = value
        return cls(**values)

    def changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def validate(self):
        if self.resolution is not UNSET:
            parse_resolution(self.resolution)
        if self.countdown_duration is not UNSET:
            if not is_int(self.countdown_duration) or self.countdown_duration < 0:
                raise ValidationError("countdown_duration must be an integer >= 0")
        if self.photo_format is not UNSET and self.photo_format not in PHOTO_FORMATS:
            raise ValidationError(f"photo_format must be one of {', '.join(PHOTO_FORMATS)}")
        if self.photo_quality is not UNSET:
            if not is_int(self.photo_quality) or not 1 <= self.photo_quality <= 100:
                raise ValidationError("photo_quality must be an integer between 1 and 100")
        for flag in ('enable_flash', 'enable_sound', 'auto_print'):
            value = getattr(self, flag)
            if value is not UNSET and not isinstance(value, bool):
                raise ValidationError(f"{flag} must be true or false")


# ============================================================================
# SESSIONS
# ============================================================================

@dataclass
class Session:
    id: str
    name: Optional[str]
    started_at: str
    ended_at: Optional[str]
    photo_count: int
    status: SessionStatus

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            name=row['name'],
            started_at=row['started_at'],
            ended_at=row['ended_at'],
            photo_count=row['photo_count'] or 0,
            status=SessionStatus(row['status']),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
            'photo_count': self.photo_count,
            'status': self.status.value,
        }


@dataclass
class SessionStats:
    photo_count: int
    duration_seconds: float
    avg_photos_per_minute: float

    def to_dict(self):
        return {
            'photoCount': self.photo_count,
            'duration': self.duration_seconds,
            'avgPhotosPerMinute': self.avg_photos_per_minute,
        }


# ============================================================================
# PHOTOS
# ============================================================================

@dataclass
class Photo:
    id: str
    session_id: Optional[str]
    filename: str
    filepath: str
    thumbnail_path: Optional[str]
    width: int
    height: int
    file_size: int
    taken_at: str
    layout_type: str
    metadata: Optional[str] = None
    has_overlay: bool = False
    has_filter: bool = False

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            session_id=row['session_id'],
            filename=row['filename'],
            filepath=row['filepath'],
            thumbnail_path=row['thumbnail_path'],
            width=row['width'],
            height=row['height'],
            file_size=row['file_size'],
            taken_at=row['taken_at'],
            layout_type=row['layout_type'],
            metadata=row['metadata'],
            has_overlay=bool(row['has_overlay']),
            has_filter=bool(row['has_filter']),
        )

    def metadata_dict(self):
        """Decoded metadata blob ({} when absent)"""
        if not self.metadata:
            return {}
        return json.loads(self.metadata)

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class CaptureMetadata:
    """Written by a capture run that was kept"""
    timestamp: str
    photo_count: int
    shot_timestamps: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'source': 'capture',
            'timestamp': self.timestamp,
            'photoCount': self.photo_count,
            'shotTimestamps': self.shot_timestamps,
        }


@dataclass
class FilterMetadata:
    """Written when filters are applied to an existing photo"""
    original_photo_id: str
    filter_type: str
    brightness: int
    contrast: int
    timestamp: str

    def to_dict(self):
        return {
            'source': 'filter',
            'originalPhotoId': self.original_photo_id,
            'filter': {
                'type': self.filter_type,
                'brightness': self.brightness,
                'contrast': self.contrast,
            },
            'timestamp': self.timestamp,
        }


@dataclass
class TemplateOverrides:
    """Values substituted into {{guestName}}, {{eventDate}}, {{customText}}"""
    guest_name: Optional[str] = None
    event_date: Optional[str] = None
    custom_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            guest_name=data.get('guestName'),
            event_date=data.get('eventDate'),
            custom_text=data.get('customText'),
        )

    def to_dict(self):
        return {
            'guestName': self.guest_name,
            'eventDate': self.event_date,
            'customText': self.custom_text,
        }


@dataclass
class TemplateMetadata:
    """Written when a template is applied to a photo or capture"""
    template_id: str
    overrides: TemplateOverrides
    timestamp: str
    original_photo_id: Optional[str] = None

    def to_dict(self):
        data = {
            'source': 'template',
            'templateId': self.template_id,
            'overrides': self.overrides.to_dict(),
            'timestamp': self.timestamp,
        }
        if self.original_photo_id:
            data['originalPhotoId'] = self.original_photo_id
        return data


# ============================================================================
# TEMPLATES
# ============================================================================

ALIGNMENTS = ('left', 'center', 'right')
MAX_TEMPLATE_SIDE = 10000


@dataclass
class TextOverlay:
    """One text layer of a template; stored as camelCase JSON"""
    id: str
    text: str
    x: float
    y: float
    font_size: float
    color: str
    font_family: str
    align: str = 'left'
    rotation: Optional[float] = None

    @classmethod
    def from_dict(cls, data):
        try:
            overlay = cls(
                id=str(data['id']),
                text=str(data['text']),
                x=data['x'],
                y=data['y'],
                font_size=data['fontSize'],
                color=data['color'],
                font_family=data['fontFamily'],
                align=data.get('align', 'left'),
                rotation=data.get('rotation'),
            )
        except (KeyError, TypeError) as e:
            raise CompositionError(f"Malformed text overlay: {e}") from e
        if overlay.align not in ALIGNMENTS:
            raise CompositionError(f"Malformed text overlay: align must be one of {', '.join(ALIGNMENTS)}")
        if not is_number(overlay.x) or not is_number(overlay.y):
            raise CompositionError(f"Malformed text overlay {overlay.id}: x and y must be numbers")
        if not is_number(overlay.font_size) or overlay.font_size < 1:
            raise CompositionError(f"Malformed text overlay {overlay.id}: fontSize must be a number >= 1")
        if overlay.rotation is not None and not is_number(overlay.rotation):
            raise CompositionError(f"Malformed text overlay {overlay.id}: rotation must be a number")
        if not isinstance(overlay.color, str) or not isinstance(overlay.font_family, str):
            raise CompositionError(f"Malformed text overlay {overlay.id}: color and fontFamily must be strings")
        return overlay

    def to_dict(self):
        data = {
            'id': self.id,
            'text': self.text,
            'x': self.x,
            'y': self.y,
            'fontSize': self.font_size,
            'color': self.color,
            'fontFamily': self.font_family,
            'align': self.align,
        }
        if self.rotation is not None:
            data['rotation'] = self.rotation
        return data

    @property
    def anchor(self):
        """left/center/right -> start/middle/end"""
        return {'left': 'start', 'center': 'middle', 'right': 'end'}[self.align]


def parse_overlays(items):
    """Overlay list from request JSON; malformed entries are a ValidationError"""
    if items is None:
        return None
    if not isinstance(items, list):
        raise ValidationError("text_overlays must be a list")
    overlays = []
    for item in items:
        if isinstance(item, TextOverlay):
            item = item.to_dict()
        if not isinstance(item, dict):
            raise ValidationError("Each text overlay must be an object")
        try:
            overlays.append(TextOverlay.from_dict(item))
        except CompositionError as e:
            raise ValidationError(str(e)) from e
    return overlays


def check_dimension(name, value):
    """Template canvas side: positive integer"""
    if not is_number(value) or not 1 <= value <= MAX_TEMPLATE_SIDE or int(value) != value:
        raise ValidationError(f"{name} must be an integer between 1 and {MAX_TEMPLATE_SIDE}")
    return int(value)


def serialize_overlays(overlays):
    if overlays is None:
        return None
    return json.dumps([
        o.to_dict() if isinstance(o, TextOverlay) else TextOverlay.from_dict(o).to_dict()
        for o in overlays
    ])


@dataclass
class Template:
    id: str
    name: str
    description: Optional[str]
    layout_type: str
    frame_path: Optional[str]
    background_color: str
    width: int
    height: int
    text_overlays: Optional[str]
    is_default: bool
    is_active: bool
    thumbnail_path: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            layout_type=row['layout_type'],
            frame_path=row['frame_path'],
            background_color=row['background_color'],
            width=row['width'],
            height=row['height'],
            text_overlays=row['text_overlays'],
            is_default=bool(row['is_default']),
            is_active=bool(row['is_active']),
            thumbnail_path=row['thumbnail_path'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def overlays(self) -> List[TextOverlay]:
        """Decoded overlay list; malformed JSON is a CompositionError"""
        if not self.text_overlays:
            return []
        try:
            items = json.loads(self.text_overlays)
        except ValueError as e:
            raise CompositionError(f"Template {self.id} has malformed overlay data: {e}") from e
        if not isinstance(items, list):
            raise CompositionError(f"Template {self.id} overlay data is not a list")
        return [TextOverlay.from_dict(item) for item in items]

    def to_dict(self):
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['text_overlays'] = json.loads(self.text_overlays) if self.text_overlays else []
        return data


@dataclass
class TemplateInput:
    name: str
    layout_type: str
    description: Optional[str] = None
    frame_path: Optional[str] = None
    background_color: str = '#ffffff'
    width: int = 1800
    height: int = 1200
    text_overlays: Optional[List[TextOverlay]] = None
    is_default: bool = False

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        template_input = cls(
            name=data.get('name'),
            layout_type=data.get('layout_type'),
            description=data.get('description'),
            frame_path=data.get('frame_path'),
            background_color=data.get('background_color') or '#ffffff',
            width=1800 if data.get('width') is None else data['width'],
            height=1200 if data.get('height') is None else data['height'],
            text_overlays=data.get('text_overlays'),
            is_default=bool(data.get('is_default', False)),
        )
        template_input.validate()
        return template_input

    def validate(self):
        """Check every field, normalizing layout, sizes and overlays in place"""
        if not self.name or not isinstance(self.name, str):
            raise ValidationError("Template name is required")
        self.layout_type = parse_layout(self.layout_type).value
        if not isinstance(self.background_color, str):
            raise ValidationError("background_color must be a string")
        self.width = check_dimension('width', self.width)
        self.height = check_dimension('height', self.height)
        self.text_overlays = parse_overlays(self.text_overlays)


@dataclass
class TemplatePatch:
    """Mutable template columns. text_overlays replaces the whole list."""
    name: Any = UNSET
    description: Any = UNSET
    layout_type: Any = UNSET
    frame_path: Any = UNSET
    background_color: Any = UNSET
    width: Any = UNSET
    height: Any = UNSET
    text_overlays: Any = UNSET
    is_default: Any = UNSET
    is_active: Any = UNSET
    thumbnail_path: Any = UNSET

    READ_ONLY = ('id', 'created_at', 'updated_at')

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            if key in cls.READ_ONLY:
                continue
            if key not in known:
                raise ValidationError(f"Unknown template field: {key}")
            values[key] = value
        return cls(**values)

    def validate(self):
        """Check the supplied fields, normalizing them in place"""
        if self.name is not UNSET and (not self.name or not isinstance(self.name, str)):
            raise ValidationError("Template name cannot be empty")
        if self.layout_type is not UNSET:
            self.layout_type = parse_layout(self.layout_type).value
        if self.background_color is not UNSET and not isinstance(self.background_color, str):
            raise ValidationError("background_color must be a string")
        for side in ('width', 'height'):
            value = getattr(self, side)
            if value is not UNSET:
                setattr(self, side, check_dimension(side, value))
        if self.text_overlays is not UNSET:
            self.text_overlays = parse_overlays(self.text_overlays)

    def changes(self) -> Dict[str, Any]:
        """Column -> stored value, with the overlay list re-serialized"""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is UNSET:
                continue
            if f.name == 'layout_type':
                value = parse_layout(value).value
            elif f.name == 'text_overlays':
                value = serialize_overlays(value)
            elif f.name in ('is_default', 'is_active'):
                value = 1 if value else 0
            result[f.name] = value
        return result


# ============================================================================
# GROUPS
# ============================================================================

@dataclass
class Group:
    id: int
    name: str
    description: Optional[str]
    photo_count: int
    thumbnail_path: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            photo_count=row['photo_count'] or 0,
            thumbnail_path=row['thumbnail_path'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class GroupPatch:
    name: Any = UNSET
    description: Any = UNSET
    thumbnail_path: Any = UNSET

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        unknown = set(data or {}) - known - {'id', 'created_at', 'updated_at', 'photo_count'}
        if unknown:
            raise ValidationError(f"Unknown group field: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }
