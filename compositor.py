"""
Compositor - turns captured frames into the final photo

Provides:
- Vertical strip composition (strip-3 / strip-4) and single passthrough
- Template application: cover-fit, centered frame art, text layers
- Text layers built as SVG markup (escaped, placeholders substituted)
  and rendered with Pillow at composite time
- Encoding (jpg/png at a given quality, EXIF stamped) and 300x300 thumbnails

Usage:
    compositor = Compositor(template_service)
    image = compositor.compose(frames, 'strip-3', template_id=None)
    data = encode_image(image, 'jpg', 95)
"""

import logging
from datetime import datetime
from io import BytesIO
from xml.etree import ElementTree

import piexif
from PIL import Image, ImageColor, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from errors import CompositionError, InvalidLayoutError
from models import Layout, TemplateOverrides, is_int, parse_layout, shot_count

# Register HEIF/HEIC support for PIL
register_heif_opener()

logger = logging.getLogger(__name__)

# Strip geometry
STRIP_PHOTO_WIDTH = 600
STRIP_PHOTO_HEIGHT = 400
STRIP_SPACING = 10
STRIP_PADDING = 20
STRIP_BACKGROUND = '#ffffff'
STRIP_BORDER_COLOR = '#e5e7eb'
STRIP_BORDER_WIDTH = 2
STRIP_CAPTION = 'PhotoBooth Pro'
STRIP_CAPTION_COLOR = '#9ca3af'
STRIP_CAPTION_SIZE = 14
STRIP_CAPTION_OFFSET = 8

THUMBNAIL_SIZE = 300
THUMBNAIL_QUALITY = 80
TEMPLATE_OUTPUT_QUALITY = 95
PLACEHOLDER_COLOR = '#e5e7eb'

PLACEHOLDERS = {
    '{{guestName}}': 'guest_name',
    '{{eventDate}}': 'event_date',
    '{{customText}}': 'custom_text',
}

FALLBACK_FONTS = ['DejaVuSans.ttf', 'Arial.ttf', 'arial.ttf', 'LiberationSans-Regular.ttf']

# SVG text-anchor -> Pillow anchor (horizontal + baseline)
PIL_ANCHORS = {'start': 'ls', 'middle': 'ms', 'end': 'rs'}
SVG_NS = 'http://www.w3.org/2000/svg'


# ============================================================================
# IMAGE HELPERS
# ============================================================================

def load_image(data):
    """
    Decode image bytes (JPEG, PNG, HEIC, ...) into an oriented RGB image.

    Raises:
        CompositionError: bytes are not a readable image
    """
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise CompositionError(f"Cannot decode image: {e}") from e
    img = ImageOps.exif_transpose(img)
    if img.mode != 'RGB':
        img = img.convert('RGB')
    return img


def cover_fit(img, size):
    """
    Resize so the image covers size, then center-crop to exactly size.

    Args:
        img: PIL image
        size: (width, height)
    """
    target_width, target_height = size
    width, height = img.size
    scale = max(target_width / width, target_height / height)
    new_width = max(target_width, round(width * scale))
    new_height = max(target_height, round(height * scale))

    img = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

    left = (new_width - target_width) // 2
    top = (new_height - target_height) // 2
    return img.crop((left, top, left + target_width, top + target_height))


def load_font(family, size):
    """TrueType font by family name, falling back to common fonts, then Pillow's default"""
    candidates = [family, f"{family}.ttf", f"{family.replace(' ', '')}.ttf"] if family else []
    for name in candidates + FALLBACK_FONTS:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def parse_color(color):
    try:
        return ImageColor.getrgb(color)
    except (ValueError, AttributeError) as e:
        raise CompositionError(f"Invalid color {color!r}") from e


# ============================================================================
# STRIP COMPOSITION
# ============================================================================

def strip_canvas_size(count):
    width = STRIP_PHOTO_WIDTH + STRIP_PADDING * 2
    height = STRIP_PHOTO_HEIGHT * count + STRIP_SPACING * (count - 1) + STRIP_PADDING * 2
    return width, height


def strip_slot_origin(index):
    """Top-left corner of slot `index` (0 = first shot, top)"""
    return STRIP_PADDING, STRIP_PADDING + index * (STRIP_PHOTO_HEIGHT + STRIP_SPACING)


def compose_strip(frames):
    """
    Stack frames vertically, first shot at the top.

    Args:
        frames: list of PIL images in capture order

    Returns:
        PIL.Image (RGB)
    """
    canvas = Image.new('RGB', strip_canvas_size(len(frames)), STRIP_BACKGROUND)
    draw = ImageDraw.Draw(canvas)

    for index, frame in enumerate(frames):
        x, y = strip_slot_origin(index)
        slot = cover_fit(frame.convert('RGB'), (STRIP_PHOTO_WIDTH, STRIP_PHOTO_HEIGHT))
        canvas.paste(slot, (x, y))
        draw.rectangle(
            [x, y, x + STRIP_PHOTO_WIDTH - 1, y + STRIP_PHOTO_HEIGHT - 1],
            outline=STRIP_BORDER_COLOR,
            width=STRIP_BORDER_WIDTH,
        )

    font = load_font('Arial', STRIP_CAPTION_SIZE)
    draw.text(
        (canvas.width / 2, canvas.height - STRIP_CAPTION_OFFSET),
        STRIP_CAPTION,
        fill=STRIP_CAPTION_COLOR,
        font=font,
        anchor='ms',
    )
    return canvas


# ============================================================================
# TEMPLATE TEXT LAYER
# ============================================================================

def escape_markup(text):
    """Escape the five XML special characters"""
    return (
        text.replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", '&apos;')
    )


def substitute_placeholders(text, overrides=None):
    """Replace every {{guestName}} / {{eventDate}} / {{customText}}; missing values become ''"""
    overrides = overrides or TemplateOverrides()
    for placeholder, attr in PLACEHOLDERS.items():
        text = text.replace(placeholder, getattr(overrides, attr) or '')
    return text


class TextLayer:
    """
    The text overlays of one template, resolved against caller overrides.

    The layer is SVG markup (to_svg); render() parses that markup back and
    rasterizes each <text> element at composite time, so overlay text only
    reaches the canvas through its escaped form.
    """

    def __init__(self, width, height, overlays, overrides=None):
        self.width = width
        self.height = height
        self.items = [
            (overlay, substitute_placeholders(overlay.text, overrides))
            for overlay in overlays
        ]

    @classmethod
    def from_template(cls, template, overrides=None):
        return cls(template.width, template.height, template.overlays(), overrides)

    def __bool__(self):
        return bool(self.items)

    def to_svg(self):
        parts = [f'<svg width="{self.width}" height="{self.height}" xmlns="{SVG_NS}">']
        for overlay, text in self.items:
            attrs = [
                f'x="{overlay.x}"',
                f'y="{overlay.y}"',
                f'font-family="{escape_markup(overlay.font_family)}"',
                f'font-size="{overlay.font_size}"',
                f'fill="{escape_markup(overlay.color)}"',
                f'text-anchor="{overlay.anchor}"',
            ]
            if overlay.rotation:
                attrs.append(f'transform="rotate({overlay.rotation} {overlay.x} {overlay.y})"')
            parts.append(f'<text {" ".join(attrs)}>{escape_markup(text)}</text>')
        parts.append('</svg>')
        return '\n'.join(parts)

    def render(self):
        """
        Rasterize the markup to a transparent RGBA image of the canvas size.

        Raises:
            CompositionError: markup does not parse (e.g. control characters in text)
        """
        try:
            root = ElementTree.fromstring(self.to_svg())
        except ElementTree.ParseError as e:
            raise CompositionError(f"Text layer markup is malformed: {e}") from e

        layer = Image.new('RGBA', (int(root.get('width')), int(root.get('height'))), (0, 0, 0, 0))
        for node in root.iter(f'{{{SVG_NS}}}text'):
            text = node.text or ''
            if not text:
                continue
            x, y = float(node.get('x')), float(node.get('y'))
            font = load_font(node.get('font-family'), max(1, round(float(node.get('font-size')))))

            item = Image.new('RGBA', layer.size, (0, 0, 0, 0))
            ImageDraw.Draw(item).text(
                (x, y),
                text,
                fill=parse_color(node.get('fill')),
                font=font,
                anchor=PIL_ANCHORS[node.get('text-anchor')],
            )
            transform = node.get('transform')
            if transform:
                angle, cx, cy = (float(v) for v in transform[len('rotate('):-1].split())
                # SVG rotates clockwise, Pillow counter-clockwise
                item = item.rotate(-angle, resample=Image.Resampling.BICUBIC, center=(cx, cy))
            layer = Image.alpha_composite(layer, item)
        return layer


def apply_template(img, template, overrides=None):
    """
    Fit a photo to a template canvas and layer frame art and text on top.

    Layer order, bottom to top: background, photo, frame art, text.

    Args:
        img: PIL image
        template: models.Template
        overrides: models.TemplateOverrides

    Returns:
        PIL.Image (RGB) of size (template.width, template.height)

    Raises:
        CompositionError: stored template data Pillow cannot use
    """
    try:
        return _layer_template(img, template, overrides)
    except (ValueError, TypeError) as e:
        raise CompositionError(f"Template {template.id} cannot be applied: {e}") from e


def _layer_template(img, template, overrides):
    size = (template.width, template.height)
    if not all(is_int(side) and side >= 1 for side in size):
        raise CompositionError(f"Template {template.id} has an invalid canvas size {size}")
    canvas = Image.new('RGBA', size, parse_color(template.background_color or '#ffffff')[:3] + (255,))
    photo = cover_fit(img.convert('RGBA'), size)
    canvas = Image.alpha_composite(canvas, photo)

    if template.frame_path:
        try:
            with Image.open(template.frame_path) as frame:
                frame = frame.convert('RGBA')
                frame_layer = Image.new('RGBA', size, (0, 0, 0, 0))
                offset = ((size[0] - frame.width) // 2, (size[1] - frame.height) // 2)
                frame_layer.paste(frame, offset)
            canvas = Image.alpha_composite(canvas, frame_layer)
        except FileNotFoundError:
            logger.warning(f"Template {template.id} frame art missing: {template.frame_path}")
        except (UnidentifiedImageError, OSError) as e:
            raise CompositionError(f"Template {template.id} frame art unreadable: {e}") from e

    text_layer = TextLayer.from_template(template, overrides)
    if text_layer:
        canvas = Image.alpha_composite(canvas, text_layer.render())

    return canvas.convert('RGB')


# ============================================================================
# ENCODING
# ============================================================================

def build_exif(taken_at=None):
    """EXIF block with DateTimeOriginal and Software"""
    taken_at = taken_at or datetime.now()
    stamp = taken_at.strftime('%Y:%m:%d %H:%M:%S').encode()
    exif_dict = {
        '0th': {
            piexif.ImageIFD.Software: b'photobooth',
            piexif.ImageIFD.DateTime: stamp,
        },
        'Exif': {
            piexif.ExifIFD.DateTimeOriginal: stamp,
        },
    }
    return piexif.dump(exif_dict)


def encode_image(img, photo_format='jpg', quality=95, taken_at=None):
    """
    Encode the final photo.

    Args:
        img: PIL image
        photo_format: 'jpg' or 'png'
        quality: 0-100 (JPEG only; PNG is lossless)
        taken_at: datetime stamped into EXIF

    Returns:
        bytes
    """
    quality = max(0, min(100, int(quality)))
    buffer = BytesIO()
    exif = build_exif(taken_at)
    if img.mode != 'RGB':
        img = img.convert('RGB')
    if photo_format == 'png':
        img.save(buffer, format='PNG', optimize=True, exif=exif)
    elif photo_format == 'jpg':
        img.save(buffer, format='JPEG', quality=quality, optimize=True, exif=exif)
    else:
        raise CompositionError(f"Unsupported photo format: {photo_format}")
    return buffer.getvalue()


def make_thumbnail(img, size=THUMBNAIL_SIZE):
    """Square cover-cropped thumbnail"""
    if img.mode != 'RGB':
        img = img.convert('RGB')
    return cover_fit(img, (size, size))


def encode_thumbnail(img):
    buffer = BytesIO()
    make_thumbnail(img).save(buffer, format='JPEG', quality=THUMBNAIL_QUALITY, optimize=True)
    return buffer.getvalue()


def encode_placeholder(size=THUMBNAIL_SIZE):
    """Neutral grey square shown when a photo has no readable file"""
    buffer = BytesIO()
    Image.new('RGB', (size, size), PLACEHOLDER_COLOR).save(buffer, format='JPEG', quality=THUMBNAIL_QUALITY)
    return buffer.getvalue()


# ============================================================================
# COMPOSITOR
# ============================================================================

class Compositor:
    """
    Builds the final image for a complete, ordered batch of frames.

    Template lookup goes through the template service so that an unknown
    template id fails the whole composition.
    """

    def __init__(self, template_service=None):
        self.template_service = template_service

    def compose(self, frames, layout, template_id=None, overrides=None):
        """
        Args:
            frames: PIL images in capture order; length must match the layout
            layout: 'single' | 'strip-3' | 'strip-4'
            template_id: optional template to apply on top
            overrides: TemplateOverrides for placeholder substitution

        Returns:
            PIL.Image (RGB)

        Raises:
            InvalidLayoutError, CompositionError, TemplateNotFoundError
        """
        layout = parse_layout(layout)
        if layout == Layout.TEMPLATE:
            raise InvalidLayoutError(layout.value)
        expected = shot_count(layout)
        if len(frames) != expected:
            raise CompositionError(f"{layout.value} needs {expected} frames, got {len(frames)}")

        template = None
        if template_id:
            if self.template_service is None:
                raise CompositionError("No template service configured")
            # Raises TemplateNotFoundError before any pixel work happens
            template = self.template_service.get_template(template_id)

        if layout == Layout.SINGLE:
            image = frames[0].convert('RGB')
        else:
            image = compose_strip(frames)

        if template is not None:
            image = apply_template(image, template, overrides)

        logger.info(f"Composed {layout.value} ({len(frames)} frames, template={template_id}) -> {image.size}")
        return image
