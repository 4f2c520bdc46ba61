"""
Photo Filters - edit adjustments applied before saving a copy

One optional colour filter (grayscale, sepia, invert) followed by
brightness and contrast percentages, where 100 leaves the image unchanged.
"""

from dataclasses import dataclass
from enum import Enum

from PIL import Image, ImageOps

from errors import ValidationError
from models import is_number


class FilterType(Enum):
    NONE = 'none'
    GRAYSCALE = 'grayscale'
    SEPIA = 'sepia'
    BRIGHTNESS = 'brightness'
    CONTRAST = 'contrast'
    INVERT = 'invert'


@dataclass
class FilterSettings:
    type: FilterType = FilterType.NONE
    brightness: int = 100
    contrast: int = 100

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        try:
            filter_type = FilterType(data.get('type', 'none'))
        except ValueError:
            raise ValidationError(f"Unknown filter type: {data.get('type')!r}") from None
        brightness = data.get('brightness', 100)
        contrast = data.get('contrast', 100)
        for name, value in (('brightness', brightness), ('contrast', contrast)):
            if not is_number(value) or value < 0:
                raise ValidationError(f"{name} must be a non-negative number")
        return cls(type=filter_type, brightness=brightness, contrast=contrast)


# Sepia matrix for Image.convert('RGB', matrix)
SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)


def _grayscale(img):
    # Plain channel average, not luminance-weighted
    gray = img.convert('L', (1 / 3, 1 / 3, 1 / 3, 0))
    return Image.merge('RGB', (gray, gray, gray))


def _adjust(img, brightness, contrast):
    brightness_factor = brightness / 100
    contrast_factor = contrast / 100
    intercept = 128 * (1 - contrast_factor)

    def level(value):
        value = min(255, value * brightness_factor)
        return int(min(255, max(0, value * contrast_factor + intercept)))

    lut = [level(v) for v in range(256)] * 3
    return img.point(lut)


def apply_filters(img, settings: FilterSettings):
    """
    Args:
        img: PIL image
        settings: FilterSettings

    Returns:
        PIL.Image (RGB)
    """
    if img.mode != 'RGB':
        img = img.convert('RGB')

    if settings.type == FilterType.GRAYSCALE:
        img = _grayscale(img)
    elif settings.type == FilterType.SEPIA:
        img = img.convert('RGB', SEPIA_MATRIX)
    elif settings.type == FilterType.INVERT:
        img = ImageOps.invert(img)

    if settings.brightness != 100 or settings.contrast != 100:
        img = _adjust(img, settings.brightness, settings.contrast)
    return img
