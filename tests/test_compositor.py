"""Tests for strip composition, template layering and encoding."""

from io import BytesIO

import pytest
from PIL import Image

from compositor import (
    STRIP_PHOTO_HEIGHT, STRIP_PHOTO_WIDTH, TextLayer, apply_template, compose_strip,
    cover_fit, encode_image, escape_markup, strip_canvas_size, strip_slot_origin,
    substitute_placeholders,
)
from conftest import BLUE, GREEN, RED, YELLOW, make_frame
from errors import CompositionError, InvalidLayoutError, TemplateNotFoundError
from models import TemplateInput, TemplateOverrides, TextOverlay


def close_to(actual, expected, tolerance=3):
    return all(abs(a - e) <= tolerance for a, e in zip(actual, expected))


def slot_center(index):
    x, y = strip_slot_origin(index)
    return x + STRIP_PHOTO_WIDTH // 2, y + STRIP_PHOTO_HEIGHT // 2


def make_template(template_service, **overrides):
    data = {'name': 'T', 'layout_type': 'single', 'width': 400, 'height': 300,
            'background_color': '#000000'}
    data.update(overrides)
    return template_service.create_template(TemplateInput.from_dict(data))


def test_strip_canvas_sizes() -> None:
    assert strip_canvas_size(3) == (640, 1260)
    assert strip_canvas_size(4) == (640, 1690)


def test_strip_places_first_shot_at_the_top() -> None:
    colors = [RED, GREEN, BLUE, YELLOW]
    strip = compose_strip([make_frame(c) for c in colors])

    assert strip.size == strip_canvas_size(4)
    for index, color in enumerate(colors):
        assert close_to(strip.getpixel(slot_center(index)), color)


def test_strip_cover_fits_odd_aspect_frames() -> None:
    strip = compose_strip([make_frame(RED, (100, 900)) for _ in range(3)])
    x, y = strip_slot_origin(2)
    # Slot corners inside the border are still photo pixels
    assert close_to(strip.getpixel((x + 5, y + 5)), RED)
    assert close_to(strip.getpixel((x + STRIP_PHOTO_WIDTH - 6, y + STRIP_PHOTO_HEIGHT - 6)), RED)


def test_cover_fit_exact_size() -> None:
    assert cover_fit(make_frame(RED, (1920, 1080)), (300, 300)).size == (300, 300)
    assert cover_fit(make_frame(RED, (10, 10)), (600, 400)).size == (600, 400)


@pytest.mark.parametrize('layout, count', [('single', 1), ('strip-3', 3), ('strip-4', 4)])
def test_compose_accepts_matching_frame_count(compositor, layout, count) -> None:
    image = compositor.compose([make_frame(RED) for _ in range(count)], layout)
    expected = (640, 480) if layout == 'single' else strip_canvas_size(count)
    assert image.size == expected


def test_compose_rejects_wrong_frame_count(compositor) -> None:
    with pytest.raises(CompositionError):
        compositor.compose([make_frame(RED)] * 2, 'strip-3')


def test_compose_rejects_unknown_layout(compositor) -> None:
    with pytest.raises(InvalidLayoutError):
        compositor.compose([make_frame(RED)], 'collage')


def test_compose_with_missing_template_fails(compositor) -> None:
    with pytest.raises(TemplateNotFoundError):
        compositor.compose([make_frame(RED)], 'single', template_id='missing')


def test_compose_with_template_uses_template_canvas(compositor, template_service) -> None:
    template = make_template(template_service)
    image = compositor.compose([make_frame(RED)] * 3, 'strip-3', template_id=template.id)
    assert image.size == (400, 300)


def test_frame_art_sits_above_photo(template_service, tmp_path) -> None:
    frame = Image.new('RGBA', (400, 300), BLUE + (255,))
    frame.paste((0, 0, 0, 0), (50, 50, 350, 250))
    frame_path = str(tmp_path / 'frame.png')
    frame.save(frame_path)
    template = make_template(template_service, frame_path=frame_path)

    result = apply_template(make_frame(RED), template)

    assert close_to(result.getpixel((5, 5)), BLUE)
    assert close_to(result.getpixel((200, 150)), RED)


def test_missing_frame_art_is_skipped(template_service, tmp_path) -> None:
    template = make_template(template_service, frame_path=str(tmp_path / 'gone.png'))
    result = apply_template(make_frame(RED), template)
    assert close_to(result.getpixel((200, 150)), RED)


def test_text_layer_renders_overlay_text(template_service) -> None:
    overlay = {'id': 'a', 'text': '{{guestName}}', 'x': 200, 'y': 150, 'fontSize': 40,
               'color': '#ffffff', 'fontFamily': 'Arial', 'align': 'center'}
    template = make_template(template_service, text_overlays=[overlay])

    layer = TextLayer.from_template(template, TemplateOverrides(guest_name='Ann'))
    assert layer.render().getbbox() is not None

    empty = TextLayer.from_template(template, TemplateOverrides())
    assert empty.render().getbbox() is None


def test_text_layer_markup_is_escaped() -> None:
    overlay = TextOverlay(id='a', text='{{customText}}', x=10, y=20, font_size=12,
                          color='#123456', font_family='Arial', align='center', rotation=30)
    layer = TextLayer(100, 100, [overlay], TemplateOverrides(custom_text='<Ann & Bob>'))

    svg = layer.to_svg()

    assert '&lt;Ann &amp; Bob&gt;' in svg
    assert 'text-anchor="middle"' in svg
    assert 'rotate(30 10 20)' in svg


def test_placeholders_replace_every_occurrence() -> None:
    overrides = TemplateOverrides(guest_name='Ann', event_date='2024-06-01')
    text = '{{guestName}} / {{guestName}} on {{eventDate}} {{customText}}'
    assert substitute_placeholders(text, overrides) == 'Ann / Ann on 2024-06-01 '


def test_escape_markup() -> None:
    assert escape_markup('"a" & \'b\'') == '&quot;a&quot; &amp; &apos;b&apos;'


def test_encode_png_is_lossless_and_jpeg_respects_format() -> None:
    image = make_frame(GREEN, (50, 40))

    png = Image.open(BytesIO(encode_image(image, 'png', 10)))
    assert png.format == 'PNG'
    assert png.convert('RGB').getpixel((0, 0)) == GREEN

    jpeg = Image.open(BytesIO(encode_image(image, 'jpg', 80)))
    assert jpeg.format == 'JPEG'

    with pytest.raises(CompositionError):
        encode_image(image, 'gif')


def ink_box(overlay, size=(400, 400), overrides=None):
    layer = TextLayer(size[0], size[1], [overlay], overrides).render()
    return layer.getbbox()


def wide_overlay(**fields):
    data = dict(id='a', text='MMMM', x=200, y=150, font_size=40, color='#ffffff',
                font_family='DejaVuSans', align='left')
    data.update(fields)
    return TextOverlay(**data)


def test_left_aligned_text_starts_at_its_anchor() -> None:
    left, top, right, bottom = ink_box(wide_overlay(align='left'))
    assert left >= 200 - 3
    assert right > 200 + 40


def test_right_aligned_text_ends_at_its_anchor() -> None:
    left, top, right, bottom = ink_box(wide_overlay(align='right'))
    assert right <= 200 + 3
    assert left < 200 - 40


def test_centered_text_straddles_its_anchor() -> None:
    left, top, right, bottom = ink_box(wide_overlay(align='center'))
    assert left < 200 < right
    assert abs((200 - left) - (right - 200)) <= 6


def test_rotation_turns_text_about_its_anchor() -> None:
    flat = ink_box(wide_overlay())
    turned = ink_box(wide_overlay(rotation=90))

    assert turned != flat
    flat_width, flat_height = flat[2] - flat[0], flat[3] - flat[1]
    turned_width, turned_height = turned[2] - turned[0], turned[3] - turned[1]
    assert flat_width > flat_height
    assert turned_height > turned_width
    # 90 degrees clockwise about (200, 150): the text now runs down from the anchor
    assert turned[0] >= 200 - 3
    assert turned[1] >= 150 - 3


def test_special_characters_render_through_the_markup() -> None:
    overlay = wide_overlay(text='{{customText}}')
    assert ink_box(overlay, overrides=TemplateOverrides(custom_text='<Ann & "Bob">')) is not None


def test_text_that_cannot_be_markup_is_a_composition_error() -> None:
    overlay = wide_overlay(text='bell\x07')
    with pytest.raises(CompositionError):
        TextLayer(400, 400, [overlay]).render()


@pytest.mark.parametrize('column, value', [
    ('width', 0),
    ('height', 0),
    ('text_overlays', '[{"id": "a", "text": "x", "x": "left", "y": 1, "fontSize": 10, '
                      '"color": "#fff", "fontFamily": "Arial"}]'),
    ('text_overlays', '[{"id": "a", "text": "x", "x": 1, "y": 1, "fontSize": 0, '
                      '"color": "#fff", "fontFamily": "Arial"}]'),
    ('background_color', 'not-a-colour'),
])
def test_malformed_stored_template_fails_composition(compositor, template_service, store,
                                                     column, value) -> None:
    template = make_template(template_service)
    store.connection.execute(f"UPDATE templates SET {column} = ? WHERE id = ?", (value, template.id))

    with pytest.raises(CompositionError):
        compositor.compose([make_frame(RED)], 'single', template_id=template.id)
