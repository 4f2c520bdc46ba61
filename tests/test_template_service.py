"""Tests for template records, seeding and apply-to-photo."""

import json
import os

import pytest
from PIL import Image

from conftest import BLUE, RED, make_frame
from errors import CompositionError, TemplateNotFoundError, ValidationError
from models import TemplateInput, TemplateOverrides, TemplatePatch, TextOverlay


def make_input(**overrides):
    data = {
        'name': 'Wedding',
        'layout_type': 'single',
        'width': 400,
        'height': 300,
        'background_color': '#000000',
    }
    data.update(overrides)
    return TemplateInput.from_dict(data)


def test_create_applies_defaults(template_service) -> None:
    template = template_service.create_template(TemplateInput.from_dict({
        'name': 'Plain', 'layout_type': 'strip-3',
    }))

    assert template.width == 1800
    assert template.height == 1200
    assert template.background_color == '#ffffff'
    assert template.is_active is True
    assert template.overlays() == []


def test_create_requires_name_and_known_layout() -> None:
    with pytest.raises(ValidationError):
        TemplateInput.from_dict({'layout_type': 'single'})
    with pytest.raises(ValidationError):
        TemplateInput.from_dict({'name': 'x', 'layout_type': 'collage'})


def test_overlays_round_trip_through_storage(template_service) -> None:
    overlay = {'id': 't1', 'text': 'Hi {{guestName}}', 'x': 10, 'y': 20, 'fontSize': 18,
               'color': '#ff0000', 'fontFamily': 'Arial', 'align': 'right', 'rotation': 15}
    template = template_service.create_template(make_input(text_overlays=[overlay]))

    stored = template_service.get_template(template.id)
    assert [o.to_dict() for o in stored.overlays()] == [overlay]
    assert stored.overlays()[0].anchor == 'end'


def test_seeding_twice_creates_defaults_once(template_service) -> None:
    created = template_service.apply_defaults()
    assert [t.name for t in created] == ['Classic Single', 'Photo Strip']

    assert template_service.apply_defaults() == []
    assert len(template_service.list_templates(active_only=False)) == 2


def test_seeding_skipped_when_user_templates_exist(template_service) -> None:
    template_service.create_template(make_input())
    assert template_service.apply_defaults() == []


def test_active_listing_puts_defaults_first(template_service) -> None:
    template_service.apply_defaults()
    custom = template_service.create_template(make_input())
    hidden = template_service.create_template(make_input(name='Hidden'))
    template_service.update_template(hidden.id, TemplatePatch(is_active=False))

    active = template_service.list_templates()

    assert [t.is_default for t in active] == [True, True, False]
    assert active[-1].id == custom.id
    assert hidden.id not in [t.id for t in active]
    assert hidden.id in [t.id for t in template_service.list_templates(active_only=False)]


def test_partial_update_replaces_overlays_wholesale(template_service) -> None:
    first = TextOverlay(id='a', text='A', x=1, y=1, font_size=10, color='#000', font_family='Arial')
    second = TextOverlay(id='b', text='B', x=2, y=2, font_size=10, color='#000', font_family='Arial')
    template = template_service.create_template(make_input(text_overlays=[first.to_dict()]))

    updated = template_service.update_template(template.id, TemplatePatch(text_overlays=[second]))

    assert [o.id for o in updated.overlays()] == ['b']
    assert updated.name == template.name
    assert updated.width == template.width


def test_patch_from_dict_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        TemplatePatch.from_dict({'colour': 'red'})


def test_update_and_delete_missing_template(template_service) -> None:
    with pytest.raises(TemplateNotFoundError):
        template_service.update_template('missing', TemplatePatch(name='x'))
    with pytest.raises(TemplateNotFoundError):
        template_service.delete_template('missing')


def test_malformed_overlay_data_is_a_composition_error(template_service, store) -> None:
    template = template_service.create_template(make_input())
    store.connection.execute(
        "UPDATE templates SET text_overlays = ? WHERE id = ?", ('[{"id": "x"}]', template.id)
    )
    with pytest.raises(CompositionError):
        template_service.get_template(template.id).overlays()


def test_apply_to_photo_saves_new_template_photo(template_service, photo_service, session_service) -> None:
    session = session_service.create_session()
    original = photo_service.save_image(make_frame(RED, (800, 600)), session_id=session.id)
    template = template_service.create_template(make_input())

    result = template_service.apply_to_photo(
        original.id, template.id, TemplateOverrides(guest_name='Ann')
    )

    assert result.id != original.id
    assert result.layout_type == 'template'
    assert result.session_id == session.id
    assert result.has_overlay is True
    assert (result.width, result.height) == (400, 300)
    metadata = result.metadata_dict()
    assert metadata['templateId'] == template.id
    assert metadata['originalPhotoId'] == original.id
    assert metadata['overrides']['guestName'] == 'Ann'
    with Image.open(result.filepath) as img:
        assert img.format == 'JPEG'


def test_apply_unknown_template_writes_nothing(template_service, photo_service) -> None:
    original = photo_service.save_image(make_frame(BLUE))

    with pytest.raises(TemplateNotFoundError):
        template_service.apply_to_photo(original.id, 'missing')

    assert [p.id for p in photo_service.list_photos()] == [original.id]
    assert len(os.listdir(os.path.dirname(original.filepath))) == 2


GOOD_OVERLAY = {'id': 't1', 'text': 'Hi', 'x': 10, 'y': 20, 'fontSize': 18,
                'color': '#ff0000', 'fontFamily': 'Arial'}


@pytest.mark.parametrize('fields', [
    {'width': 0},
    {'height': -5},
    {'width': True},
    {'width': 12.5},
    {'height': 'tall'},
    {'name': 42},
    {'background_color': 7},
    {'text_overlays': {'id': 't1'}},
    {'text_overlays': ['not an object']},
    {'text_overlays': [dict(GOOD_OVERLAY, x='left')]},
    {'text_overlays': [dict(GOOD_OVERLAY, y=None)]},
    {'text_overlays': [dict(GOOD_OVERLAY, fontSize=0)]},
    {'text_overlays': [dict(GOOD_OVERLAY, fontSize=False)]},
    {'text_overlays': [dict(GOOD_OVERLAY, rotation='90deg')]},
    {'text_overlays': [dict(GOOD_OVERLAY, color=None)]},
    {'text_overlays': [dict(GOOD_OVERLAY, align='justify')]},
])
def test_create_rejects_malformed_template_data(template_service, fields) -> None:
    with pytest.raises(ValidationError):
        template_service.create_template(make_input(**fields))
    assert template_service.list_templates(active_only=False) == []


def test_create_accepts_whole_float_sizes(template_service) -> None:
    template = template_service.create_template(make_input(width=640.0, height=480))
    assert (template.width, template.height) == (640, 480)


@pytest.mark.parametrize('patch', [
    TemplatePatch(width=0),
    TemplatePatch(height=False),
    TemplatePatch(name=''),
    TemplatePatch(layout_type='collage'),
    TemplatePatch(text_overlays=[dict(GOOD_OVERLAY, fontSize=-1)]),
    TemplatePatch(text_overlays=[dict(GOOD_OVERLAY, x='left')]),
])
def test_update_rejects_malformed_template_data(template_service, patch) -> None:
    template = template_service.create_template(make_input(text_overlays=[GOOD_OVERLAY]))

    with pytest.raises(ValidationError):
        template_service.update_template(template.id, patch)

    stored = template_service.get_template(template.id)
    assert (stored.width, stored.height) == (400, 300)
    assert [o.to_dict() for o in stored.overlays()] == [dict(GOOD_OVERLAY, align='left')]


def test_update_can_clear_overlays(template_service) -> None:
    template = template_service.create_template(make_input(text_overlays=[GOOD_OVERLAY]))
    updated = template_service.update_template(template.id, TemplatePatch(text_overlays=None))
    assert updated.overlays() == []


@pytest.mark.parametrize('stored', [
    [dict(GOOD_OVERLAY, x='left')],
    [dict(GOOD_OVERLAY, fontSize=0)],
])
def test_malformed_stored_overlay_fields_are_composition_errors(template_service, store, stored) -> None:
    template = template_service.create_template(make_input())
    store.connection.execute(
        "UPDATE templates SET text_overlays = ? WHERE id = ?", (json.dumps(stored), template.id)
    )
    with pytest.raises(CompositionError):
        template_service.get_template(template.id).overlays()
