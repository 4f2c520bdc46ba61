"""Shared test fixtures."""

from io import BytesIO

import pytest
from PIL import Image

from analytics import AnalyticsLog
from capture_pipeline import CapturePipeline
from capture_sequencer import CaptureSequencer, Scheduler
from compositor import Compositor
from db_store import PhotoboothStore
from errors import CaptureError, DeviceError
from frame_source import FrameSource
from group_service import GroupService
from photo_service import PhotoService
from session_service import SessionService
from settings_service import SettingsService
from template_service import TemplateService

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
YELLOW = (255, 255, 0)


def make_frame(color=RED, size=(640, 480)):
    return Image.new('RGB', size, color)


def encode_frame(color=RED, size=(640, 480), fmt='JPEG'):
    buffer = BytesIO()
    make_frame(color, size).save(buffer, format=fmt)
    return buffer.getvalue()


class ManualScheduler(Scheduler):
    """Virtual clock: callbacks only run when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._events = []
        self._seq = 0

    def after(self, delay, callback):
        self._seq += 1
        event = (self.now + delay, self._seq, callback)
        self._events.append(event)
        return event

    def cancel(self, handle):
        if handle in self._events:
            self._events.remove(handle)

    @property
    def pending(self):
        return len(self._events)

    def _pop_next(self):
        event = min(self._events, key=lambda e: (e[0], e[1]))
        self._events.remove(event)
        return event

    def advance(self, seconds):
        target = self.now + seconds
        while self._events and min(e[0] for e in self._events) <= target:
            due, _, callback = self._pop_next()
            self.now = due
            callback()
        self.now = target

    def run(self):
        while self._events:
            due, _, callback = self._pop_next()
            self.now = due
            callback()


class FakeFrameSource(FrameSource):
    """Frame source backed by a list of Pillow images."""

    def __init__(self, frames=None, fail_at=None, start_error=None, fail_error=None):
        self.frames = list(frames or [make_frame(c) for c in (RED, GREEN, BLUE, YELLOW)])
        self.fail_at = fail_at
        self.fail_error = fail_error
        self.start_error = start_error
        self.reads = 0
        self.started_with = None
        self._running = False

    @property
    def is_running(self):
        return self._running

    def start(self, config):
        if self.start_error:
            raise DeviceError(self.start_error)
        self.started_with = config
        self._running = True

    def read_frame(self):
        if not self._running:
            raise CaptureError("Frame source not started")
        if self.fail_at is not None and self.reads == self.fail_at:
            self.reads += 1
            raise self.fail_error or CaptureError("Frame source not ready")
        frame = self.frames[self.reads % len(self.frames)]
        self.reads += 1
        return frame.copy()

    def stop(self):
        self._running = False


@pytest.fixture
def store(tmp_path):
    store = PhotoboothStore(
        db_path=str(tmp_path / 'data' / 'photobooth.db'),
        default_save_directory=str(tmp_path / 'photos'),
        template_directory=str(tmp_path / 'templates'),
    )
    store.open()
    yield store
    store.close()


@pytest.fixture
def settings_service(store):
    return SettingsService(store)


@pytest.fixture
def session_service(store):
    return SessionService(store)


@pytest.fixture
def photo_service(store, settings_service, session_service):
    return PhotoService(store, settings_service, session_service)


@pytest.fixture
def template_service(store, photo_service):
    return TemplateService(store, photo_service)


@pytest.fixture
def group_service(store):
    return GroupService(store)


@pytest.fixture
def analytics(store):
    return AnalyticsLog(store)


@pytest.fixture
def compositor(template_service):
    return Compositor(template_service)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def frame_source():
    return FakeFrameSource()


@pytest.fixture
def sequencer(frame_source, scheduler):
    return CaptureSequencer(frame_source, scheduler)


@pytest.fixture
def pipeline(sequencer, compositor, photo_service, session_service, settings_service, analytics):
    return CapturePipeline(sequencer, compositor, photo_service, session_service,
                           settings_service, analytics)


@pytest.fixture
def client(store, frame_source, scheduler):
    import app as app_module

    app_module.init_services(store=store, frame_source=frame_source, scheduler=scheduler)
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as client:
        yield client
