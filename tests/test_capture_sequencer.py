"""Tests for the countdown / shutter state machine."""

import pytest

from capture_sequencer import (
    CaptureCues, CaptureSequencer, CaptureSettings, CaptureState, RunStatus,
)
from conftest import BLUE, GREEN, RED, YELLOW, FakeFrameSource
from errors import CaptureCancelled, CaptureError, DeviceError, InvalidLayoutError
from frame_source import FrameSourceConfig


class RecordingCues(CaptureCues):
    def __init__(self):
        self.events = []
        super().__init__(
            on_tick=lambda run, n: self.events.append(('tick', n)),
            on_flash=lambda run: self.events.append(('flash',)),
            on_shutter_sound=lambda run: self.events.append(('sound',)),
            on_shot=lambda run, index, frame: self.events.append(('shot', index)),
            on_complete=lambda run: self.events.append(('complete',)),
            on_error=lambda run, error: self.events.append(('error', str(error))),
        )

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


@pytest.fixture
def cues():
    return RecordingCues()


@pytest.fixture
def started(frame_source, scheduler, cues):
    sequencer = CaptureSequencer(frame_source, scheduler, cues)
    sequencer.start_camera(FrameSourceConfig())
    return sequencer


@pytest.mark.parametrize('layout, shots', [('single', 1), ('strip-3', 3), ('strip-4', 4)])
def test_run_takes_one_frame_per_slot(started, scheduler, layout, shots) -> None:
    run = started.start_run(layout, CaptureSettings(countdown_duration=2))
    scheduler.run()

    assert run.status == RunStatus.COMPLETE
    assert len(run.frames) == shots
    assert started.state == CaptureState.IDLE


def test_frames_are_kept_in_capture_order(started, scheduler) -> None:
    run = started.start_run('strip-4', CaptureSettings(countdown_duration=1))
    scheduler.run()

    colors = [image.getpixel((0, 0)) for image in started.keep(run)]
    assert colors == [RED, GREEN, BLUE, YELLOW]
    assert run.status == RunStatus.KEPT


def test_countdown_ticks_once_per_second_per_shot(started, scheduler, cues) -> None:
    started.start_run('strip-3', CaptureSettings(countdown_duration=3))
    scheduler.run()

    assert cues.of('tick') == [('tick', 3), ('tick', 2), ('tick', 1)] * 3


def test_zero_countdown_fires_no_ticks(started, scheduler, cues) -> None:
    run = started.start_run('strip-3', CaptureSettings(countdown_duration=0))
    scheduler.run()

    assert cues.of('tick') == []
    assert len(run.frames) == 3


def test_countdown_timing_uses_the_scheduler(started, scheduler) -> None:
    run = started.start_run('strip-3', CaptureSettings(countdown_duration=3))
    assert started.state == CaptureState.COUNTDOWN
    assert started.seconds_left == 3

    scheduler.advance(2.0)
    assert started.seconds_left == 1
    assert run.frames == []

    scheduler.advance(1.0)
    assert len(run.frames) == 1
    assert started.state == CaptureState.CAPTURED

    # Inter-shot delay, then the next countdown begins
    scheduler.advance(1.5)
    assert started.state == CaptureState.COUNTDOWN
    assert started.seconds_left == 3


def test_flash_and_sound_cues_follow_settings(started, scheduler, cues) -> None:
    started.start_run('single', CaptureSettings(countdown_duration=0, enable_flash=False,
                                                enable_sound=True))
    scheduler.run()

    assert cues.of('flash') == []
    assert cues.of('sound') == [('sound',)]


def test_single_shot_with_zero_countdown_completes_immediately(started, cues) -> None:
    run = started.start_run('single', CaptureSettings(countdown_duration=0))

    assert run.status == RunStatus.COMPLETE
    assert cues.events[-1] == ('complete',)


def test_abort_mid_run_discards_frames(started, scheduler) -> None:
    run = started.start_run('strip-4', CaptureSettings(countdown_duration=1))
    scheduler.advance(1.0)
    scheduler.advance(2.5)
    assert len(run.frames) == 2

    assert started.abort() is True

    assert run.status == RunStatus.CANCELLED
    assert isinstance(run.error, CaptureCancelled)
    assert run.frames == []
    assert started.state == CaptureState.IDLE
    assert scheduler.pending == 0
    with pytest.raises(CaptureError):
        started.keep(run)


def test_abort_when_idle_is_false(started) -> None:
    assert started.abort() is False


def test_frame_failure_aborts_whole_run(scheduler, cues) -> None:
    source = FakeFrameSource(fail_at=1)
    sequencer = CaptureSequencer(source, scheduler, cues)
    sequencer.start_camera(FrameSourceConfig())

    run = sequencer.start_run('strip-3', CaptureSettings(countdown_duration=0))
    scheduler.run()

    assert run.status == RunStatus.FAILED
    assert run.frames == []
    assert cues.of('error') == [('error', 'Frame source not ready')]
    assert sequencer.state == CaptureState.IDLE


def test_reading_before_camera_start_fails_run(frame_source, scheduler) -> None:
    sequencer = CaptureSequencer(frame_source, scheduler)
    run = sequencer.start_run('single', CaptureSettings(countdown_duration=0))
    assert run.status == RunStatus.FAILED


def test_device_error_leaves_sequencer_idle(scheduler) -> None:
    sequencer = CaptureSequencer(FakeFrameSource(start_error='No camera'), scheduler)
    with pytest.raises(DeviceError):
        sequencer.start_camera(FrameSourceConfig())
    assert sequencer.state == CaptureState.IDLE
    assert sequencer.current_run is None


def test_unplugged_camera_mid_run_returns_to_idle(scheduler, cues) -> None:
    source = FakeFrameSource(fail_at=0, fail_error=DeviceError('Camera unplugged'))
    sequencer = CaptureSequencer(source, scheduler, cues)
    sequencer.start_camera(FrameSourceConfig())

    run = sequencer.start_run('single', CaptureSettings(countdown_duration=0))

    assert run.status == RunStatus.FAILED
    assert isinstance(run.error, DeviceError)
    assert sequencer.state == CaptureState.IDLE
    assert not sequencer.busy

    retry = sequencer.start_run('single', CaptureSettings(countdown_duration=0))
    assert retry.status == RunStatus.COMPLETE


def test_unexpected_grab_error_becomes_capture_error(scheduler, cues) -> None:
    source = FakeFrameSource(fail_at=1, fail_error=RuntimeError('conversion failed'))
    sequencer = CaptureSequencer(source, scheduler, cues)
    sequencer.start_camera(FrameSourceConfig())

    run = sequencer.start_run('strip-3', CaptureSettings(countdown_duration=0))
    scheduler.run()

    assert run.status == RunStatus.FAILED
    assert isinstance(run.error, CaptureError)
    assert isinstance(run.error.__cause__, RuntimeError)
    assert run.frames == []
    assert not sequencer.busy


def test_only_one_run_at_a_time(started) -> None:
    started.start_run('strip-3', CaptureSettings(countdown_duration=3))
    with pytest.raises(CaptureError):
        started.start_run('single', CaptureSettings())


def test_template_layout_cannot_be_captured(started) -> None:
    with pytest.raises(InvalidLayoutError):
        started.start_run('template', CaptureSettings())


def test_discard_releases_frames(started, scheduler) -> None:
    run = started.start_run('strip-3', CaptureSettings(countdown_duration=0))
    scheduler.run()

    started.discard(run)

    assert run.status == RunStatus.DISCARDED
    assert run.frames == []


def test_settings_snapshot_taken_from_record(settings_service) -> None:
    snapshot = CaptureSettings.from_settings(settings_service.get_settings())
    assert snapshot == CaptureSettings(countdown_duration=3, enable_flash=True, enable_sound=True)
