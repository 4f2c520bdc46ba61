"""
Capture Sequencer - countdown / shutter state machine

One run per layout:

    IDLE → COUNTDOWN(n..1) → SHUTTER → CAPTURED ─┐
             ↑                                   │ more shots: wait inter_shot_delay
             └───────────────────────────────────┘
    last shot captured → IDLE, run COMPLETE (frames held in memory until kept)

All waiting goes through a Scheduler (`after(delay, callback)`), so the
suspension points are explicit and abort() can cancel the pending step.
Nothing is persisted here; a run's frames only leave memory when the
caller keeps the completed run.
"""

import logging
import sched
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from errors import CaptureCancelled, CaptureError, PhotoboothError
from models import parse_layout, shot_count

logger = logging.getLogger(__name__)

COUNTDOWN_INTERVAL = 1.0
INTER_SHOT_DELAY = 1.5


# ============================================================================
# SCHEDULERS
# ============================================================================

class Scheduler:
    """Timed callbacks; implementations decide what "waiting" means"""

    def after(self, delay, callback):
        """Run callback after delay seconds; returns a handle for cancel()"""
        raise NotImplementedError

    def cancel(self, handle):
        raise NotImplementedError

    def run(self):
        """Process scheduled callbacks until none are left"""
        raise NotImplementedError


class BlockingScheduler(Scheduler):
    """
    Single-threaded scheduler on top of sched.scheduler.

    run() sleeps between events in the calling thread and returns when no
    events are left.
    """

    def __init__(self, timefunc=time.monotonic, delayfunc=time.sleep):
        self._scheduler = sched.scheduler(timefunc, delayfunc)

    def after(self, delay, callback):
        return self._scheduler.enter(delay, 0, callback)

    def cancel(self, handle):
        try:
            self._scheduler.cancel(handle)
        except ValueError:
            # Already ran
            pass

    def run(self):
        self._scheduler.run()


# ============================================================================
# STATE
# ============================================================================

class CaptureState(Enum):
    IDLE = 'idle'
    COUNTDOWN = 'countdown'
    SHUTTER = 'shutter'
    CAPTURED = 'captured'


class RunStatus(Enum):
    RUNNING = 'running'
    COMPLETE = 'complete'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    KEPT = 'kept'
    DISCARDED = 'discarded'


@dataclass
class CaptureSettings:
    """Settings snapshot taken when a run starts"""
    countdown_duration: int = 3
    enable_flash: bool = True
    enable_sound: bool = True

    @classmethod
    def from_settings(cls, settings):
        return cls(
            countdown_duration=settings.countdown_duration,
            enable_flash=settings.enable_flash,
            enable_sound=settings.enable_sound,
        )


@dataclass
class CapturedFrame:
    image: object
    captured_at: datetime


@dataclass
class CaptureRun:
    id: str
    layout: str
    shots_required: int
    settings: CaptureSettings
    frames: List[CapturedFrame] = field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    error: Optional[Exception] = None
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def is_complete(self):
        return self.status == RunStatus.COMPLETE

    def images(self):
        return [frame.image for frame in self.frames]

    def to_dict(self):
        return {
            'id': self.id,
            'layout': self.layout,
            'shots_required': self.shots_required,
            'shots_taken': len(self.frames),
            'status': self.status.value,
            'error': str(self.error) if self.error else None,
            'started_at': self.started_at.isoformat(),
        }


def _noop(*args):
    pass


@dataclass
class CaptureCues:
    """UI hooks; every cue is optional"""
    on_tick: Callable = _noop            # (run, seconds_left)
    on_flash: Callable = _noop           # (run,)
    on_shutter_sound: Callable = _noop   # (run,)
    on_shot: Callable = _noop            # (run, index, frame)
    on_complete: Callable = _noop        # (run,)
    on_error: Callable = _noop           # (run, error)


# ============================================================================
# SEQUENCER
# ============================================================================

class CaptureSequencer:
    """
    Drives one capture run at a time against a frame source.

    Usage:
        sequencer = CaptureSequencer(frame_source, BlockingScheduler())
        run = sequencer.start_run('strip-3', CaptureSettings.from_settings(settings))
        scheduler.run()
        frames = sequencer.keep(run)
    """

    def __init__(self, frame_source, scheduler, cues=None, inter_shot_delay=INTER_SHOT_DELAY,
                 countdown_interval=COUNTDOWN_INTERVAL):
        self.frame_source = frame_source
        self.scheduler = scheduler
        self.cues = cues or CaptureCues()
        self.inter_shot_delay = inter_shot_delay
        self.countdown_interval = countdown_interval

        self.state = CaptureState.IDLE
        self.seconds_left = None
        self.current_run = None
        self._pending = None

    @property
    def busy(self):
        return self.current_run is not None and self.current_run.status == RunStatus.RUNNING

    def start_camera(self, config):
        """Start the frame source; DeviceError propagates and the sequencer stays IDLE"""
        self.frame_source.start(config)

    def stop_camera(self):
        self.frame_source.stop()

    def start_run(self, layout, settings: CaptureSettings) -> CaptureRun:
        """
        Begin a run; the first countdown (or shot) is started immediately.

        Raises:
            InvalidLayoutError: layout has no shot count
            CaptureError: a run is already in progress
        """
        if self.busy:
            raise CaptureError("A capture run is already in progress")

        layout = parse_layout(layout)
        run = CaptureRun(
            id=str(uuid.uuid4()),
            layout=layout.value,
            shots_required=shot_count(layout),
            settings=settings,
        )
        self.current_run = run
        logger.info(f"Capture run {run.id} started: {run.layout} ({run.shots_required} shots)")
        self._begin_shot()
        return run

    def abort(self):
        """
        Abort the in-progress run, discarding every frame taken so far.

        Returns:
            bool: True if a run was aborted
        """
        if not self.busy:
            return False
        if self._pending is not None:
            self.scheduler.cancel(self._pending)
            self._pending = None
        run = self.current_run
        run.frames.clear()
        run.status = RunStatus.CANCELLED
        run.error = CaptureCancelled("Capture run aborted")
        self._reset()
        logger.info(f"Capture run {run.id} aborted")
        return True

    def keep(self, run) -> list:
        """
        Hand over the frames of a completed run (in capture order).

        Raises:
            CaptureError: the run did not complete
        """
        if run.status != RunStatus.COMPLETE:
            raise CaptureError(f"Capture run {run.id} is {run.status.value}, not complete")
        run.status = RunStatus.KEPT
        return run.images()

    def discard(self, run):
        if run.status == RunStatus.RUNNING:
            self.abort()
        run.frames.clear()
        if run.status in (RunStatus.COMPLETE, RunStatus.KEPT):
            run.status = RunStatus.DISCARDED

    # --- state transitions ---

    def _schedule(self, delay, callback):
        self._pending = self.scheduler.after(delay, callback)

    def _begin_shot(self):
        self._pending = None
        countdown = self.current_run.settings.countdown_duration
        if countdown > 0:
            self._countdown(countdown)
        else:
            self._shutter()

    def _countdown(self, seconds_left):
        self._pending = None
        self.state = CaptureState.COUNTDOWN
        self.seconds_left = seconds_left
        self.cues.on_tick(self.current_run, seconds_left)
        if seconds_left > 1:
            self._schedule(self.countdown_interval, lambda: self._countdown(seconds_left - 1))
        else:
            self._schedule(self.countdown_interval, self._shutter)

    def _shutter(self):
        self._pending = None
        run = self.current_run
        self.state = CaptureState.SHUTTER
        self.seconds_left = None

        if run.settings.enable_flash:
            self.cues.on_flash(run)
        if run.settings.enable_sound:
            self.cues.on_shutter_sound(run)

        try:
            image = self.frame_source.read_frame()
        except PhotoboothError as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception(f"Capture run {run.id}: frame grab raised")
            error = CaptureError(f"Frame grab failed: {e}")
            error.__cause__ = e
            self._fail(error)
            return

        frame = CapturedFrame(image=image, captured_at=datetime.now())
        run.frames.append(frame)
        self.state = CaptureState.CAPTURED
        index = len(run.frames) - 1
        logger.info(f"Capture run {run.id}: shot {index + 1}/{run.shots_required}")
        self.cues.on_shot(run, index, frame)

        if len(run.frames) < run.shots_required:
            self._schedule(self.inter_shot_delay, self._begin_shot)
        else:
            run.status = RunStatus.COMPLETE
            self._reset()
            self.cues.on_complete(run)

    def _fail(self, error):
        run = self.current_run
        run.frames.clear()
        run.status = RunStatus.FAILED
        run.error = error
        self._reset()
        logger.error(f"Capture run {run.id} failed: {error}")
        self.cues.on_error(run, error)

    def _reset(self):
        self.state = CaptureState.IDLE
        self.seconds_left = None
        self._pending = None
