"""
Capture Pipeline - capture run → composition → stored photo

Flow per capture:
    capture(layout)   settings snapshot, camera start, sequencer run
    keep(run_id)      compose (template optional) → save → session count
    discard(run_id)   frames dropped, nothing written

Composition happens before anything is written, so a failing template or
layout leaves no file and no photo row behind.

Completed runs wait in memory for keep/discard. At most max_pending_runs
are held; a newer completed capture discards the oldest waiting ones.
"""

import logging
from datetime import datetime

from capture_sequencer import CaptureSettings, RunStatus
from errors import CaptureError, NotFoundError
from frame_source import FrameSourceConfig
from models import CaptureMetadata, TemplateOverrides

logger = logging.getLogger(__name__)

MAX_PENDING_RUNS = 1


class CapturePipeline:

    def __init__(self, sequencer, compositor, photo_service, session_service,
                 settings_service, analytics=None, max_pending_runs=MAX_PENDING_RUNS):
        self.sequencer = sequencer
        self.compositor = compositor
        self.photo_service = photo_service
        self.session_service = session_service
        self.settings_service = settings_service
        self.analytics = analytics
        self.max_pending_runs = max_pending_runs

        # run id -> (run, settings snapshot), oldest first
        self.runs = {}

    def _record(self, event_type, data):
        if self.analytics is not None:
            self.analytics.record_event(event_type, data)

    def capture(self, layout):
        """
        Run a full capture for the layout and block until it finishes.

        Returns:
            CaptureRun: the completed run (frames in memory, nothing saved)

        Raises:
            DeviceError: camera cannot be started
            CaptureError: a frame could not be read or the run was aborted
        """
        settings = self.settings_service.get_settings()

        if not self.sequencer.frame_source.is_running:
            self.sequencer.start_camera(
                FrameSourceConfig(device_id=settings.camera_device_id, resolution=settings.resolution)
            )

        run = self.sequencer.start_run(layout, CaptureSettings.from_settings(settings))
        self.sequencer.scheduler.run()

        if run.status != RunStatus.COMPLETE:
            self._record('capture_failed', {'layout': run.layout, 'error': str(run.error)})
            raise run.error or CaptureError(f"Capture run {run.id} ended {run.status.value}")

        self.runs[run.id] = (run, settings)
        self._evict_stale_runs()
        self._record('capture_completed', {'layout': run.layout, 'shots': len(run.frames)})
        return run

    def _evict_stale_runs(self):
        while len(self.runs) > self.max_pending_runs:
            stale_id = next(iter(self.runs))
            stale, _ = self.runs.pop(stale_id)
            self.sequencer.discard(stale)
            self._record('capture_discarded', {'layout': stale.layout, 'reason': 'superseded'})
            logger.info(f"Capture run {stale_id} superseded by a newer capture, frames released")

    def get_run(self, run_id):
        try:
            return self.runs[run_id][0]
        except KeyError:
            raise NotFoundError('capture run', run_id)

    def keep(self, run_id, template_id=None, overrides=None, session_id=None):
        """
        Compose and persist a completed run.

        Args:
            run_id: id returned by capture()
            template_id: optional template applied over the composite
            overrides: TemplateOverrides (or dict) for placeholder text
            session_id: owning session; defaults to the active one

        Returns:
            Photo
        """
        run = self.get_run(run_id)
        settings = self.runs[run_id][1]
        if isinstance(overrides, dict):
            overrides = TemplateOverrides.from_dict(overrides)

        if not run.is_complete:
            raise CaptureError(f"Capture run {run.id} is {run.status.value}, not complete")

        image = self.compositor.compose(run.images(), run.layout, template_id, overrides)
        shot_timestamps = [frame.captured_at.isoformat() for frame in run.frames]

        if session_id is None:
            session_id = self.session_service.get_active_session().id

        metadata = CaptureMetadata(
            timestamp=datetime.now().isoformat(),
            photo_count=len(shot_timestamps),
            shot_timestamps=shot_timestamps,
        ).to_dict()
        if template_id:
            metadata['templateId'] = template_id

        photo = self.photo_service.save_image(
            image,
            session_id=session_id,
            layout_type=run.layout,
            metadata=metadata,
            settings=settings,
            has_overlay=bool(template_id),
        )

        self.sequencer.keep(run)
        del self.runs[run_id]
        self._record('photo_saved', {'photo_id': photo.id, 'source': 'capture', 'layout': run.layout,
                                     'template_id': template_id})
        logger.info(f"Capture run {run.id} kept as photo {photo.id}")
        return photo

    def discard(self, run_id):
        run = self.get_run(run_id)
        self.sequencer.discard(run)
        del self.runs[run_id]
        self._record('capture_discarded', {'layout': run.layout})
        logger.info(f"Capture run {run.id} discarded")
        return run

    def abort(self):
        return self.sequencer.abort()
