"""
Frame Source - live camera frames for the capture sequencer

Device enumeration and selection happen once per start(); read_frame()
only grabs the current frame. Virtual/loopback devices are skipped unless
nothing else is available.
"""

import glob
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import List, Optional

import cv2
from PIL import Image

from errors import CaptureError, DeviceError
from models import parse_resolution

logger = logging.getLogger(__name__)

EXCLUDED_DEVICE_PATTERN = re.compile(r'virtual|loopback|dummy', re.IGNORECASE)
MAX_PROBED_DEVICES = 8


@dataclass
class CameraDevice:
    device_id: str
    index: int
    name: str

    @property
    def excluded(self):
        return bool(EXCLUDED_DEVICE_PATTERN.search(self.name))


@dataclass
class FrameSourceConfig:
    device_id: Optional[str] = None
    resolution: str = '1920x1080'


def _read_sysfs_name(index):
    try:
        with open(f"/sys/class/video4linux/video{index}/name", 'r') as f:
            return f.read().strip()
    except OSError:
        return None


def list_camera_devices() -> List[CameraDevice]:
    """Capture devices visible to this machine"""
    if sys.platform.startswith('linux'):
        devices = []
        for dev_path in sorted(glob.glob('/dev/video*')):
            match = re.match(r'^/dev/video(\d+)$', dev_path)
            if not match:
                continue
            index = int(match.group(1))
            name = _read_sysfs_name(index) or os.path.basename(dev_path)
            devices.append(CameraDevice(device_id=dev_path, index=index, name=name))
        return sorted(devices, key=lambda d: d.index)

    devices = []
    for index in range(MAX_PROBED_DEVICES):
        cap = cv2.VideoCapture(index)
        if cap is not None and cap.isOpened():
            devices.append(CameraDevice(device_id=str(index), index=index, name=f"Camera {index}"))
        if cap is not None:
            cap.release()
    return devices


def select_device(devices, preferred_id=None):
    """
    Pick the configured device if present and not excluded, otherwise the
    first non-excluded device, otherwise the first device.

    Raises:
        DeviceError: no capture devices at all
    """
    if not devices:
        raise DeviceError("No camera devices found")

    if preferred_id is not None:
        for device in devices:
            if device.device_id == str(preferred_id) and not device.excluded:
                return device
        logger.warning(f"Camera {preferred_id} unavailable, falling back")

    for device in devices:
        if not device.excluded:
            return device
    return devices[0]


class FrameSource:
    """Interface the capture sequencer pulls frames from"""

    def start(self, config: FrameSourceConfig):
        raise NotImplementedError

    def read_frame(self) -> Image.Image:
        """Current frame; raises CaptureError until a frame has been delivered"""
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    @property
    def is_running(self):
        raise NotImplementedError


class OpenCVFrameSource(FrameSource):
    """USB/built-in camera via cv2.VideoCapture"""

    def __init__(self, enumerate_devices=list_camera_devices):
        self._enumerate_devices = enumerate_devices
        self._cap = None
        self.device = None

    @property
    def is_running(self):
        return self._cap is not None

    def start(self, config: FrameSourceConfig):
        """
        Raises:
            DeviceError: no device, or the device cannot be opened
        """
        if self._cap is not None:
            self.stop()

        width, height = parse_resolution(config.resolution)
        device = select_device(self._enumerate_devices(), config.device_id)

        cap = cv2.VideoCapture(device.index)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise DeviceError(f"Cannot open camera {device.name} ({device.device_id})")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._cap = cap
        self.device = device
        logger.info(f"Camera started: {device.name} ({device.device_id}) at {width}x{height}")

    def read_frame(self):
        if self._cap is None:
            raise CaptureError("Frame source not started")
        ok, frame = self._cap.read()
        if not ok or frame is None:
            raise CaptureError("Frame source not ready")
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

    def stop(self):
        if self._cap is not None:
            self._cap.release()
            logger.info(f"Camera stopped: {self.device.device_id if self.device else '?'}")
        self._cap = None
        self.device = None
