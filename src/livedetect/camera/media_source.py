"""
Media Source - OpenCV camera handle with a background capture thread

The capture thread keeps only the most recent decoded frame. The poll loop
asks for a still via capture_still(), which copies that frame (BGR -> RGB)
into a single reused raster surface sized to the stream's native dimensions.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable

import cv2
import numpy as np

from livedetect.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

# Upper bound on how long release() blocks the caller
RELEASE_JOIN_TIMEOUT = 0.5


class MediaSource:
    """
    Camera device handle for the live detection loop.

    The handle is opened by acquire() and closed by release(). While
    acquired, a daemon thread reads frames at the configured rate so that
    capture_still() never blocks on the device.
    """

    def __init__(
        self,
        device: int | str = 0,
        resolution: tuple[int, int] = (960, 540),
        framerate: int = 30,
        capture_factory: Callable[[Any], Any] = cv2.VideoCapture,
    ):
        self.device = device
        self.resolution = resolution
        self.framerate = framerate
        self._capture_factory = capture_factory

        # State
        self._capture = None
        self._capture_thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._frame_lock = threading.Lock()
        self._latest_frame: np.ndarray | None = None
        self._frame_timestamp: datetime | None = None
        self._frame_count = 0

        # Reused RGB surface for capture_still()
        self._surface: np.ndarray | None = None

        logger.info(
            f"MediaSource initialized: device={device}, "
            f"resolution={resolution}, fps={framerate}"
        )

    @property
    def is_acquired(self) -> bool:
        return self._capture is not None

    def acquire(self) -> None:
        """
        Open the camera and start playback.

        Raises:
            DeviceUnavailable: If the device cannot be opened
        """
        if self._capture is not None:
            logger.warning("Camera already acquired")
            return

        try:
            capture = self._capture_factory(self.device)
        except Exception as e:
            raise DeviceUnavailable(f"Cannot open camera {self.device!r}: {e}") from e

        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(f"Camera {self.device!r} is not available")

        width, height = self.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._capture = capture
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._capture_thread = threading.Thread(
            target=self._capture_loop,
            args=(capture, stop_event),
            name="CameraCaptureThread",
            daemon=True,
        )
        self._capture_thread.start()

        logger.info(f"Camera {self.device!r} acquired")

    def release(self) -> None:
        """
        Stop the capture thread and detach the device. Safe to call twice.

        The device handle itself is closed by its capture thread once the
        thread leaves its loop. If a read is stalled past the join timeout
        the handle is closed when that read returns.
        """
        if self._capture is None:
            return

        self._stop_event.set()
        thread = self._capture_thread
        self._capture_thread = None

        with self._frame_lock:
            self._capture = None
            self._latest_frame = None
            self._frame_timestamp = None

        if thread:
            thread.join(timeout=RELEASE_JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning(
                    f"Capture thread for {self.device!r} is stalled in read(); "
                    "device will be closed when it returns"
                )

        logger.info(f"Camera {self.device!r} released")

    def _capture_loop(self, capture, stop_event: threading.Event) -> None:
        """Background thread reading frames from one acquired device."""
        logger.info("Capture loop started")
        target_interval = 1.0 / self.framerate

        try:
            while not stop_event.is_set():
                loop_start = time.perf_counter()

                try:
                    ok, frame = capture.read()
                    if ok and frame is not None:
                        with self._frame_lock:
                            # Frames from a released device are discarded
                            if stop_event.is_set() or capture is not self._capture:
                                break
                            self._latest_frame = frame
                            self._frame_timestamp = datetime.now()
                            self._frame_count += 1
                except Exception as e:
                    logger.error(f"Capture error: {e}")

                elapsed = time.perf_counter() - loop_start
                sleep_time = target_interval - elapsed
                if sleep_time > 0:
                    stop_event.wait(sleep_time)
        finally:
            try:
                capture.release()
            except Exception as e:
                logger.error(f"Error releasing camera: {e}")

        logger.info("Capture loop stopped")

    def capture_still(self) -> np.ndarray | None:
        """
        Copy the current frame into the reused RGB surface.

        Returns:
            The surface (H, W, 3) uint8 RGB, or None if no device is attached
            or no frame has been decoded yet. The same array is returned on
            every call; encode it before the next capture.
        """
        if self._capture is None:
            return None

        with self._frame_lock:
            frame = self._latest_frame
            if frame is None:
                return None

            if self._surface is None or self._surface.shape != frame.shape:
                self._surface = np.empty(frame.shape, dtype=np.uint8)
                h, w = frame.shape[:2]
                logger.debug(f"Allocated capture surface {w}x{h}")

            cv2.cvtColor(frame, cv2.COLOR_BGR2RGB, dst=self._surface)

        return self._surface

    def get_status(self) -> dict:
        """Get media source status."""
        native_size = None
        with self._frame_lock:
            if self._latest_frame is not None:
                h, w = self._latest_frame.shape[:2]
                native_size = (w, h)
            last_frame = self._frame_timestamp
        return {
            "acquired": self.is_acquired,
            "device": self.device,
            "requested_resolution": self.resolution,
            "native_resolution": native_size,
            "frame_count": self._frame_count,
            "last_frame": last_frame.isoformat() if last_frame else None,
        }

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
