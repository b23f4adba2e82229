"""
Pytest configuration and shared fixtures for LiveDetect tests.
"""

import asyncio
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from livedetect.camera.frame_encoder import encode
from livedetect.errors import DeviceUnavailable, NetworkError
from livedetect.inference.detection import Detection, InferenceResult
from livedetect.loop.session import DetectionParameters, SessionContext


def make_frame(width: int = 64, height: int = 48, value: int = 128) -> np.ndarray:
    """A flat RGB frame."""
    return np.full((height, width, 3), value, dtype=np.uint8)


def make_data_url(value: int = 200) -> str:
    """A real JPEG data URL, as the service would return."""
    return encode(make_frame(value=value)).to_data_url()


def make_result(labels=("person",), value: int = 200) -> InferenceResult:
    return InferenceResult(
        annotated_image=make_data_url(value),
        detections=[Detection(class_name=label, confidence=0.9) for label in labels],
    )


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> None:
    """Poll predicate() until true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(step)


class FakeMediaSource:
    """Media source stand-in with scripted frames."""

    def __init__(self, frame: np.ndarray | None = None, unavailable: bool = False):
        self.frame = frame if frame is not None else make_frame()
        self.unavailable = unavailable
        self.acquired = False
        self.acquire_count = 0
        self.release_count = 0
        self.capture_count = 0

    @property
    def is_acquired(self) -> bool:
        return self.acquired

    def acquire(self) -> None:
        if self.unavailable:
            raise DeviceUnavailable("no camera")
        self.acquired = True
        self.acquire_count += 1

    def release(self) -> None:
        if self.acquired:
            self.release_count += 1
        self.acquired = False

    def capture_still(self) -> np.ndarray | None:
        self.capture_count += 1
        if not self.acquired:
            return None
        return self.frame

    def get_status(self) -> dict:
        return {"acquired": self.acquired}


class FakeInferenceClient:
    """
    Inference client stand-in that tracks concurrency.

    gated=True makes every call wait for release(); fail=True makes calls
    raise NetworkError; delay adds a sleep before answering.
    """

    base_url = "http://fake-detector"

    def __init__(self, gated: bool = False, fail: bool = False, delay: float = 0.0):
        self.gated = gated
        self.fail = fail
        self.delay = delay
        self.calls: list[dict] = []
        self.uploads: list[dict] = []
        self.active = 0
        self.max_concurrent = 0
        self.classes = ["person", "car", "dog", "cat"]
        self.closed = False
        self._gate: asyncio.Event | None = None

    def release(self) -> None:
        self._get_gate().set()

    def _get_gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    async def infer_frame(self, image, threshold, classes=None) -> InferenceResult:
        self.calls.append({"image": image, "threshold": threshold, "classes": classes})
        self.active += 1
        self.max_concurrent = max(self.max_concurrent, self.active)
        try:
            if self.gated:
                await self._get_gate().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise NetworkError("connection refused")
            return make_result(("person", "person", "car"), value=len(self.calls) % 255)
        finally:
            self.active -= 1

    async def infer_upload(self, raw_file, threshold, filename=None, content_type=None):
        self.uploads.append({"data": raw_file, "threshold": threshold, "filename": filename})
        if self.fail:
            raise NetworkError("connection refused")
        return make_result(("dog",))

    async def fetch_classes(self) -> list[str]:
        return list(self.classes)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def sample_frame():
    """A sample 64x48 RGB frame."""
    return make_frame()


@pytest.fixture
def fake_media():
    return FakeMediaSource()


@pytest.fixture
def session():
    return SessionContext(
        parameters=DetectionParameters(threshold=0.5, classes=frozenset({"person", "car"})),
        history_size=25,
    )


@pytest.fixture
def person_car_detections():
    """The detections from a frame with two people and a car."""
    return [
        Detection(class_name="person", confidence=0.91),
        Detection(class_name="person", confidence=0.72),
        Detection(class_name="car", confidence=0.66),
    ]
