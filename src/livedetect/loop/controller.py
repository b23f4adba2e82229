"""
Poll Loop Controller

State machine driving capture -> encode -> infer -> render:
IDLE -> RUNNING <-> REQUEST_IN_FLIGHT -> IDLE

Ticks fire on a fixed cadence measured from tick start. A tick that finds a
request still outstanding is skipped instead of queued, so at most one
inference request exists at any time. Every dispatched request carries the
generation that was current when it was issued; stop() bumps the generation
so a late response from a stopped session is dropped.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Callable

import numpy as np

from livedetect.camera.frame_encoder import DEFAULT_QUALITY, EncodedImage, encode
from livedetect.camera.media_source import MediaSource
from livedetect.errors import InferenceError
from livedetect.inference.client import InferenceClient

from .session import DetectionParameters, SessionContext

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.12


class LoopState(Enum):
    """Poll loop states."""

    IDLE = auto()  # Camera released, no timer
    RUNNING = auto()  # Camera open, ticking
    REQUEST_IN_FLIGHT = auto()  # Waiting on the detection service


@dataclass
class LoopStats:
    """Round counters for diagnostics."""

    ticks: int = 0
    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    skipped_busy: int = 0
    no_frame: int = 0
    stale: int = 0


class PollLoopController:
    """
    Drives the live detection loop for one session.

    Must be used from within a running asyncio event loop. The controller
    owns the media source's lifetime while not IDLE.
    """

    def __init__(
        self,
        media: MediaSource,
        client: InferenceClient,
        session: SessionContext,
        interval: float = DEFAULT_INTERVAL,
        jpeg_quality: float = DEFAULT_QUALITY,
        encoder: Callable[[np.ndarray, float], EncodedImage] = encode,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.jpeg_quality = jpeg_quality
        self._media = media
        self._client = client
        self._session = session
        self._encoder = encoder

        self._state = LoopState.IDLE
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.Handle | None = None
        self._inflight: asyncio.Task | None = None
        self._generation = 0
        self._started_at: datetime | None = None
        self.stats = LoopStats()

        self._on_state_change_callbacks: list[Callable[[LoopState], None]] = []

        logger.info(f"PollLoopController initialized: interval={interval * 1000:.0f}ms")

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is not LoopState.IDLE

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def session(self) -> SessionContext:
        return self._session

    # ==================== Lifecycle ====================

    def start(self) -> bool:
        """
        Acquire the camera and begin ticking.

        Returns:
            True if started, False if the loop was already running

        Raises:
            DeviceUnavailable: If the camera cannot be opened (state stays IDLE)
        """
        if self._state is not LoopState.IDLE:
            logger.warning("Poll loop already running, ignoring start()")
            return False

        self._loop = asyncio.get_running_loop()
        self._media.acquire()

        self._generation += 1
        self._started_at = datetime.now()
        self._transition_to(LoopState.RUNNING)
        self._timer = self._loop.call_soon(self._tick)
        logger.info(f"Poll loop started (generation {self._generation})")
        return True

    def stop(self) -> bool:
        """
        Cancel the pending tick and release the camera.

        An outstanding request is not aborted; its result is discarded.

        Returns:
            True if stopped, False if the loop was already idle
        """
        if self._state is LoopState.IDLE:
            logger.debug("Poll loop not running, ignoring stop()")
            return False

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self._generation += 1
        self._transition_to(LoopState.IDLE)
        self._media.release()
        logger.info("Poll loop stopped")
        return True

    async def aclose(self, timeout: float = 5.0) -> None:
        """Stop and cancel any outstanding request (used at shutdown)."""
        self.stop()
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Outstanding inference request did not finish within {timeout}s")
        self._inflight = None

    # ==================== Rounds ====================

    def _request_outstanding(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _tick(self) -> None:
        """One scheduled round."""
        self._timer = None
        if self._state is LoopState.IDLE:
            return

        self.stats.ticks += 1
        # Cadence is measured from tick start
        self._timer = self._loop.call_later(self.interval, self._tick)

        if self._request_outstanding():
            self.stats.skipped_busy += 1
            return

        try:
            frame = self._media.capture_still()
            if frame is None:
                self.stats.no_frame += 1
                return
            image = self._encoder(frame, self.jpeg_quality)
        except Exception as e:
            logger.error(f"Frame capture/encode failed: {e}", exc_info=True)
            self._session.record_error(e)
            return

        parameters = self._session.parameters
        self._transition_to(LoopState.REQUEST_IN_FLIGHT)
        self.stats.dispatched += 1
        self._inflight = self._loop.create_task(
            self._run_round(image, parameters, self._generation),
            name=f"inference-round-{self.stats.dispatched}",
        )

    async def _run_round(
        self,
        image: EncodedImage,
        parameters: DetectionParameters,
        generation: int,
    ) -> None:
        """Await one inference call and apply or drop its outcome."""
        result = None
        error: Exception | None = None
        try:
            result = await self._client.infer_frame(
                image, parameters.threshold, parameters.classes
            )
        except Exception as e:
            error = e

        if generation != self._generation:
            self.stats.stale += 1
            logger.debug(
                f"Dropping settlement from generation {generation} (now {self._generation})"
            )
            return

        if error is None:
            self.stats.completed += 1
            self._session.apply_result(result)
        else:
            self.stats.failed += 1
            self._session.record_error(error)
            if isinstance(error, InferenceError):
                logger.warning(f"Inference round failed: {error}")
            else:
                logger.error(f"Unexpected inference error: {error}", exc_info=error)

        if self._state is LoopState.REQUEST_IN_FLIGHT:
            self._transition_to(LoopState.RUNNING)

    # ==================== State ====================

    def _transition_to(self, new_state: LoopState) -> None:
        """Transition to a new state."""
        old_state = self._state
        self._state = new_state

        logger.debug(f"Loop state: {old_state.name} -> {new_state.name}")

        for callback in self._on_state_change_callbacks:
            try:
                callback(new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    def on_state_change(self, callback: Callable[[LoopState], None]) -> None:
        """Register callback for state changes."""
        self._on_state_change_callbacks.append(callback)

    def get_status(self) -> dict:
        """Get poll loop status."""
        return {
            "state": self._state.name,
            "generation": self._generation,
            "interval_ms": round(self.interval * 1000),
            "request_outstanding": self._request_outstanding(),
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "stats": asdict(self.stats),
        }
