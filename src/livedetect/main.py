"""
LiveDetect Main Application

Wires together:
- Media source (local camera)
- Inference client (remote detection service)
- Poll loop controller and session state
- Local control API

The poll loop itself lives in livedetect.loop.controller; this module owns
process lifecycle, the one-shot upload path and snapshots.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from livedetect.camera.media_source import MediaSource
from livedetect.errors import DeviceUnavailable, LiveDetectError
from livedetect.inference.client import InferenceClient
from livedetect.inference.detection import InferenceResult
from livedetect.loop.controller import PollLoopController
from livedetect.loop.session import DetectionParameters, SessionContext

logger = logging.getLogger(__name__)


class LiveDetectApp:
    """
    Application object shared by the CLI and the control API.

    Components default to instances built from livedetect.config; tests
    pass their own.
    """

    def __init__(
        self,
        client: InferenceClient | None = None,
        media: MediaSource | None = None,
        session: SessionContext | None = None,
        snapshot_dir: str | Path | None = None,
        interval: float | None = None,
        jpeg_quality: float | None = None,
    ):
        from livedetect.config import (
            camera_config,
            detection_config,
            loop_config,
            service_config,
        )

        self.client = client or InferenceClient(
            base_url=service_config.base_url,
            timeout_seconds=service_config.request_timeout_seconds,
        )
        self.media = media or MediaSource(
            device=camera_config.device,
            resolution=camera_config.resolution,
            framerate=camera_config.framerate,
        )
        self.session = session or SessionContext(
            parameters=DetectionParameters(
                threshold=detection_config.threshold,
                classes=frozenset(detection_config.classes),
            ),
            history_size=loop_config.history_size,
        )
        self.snapshot_dir = Path(snapshot_dir or detection_config.snapshot_dir)
        self.controller = PollLoopController(
            media=self.media,
            client=self.client,
            session=self.session,
            interval=interval if interval is not None else loop_config.interval_seconds,
            jpeg_quality=jpeg_quality if jpeg_quality is not None else camera_config.jpeg_quality,
        )

        self._running = False
        self._background_tasks: list[asyncio.Task] = []

        logger.info("LiveDetectApp initialized")

    # ==================== Interaction Surface ====================

    def start_loop(self) -> bool:
        """Start the live loop. Raises DeviceUnavailable if no camera."""
        return self.controller.start()

    def stop_loop(self) -> bool:
        return self.controller.stop()

    def set_threshold(self, threshold: float) -> DetectionParameters:
        return self.session.set_threshold(threshold)

    def toggle_class(self, label: str) -> DetectionParameters:
        return self.session.toggle_class(label)

    async def load_classes(self) -> list[str]:
        """Fetch the service's label list into the session."""
        self.session.available_classes = await self.client.fetch_classes()
        return self.session.available_classes

    async def detect_upload(
        self,
        raw_file: bytes | str | Path,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> InferenceResult:
        """
        One-shot detection on an uploaded image.

        The result replaces the displayed image and is logged to history,
        like a live round. Errors propagate to the caller.
        """
        threshold = self.session.parameters.threshold
        result = await self.client.infer_upload(
            raw_file, threshold, filename=filename, content_type=content_type
        )
        entry = self.session.apply_result(result)
        logger.info(f"Upload detection: {entry.total_count} objs [{entry.summary}]")
        return result

    def save_snapshot(self) -> Path | None:
        return self.session.save_snapshot(self.snapshot_dir)

    def get_status(self) -> dict:
        """Get full application status."""
        return {
            "service": self.client.base_url,
            "loop": self.controller.get_status(),
            "camera": self.media.get_status(),
            "session": self.session.get_status(),
        }

    # ==================== Process Lifecycle ====================

    async def run(self, autostart: bool = False) -> None:
        """Run until a shutdown signal is received."""
        logger.info("=== Starting LiveDetect ===")

        from livedetect.config import api_config, ensure_runtime_dirs, setup_logging

        setup_logging()
        ensure_runtime_dirs()

        await self.load_classes()
        self._setup_signal_handlers()
        self._running = True

        if api_config.enabled:
            from livedetect.api.server import start_server

            task = asyncio.create_task(
                start_server(host=api_config.host, port=api_config.port, live_app=self),
                name="api_server",
            )
            self._background_tasks.append(task)
            logger.info(f"API server task started on {api_config.host}:{api_config.port}")

        if autostart:
            try:
                self.start_loop()
            except DeviceUnavailable as e:
                logger.error(f"Cannot start live detection: {e}")

        logger.info("=== LiveDetect Running ===")

        try:
            while self._running:
                await asyncio.sleep(0.5)
        except asyncio.CancelledError:
            logger.info("Main loop cancelled")

        await self._shutdown()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Signal {signum} received, initiating shutdown...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def _shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Initiating shutdown...")

        if self._background_tasks:
            logger.info(f"Cancelling {len(self._background_tasks)} background tasks...")
            for task in self._background_tasks:
                if not task.done():
                    task.cancel()
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=5.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Background tasks did not cancel within 5s")
            self._background_tasks.clear()

        await self.controller.aclose()
        self.media.release()
        await self.client.close()

        logger.info("Shutdown complete")


# ==================== Entry Point ====================


async def detect_file(path: Path) -> int:
    """Run one upload detection, save the annotated snapshot, print the tally."""
    from livedetect.config import ensure_runtime_dirs, setup_logging

    setup_logging()
    ensure_runtime_dirs()

    live_app = LiveDetectApp()
    try:
        await live_app.detect_upload(path)
    except LiveDetectError as e:
        logger.error(f"Detection failed for {path}: {e}")
        return 1
    finally:
        await live_app.client.close()

    entry = live_app.session.history.latest()
    print(f"{entry.total_count} objs: {entry.summary or '-'}")
    snapshot = live_app.save_snapshot()
    if snapshot:
        print(f"Annotated image: {snapshot}")
    return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Live object detection client")
    parser.add_argument(
        "--autostart", action="store_true", help="Start the camera loop immediately"
    )
    parser.add_argument(
        "--upload", type=Path, metavar="IMAGE", help="Detect a single image file and exit"
    )
    args = parser.parse_args()

    try:
        if args.upload:
            sys.exit(asyncio.run(detect_file(args.upload)))
        asyncio.run(LiveDetectApp().run(autostart=args.autostart))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
