"""
Inference Client - async HTTP client for the remote detection service

Endpoints:
- GET  /classes       -> {"classes": [...]}
- POST /detect_frame  JSON {image_base64, threshold, classes} -> {image, detections}
- POST /detect?threshold=<t>  multipart "file" -> {image, detections}

Detection calls are never retried here; the poll loop simply tries again on
its next tick. Only the startup class listing retries transient failures.
"""

import asyncio
import logging
import mimetypes
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiohttp
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from livedetect.camera.frame_encoder import EncodedImage
from livedetect.errors import InferenceError, NetworkError, ServiceError

from .detection import InferenceResult

logger = logging.getLogger(__name__)


class InferenceClient:
    """
    Client for the detection backend.

    The aiohttp session is created on first use and must be closed with
    close() (or by using the client as an async context manager).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout_seconds: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

        logger.info(f"InferenceClient initialized: {self.base_url} (timeout={timeout_seconds}s)")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            NetworkError: On transport failure or timeout
            ServiceError: On non-2xx status or a body that is not JSON
        """
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise ServiceError(
                        f"{method} {path} returned {resp.status}: {text[:200]}",
                        status=resp.status,
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ServiceError(
                        f"{method} {path} returned invalid JSON: {e}", status=resp.status
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{method} {path} failed: {e!r}") from e

    @staticmethod
    def _parse_result(body: Any, path: str) -> InferenceResult:
        try:
            return InferenceResult.from_response(body)
        except ValueError as e:
            raise ServiceError(f"{path}: malformed response: {e}") from e

    # ==================== Class Listing ====================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(NetworkError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request_classes(self) -> list[str]:
        """Fetch the label list, retrying on network errors."""
        body = await self._request("GET", "/classes")
        classes = body.get("classes") if isinstance(body, dict) else None
        if not isinstance(classes, list):
            return []
        return [str(c) for c in classes]

    async def fetch_classes(self) -> list[str]:
        """
        Get the labels the service can detect.

        Failure is not fatal: an empty list is returned and logged.
        """
        try:
            classes = await self._request_classes()
        except InferenceError as e:
            logger.warning(f"Could not load class list, continuing without: {e}")
            return []
        logger.info(f"Service reports {len(classes)} classes")
        return classes

    # ==================== Detection ====================

    async def infer_frame(
        self,
        image: EncodedImage,
        threshold: float,
        classes: Iterable[str] | None = None,
    ) -> InferenceResult:
        """
        Run detection on one encoded camera frame.

        Args:
            image: JPEG-encoded frame
            threshold: Confidence threshold
            classes: Labels to keep, or None for no filter

        Returns:
            InferenceResult with annotated image and detections
        """
        selected = sorted(classes) if classes else None
        payload = {
            "image_base64": image.to_data_url(),
            "threshold": threshold,
            "classes": selected,
        }
        body = await self._request("POST", "/detect_frame", json=payload)
        return self._parse_result(body, "/detect_frame")

    async def infer_upload(
        self,
        raw_file: bytes | str | Path,
        threshold: float,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> InferenceResult:
        """
        Run one-shot detection on an uploaded image file. No class filter.

        Args:
            raw_file: File contents, or a path to read them from
            threshold: Confidence threshold
            filename: Name sent with the multipart part
            content_type: MIME type of the file (guessed from filename if omitted)
        """
        if isinstance(raw_file, (str, Path)):
            path = Path(raw_file)
            data = path.read_bytes()
            filename = filename or path.name
        else:
            data = raw_file
        filename = filename or "upload.jpg"
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type=content_type)

        body = await self._request(
            "POST", "/detect", params={"threshold": str(threshold)}, data=form
        )
        return self._parse_result(body, "/detect")
