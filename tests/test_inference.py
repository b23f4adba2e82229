"""
Tests for detection parsing and the InferenceClient against a local
aiohttp test server.
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as BackendServer
from aiohttp.test_utils import unused_port

from conftest import make_data_url, make_frame
from livedetect.camera.frame_encoder import encode
from livedetect.errors import NetworkError, ServiceError
from livedetect.inference.client import InferenceClient
from livedetect.inference.detection import BoundingBox, Detection, InferenceResult


class TestDetectionParsing:
    """Tests for building detections from service payloads."""

    def test_from_payload_with_corner_bbox(self):
        det = Detection.from_payload(
            {"class": "person", "confidence": 0.87, "bbox": [10, 20, 110, 220]}
        )
        assert det.class_name == "person"
        assert det.confidence == pytest.approx(0.87)
        assert det.bbox == BoundingBox(x=10, y=20, width=100, height=200)
        assert det.metadata["class"] == "person"

    def test_from_payload_class_only(self):
        det = Detection.from_payload({"class": "car"})
        assert det.class_name == "car"
        assert det.confidence is None
        assert det.bbox is None

    def test_from_payload_missing_class(self):
        assert Detection.from_payload({"score": 0.4}).class_name == "unknown"
        assert Detection.from_payload("junk").class_name == "unknown"

    def test_result_from_response(self):
        result = InferenceResult.from_response(
            {"image": "data:image/jpeg;base64,AAAA", "detections": [{"class": "dog"}]}
        )
        assert result.annotated_image.startswith("data:image/jpeg")
        assert [d.class_name for d in result.detections] == ["dog"]

    def test_result_missing_detections_is_empty(self):
        result = InferenceResult.from_response({"image": "data:image/jpeg;base64,AAAA"})
        assert result.detections == []

    @pytest.mark.parametrize(
        "body",
        [
            [],
            {"detections": []},
            {"image": "", "detections": []},
            {"image": "data:image/jpeg;base64,AAAA", "detections": "dog"},
        ],
    )
    def test_result_rejects_malformed(self, body):
        with pytest.raises(ValueError):
            InferenceResult.from_response(body)


class FakeDetector:
    """Minimal detection backend recording what it receives."""

    def __init__(self):
        self.frame_requests: list[dict] = []
        self.uploads: list[dict] = []
        self.classes_status = 200
        self.detect_status = 200
        self.detect_body: str | None = None
        self.detect_delay = 0.0

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/classes", self.classes)
        app.router.add_post("/detect_frame", self.detect_frame)
        app.router.add_post("/detect", self.detect)
        return app

    def _detect_response(self) -> web.Response:
        if self.detect_status != 200:
            return web.Response(status=self.detect_status, text="model not loaded")
        if self.detect_body is not None:
            return web.Response(text=self.detect_body, content_type="application/json")
        return web.json_response(
            {
                "image": make_data_url(),
                "detections": [
                    {"class": "person", "confidence": 0.9, "bbox": [0, 0, 10, 10]},
                    {"class": "person", "confidence": 0.8, "bbox": [5, 5, 15, 15]},
                    {"class": "car", "confidence": 0.7, "bbox": [1, 1, 2, 2]},
                ],
            }
        )

    async def classes(self, request):
        if self.classes_status != 200:
            return web.Response(status=self.classes_status)
        return web.json_response({"classes": ["person", "car", "dog"]})

    async def detect_frame(self, request):
        self.frame_requests.append(await request.json())
        if self.detect_delay:
            await asyncio.sleep(self.detect_delay)
        return self._detect_response()

    async def detect(self, request):
        form = await request.post()
        field = form["file"]
        self.uploads.append(
            {
                "threshold": request.query.get("threshold"),
                "filename": field.filename,
                "content_type": field.content_type,
                "data": field.file.read(),
            }
        )
        return self._detect_response()


def run_with_server(detector: FakeDetector, scenario, timeout=5.0):
    """Start the fake backend, run scenario(client), tear everything down."""

    async def main():
        server = BackendServer(detector.make_app())
        await server.start_server()
        client = InferenceClient(
            f"http://{server.host}:{server.port}/", timeout_seconds=timeout
        )
        try:
            return await scenario(client)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(main())


class TestInferenceClient:
    """Tests for InferenceClient requests and error mapping."""

    def test_infer_frame(self):
        detector = FakeDetector()
        image = encode(make_frame())

        async def scenario(client):
            return await client.infer_frame(image, 0.55, frozenset({"person", "car"}))

        result = run_with_server(detector, scenario)

        sent = detector.frame_requests[0]
        assert sent["image_base64"] == image.to_data_url()
        assert sent["threshold"] == 0.55
        assert sent["classes"] == ["car", "person"]
        assert [d.class_name for d in result.detections] == ["person", "person", "car"]
        assert result.annotated_image.startswith("data:image/jpeg;base64,")

    def test_infer_frame_without_filter_sends_null(self):
        detector = FakeDetector()

        async def scenario(client):
            await client.infer_frame(encode(make_frame()), 0.5, None)
            await client.infer_frame(encode(make_frame()), 0.5, frozenset())

        run_with_server(detector, scenario)
        assert [r["classes"] for r in detector.frame_requests] == [None, None]

    def test_infer_upload(self, tmp_path):
        detector = FakeDetector()
        path = tmp_path / "street.png"
        path.write_bytes(b"\x89PNG fake image")

        async def scenario(client):
            return await client.infer_upload(path, 0.3)

        result = run_with_server(detector, scenario)

        upload = detector.uploads[0]
        assert upload["threshold"] == "0.3"
        assert upload["filename"] == "street.png"
        assert upload["content_type"] == "image/png"
        assert upload["data"] == b"\x89PNG fake image"
        assert len(result.detections) == 3

    def test_infer_upload_bytes(self):
        detector = FakeDetector()

        async def scenario(client):
            return await client.infer_upload(b"jpegdata", 0.5)

        run_with_server(detector, scenario)
        assert detector.uploads[0]["filename"] == "upload.jpg"
        assert detector.uploads[0]["content_type"] == "image/jpeg"

    def test_non_success_status_raises_service_error(self):
        detector = FakeDetector()
        detector.detect_status = 500

        async def scenario(client):
            with pytest.raises(ServiceError) as exc_info:
                await client.infer_frame(encode(make_frame()), 0.5)
            return exc_info.value

        error = run_with_server(detector, scenario)
        assert error.status == 500
        assert "model not loaded" in str(error)
        assert len(detector.frame_requests) == 1

    def test_failed_upload_is_not_retried(self):
        detector = FakeDetector()
        detector.detect_status = 503

        async def scenario(client):
            with pytest.raises(ServiceError):
                await client.infer_upload(b"jpegdata", 0.5)

        run_with_server(detector, scenario)
        assert len(detector.uploads) == 1

    def test_timeout_raises_network_error(self):
        detector = FakeDetector()
        detector.detect_delay = 0.5

        async def scenario(client):
            with pytest.raises(NetworkError):
                await client.infer_frame(encode(make_frame()), 0.5)

        run_with_server(detector, scenario, timeout=0.1)
        assert len(detector.frame_requests) == 1

    def test_invalid_json_raises_service_error(self):
        detector = FakeDetector()
        detector.detect_body = "<html>oops</html>"

        async def scenario(client):
            with pytest.raises(ServiceError):
                await client.infer_upload(b"x", 0.5)

        run_with_server(detector, scenario)

    def test_missing_image_raises_service_error(self):
        detector = FakeDetector()
        detector.detect_body = '{"detections": []}'

        async def scenario(client):
            with pytest.raises(ServiceError):
                await client.infer_frame(encode(make_frame()), 0.5)

        run_with_server(detector, scenario)

    def test_connection_refused_raises_network_error(self):
        async def main():
            async with InferenceClient(f"http://127.0.0.1:{unused_port()}") as client:
                with pytest.raises(NetworkError):
                    await client.infer_frame(encode(make_frame()), 0.5)

        asyncio.run(main())

    def test_fetch_classes(self):
        detector = FakeDetector()

        async def scenario(client):
            return await client.fetch_classes()

        assert run_with_server(detector, scenario) == ["person", "car", "dog"]

    def test_fetch_classes_service_error_yields_empty(self):
        detector = FakeDetector()
        detector.classes_status = 503

        async def scenario(client):
            return await client.fetch_classes()

        assert run_with_server(detector, scenario) == []

    def test_fetch_classes_unreachable_yields_empty(self):
        async def main():
            async with InferenceClient(f"http://127.0.0.1:{unused_port()}") as client:
                return await client.fetch_classes()

        assert asyncio.run(main()) == []
