"""
Detection data structures for results returned by the detection service.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

UNKNOWN_CLASS = "unknown"


@dataclass
class BoundingBox:
    """Bounding box coordinates in whatever units the service reports."""

    x: float  # Left edge
    y: float  # Top edge
    width: float
    height: float

    @classmethod
    def from_payload(cls, value: Any) -> "BoundingBox | None":
        """
        Parse a bbox as sent by the service.

        Accepts a corner list [x1, y1, x2, y2] or a mapping with
        x/y/width/height keys. Anything else yields None.
        """
        if isinstance(value, (list, tuple)) and len(value) == 4:
            x1, y1, x2, y2 = (float(v) for v in value)
            return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)
        if isinstance(value, dict) and {"x", "y", "width", "height"} <= value.keys():
            return cls(
                x=float(value["x"]),
                y=float(value["y"]),
                width=float(value["width"]),
                height=float(value["height"]),
            )
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class Detection:
    """Single object detection. Only class_name matters to the loop."""

    class_name: str
    confidence: float | None = None
    bbox: BoundingBox | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "Detection":
        """Build a Detection from one entry of the service's detections list."""
        if not isinstance(payload, dict):
            return cls(class_name=UNKNOWN_CLASS, metadata={"raw": payload})

        label = payload.get("class", payload.get("class_name"))
        confidence = payload.get("confidence", payload.get("score"))
        return cls(
            class_name=str(label) if label is not None else UNKNOWN_CLASS,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            bbox=BoundingBox.from_payload(payload.get("bbox")),
            metadata=dict(payload),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "class_name": self.class_name,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict() if self.bbox else None,
        }


@dataclass
class InferenceResult:
    """Annotated image and detections from one successful service call."""

    annotated_image: str  # data URL
    detections: list[Detection]
    received_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_response(cls, body: Any) -> "InferenceResult":
        """
        Parse the service's {image, detections} response body.

        Raises:
            ValueError: If the body has no annotated image
        """
        if not isinstance(body, dict):
            raise ValueError("response body is not a JSON object")
        image = body.get("image")
        if not isinstance(image, str) or not image:
            raise ValueError("response has no annotated image")
        detections = body.get("detections") or []
        if not isinstance(detections, list):
            raise ValueError("response detections is not a list")
        return cls(
            annotated_image=image,
            detections=[Detection.from_payload(d) for d in detections],
        )
