"""
Session Context - the state shared by the poll loop and the control surface

One instance per running client: detection parameters, the currently
displayed annotated image, the tally history and diagnostics.
"""

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

from livedetect.camera.frame_encoder import EncodedImage, decode_data_url
from livedetect.inference.detection import InferenceResult

from .history import DEFAULT_CAPACITY, HistoryAggregator, HistoryEntry

logger = logging.getLogger(__name__)

MIN_THRESHOLD = 0.1
MAX_THRESHOLD = 0.9


@dataclass(frozen=True)
class DetectionParameters:
    """Parameters sent with every round. Replaced, never mutated."""

    threshold: float = 0.5
    classes: frozenset[str] | None = None  # None = no filter

    def __post_init__(self):
        if not MIN_THRESHOLD <= self.threshold <= MAX_THRESHOLD:
            raise ValueError(
                f"threshold must be {MIN_THRESHOLD}-{MAX_THRESHOLD}, got {self.threshold}"
            )
        if self.classes is not None and not self.classes:
            # An empty selection means "no filter"
            object.__setattr__(self, "classes", None)

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "classes": sorted(self.classes) if self.classes else None,
        }


class SessionContext:
    """Owned state for one client session."""

    def __init__(
        self,
        parameters: DetectionParameters | None = None,
        history_size: int = DEFAULT_CAPACITY,
    ):
        self.parameters = parameters or DetectionParameters()
        self.history = HistoryAggregator(history_size)
        self.available_classes: list[str] = []
        self.annotated_image: str | None = None  # data URL
        self.last_result_at: datetime | None = None
        self.last_error: str | None = None
        self.last_error_at: datetime | None = None

    # ==================== Parameters ====================

    def set_threshold(self, threshold: float) -> DetectionParameters:
        """Replace the confidence threshold for subsequent rounds."""
        self.parameters = replace(self.parameters, threshold=float(threshold))
        logger.info(f"Threshold set to {self.parameters.threshold:.2f}")
        return self.parameters

    def toggle_class(self, label: str) -> DetectionParameters:
        """Add the label to the class filter, or remove it if present."""
        selected = set(self.parameters.classes or ())
        if label in selected:
            selected.discard(label)
        else:
            selected.add(label)
        self.parameters = replace(self.parameters, classes=frozenset(selected))
        logger.info(f"Class filter: {self.parameters.to_dict()['classes'] or 'none'}")
        return self.parameters

    # ==================== Results ====================

    def apply_result(self, result: InferenceResult) -> HistoryEntry:
        """Show a result's annotated image and log its tally."""
        self.annotated_image = result.annotated_image
        self.last_result_at = result.received_at
        return self.history.record(result.detections)

    def record_error(self, error: BaseException) -> None:
        self.last_error = f"{type(error).__name__}: {error}"
        self.last_error_at = datetime.now()

    def annotated_bytes(self) -> EncodedImage | None:
        """Decoded annotated image, or None if nothing is displayed."""
        if not self.annotated_image:
            return None
        return decode_data_url(self.annotated_image)

    def save_snapshot(self, directory: str | Path) -> Path | None:
        """
        Write the displayed annotated image to disk.

        Returns:
            Path of the written file, or None if there is nothing to save
        """
        image = self.annotated_bytes()
        if image is None:
            logger.info("No annotated image to save")
            return None

        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        filepath = directory / f"yolo_snapshot_{int(time.time() * 1000)}.jpg"
        filepath.write_bytes(image.data)
        logger.info(f"Snapshot saved: {filepath}")
        return filepath

    def get_status(self) -> dict:
        """Get session status."""
        return {
            "parameters": self.parameters.to_dict(),
            "available_classes": len(self.available_classes),
            "has_annotated_image": self.annotated_image is not None,
            "last_result_at": self.last_result_at.isoformat() if self.last_result_at else None,
            "history_size": len(self.history),
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }
