"""
Frame Encoder

Serializes raster surfaces to JPEG for network transfer and converts
between raw image bytes and data URLs.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 0.85


@dataclass(frozen=True)
class EncodedImage:
    """Compressed still image ready for transfer."""

    data: bytes
    mime_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def __len__(self) -> int:
        return len(self.data)


def encode(surface: np.ndarray, quality: float = DEFAULT_QUALITY) -> EncodedImage:
    """
    Encode an RGB surface as JPEG.

    Args:
        surface: RGB numpy array (H, W, 3), uint8
        quality: JPEG quality in (0, 1], mapped to PIL's 1-100 scale

    Returns:
        EncodedImage with JPEG bytes
    """
    if not 0.0 < quality <= 1.0:
        raise ValueError(f"quality must be in (0, 1], got {quality}")

    img = Image.fromarray(surface)
    buf = BytesIO()
    img.save(buf, "JPEG", quality=max(1, round(quality * 100)))
    return EncodedImage(buf.getvalue())


def decode_data_url(data_url: str) -> EncodedImage:
    """Parse a base64 data URL (as returned by the detection service)."""
    if not data_url.startswith("data:"):
        raise ValueError("not a data URL")

    header, sep, payload = data_url.partition(",")
    if not sep or not header.endswith(";base64"):
        raise ValueError("data URL is not base64 encoded")

    mime_type = header[len("data:"):-len(";base64")] or "application/octet-stream"
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e

    return EncodedImage(data, mime_type)
