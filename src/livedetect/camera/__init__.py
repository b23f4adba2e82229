"""
Camera module for LiveDetect.

Provides:
- MediaSource: OpenCV camera handle with background capture thread
- Frame encoding utilities (JPEG + data URLs)
"""

from .frame_encoder import EncodedImage, decode_data_url, encode
from .media_source import MediaSource

__all__ = [
    "MediaSource",
    "EncodedImage",
    "encode",
    "decode_data_url",
]
