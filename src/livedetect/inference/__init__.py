"""
Inference module for LiveDetect.

Provides:
- InferenceClient: async HTTP client for the remote detection service
- Detection / InferenceResult: response data structures
"""

from .client import InferenceClient
from .detection import BoundingBox, Detection, InferenceResult

__all__ = [
    "InferenceClient",
    "Detection",
    "BoundingBox",
    "InferenceResult",
]
