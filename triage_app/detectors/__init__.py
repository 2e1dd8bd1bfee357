"""Change-detection strategies shared by every workflow."""

from .base import DetectedItem, Detection, Detector
from .content_diff import ContentDiffDetector, TrackedEntity
from .id_watermark import IdWatermarkDetector
from .processed_set import ProcessedSetDetector
from .timestamp_watermark import ExternalChanges, TimestampWatermarkDetector

__all__ = [
    "ContentDiffDetector",
    "DetectedItem",
    "Detection",
    "Detector",
    "ExternalChanges",
    "IdWatermarkDetector",
    "ProcessedSetDetector",
    "TimestampWatermarkDetector",
    "TrackedEntity",
]
