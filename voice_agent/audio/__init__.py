"""Audio capture, segmentation and the segment hand-off channel."""

from .channel import SegmentChannel
from .listener import FrameSource, SegmentListener
from .segmenter import AudioSegment, Segmenter, SegmenterConfig, frame_rms

__all__ = [
    "AudioSegment",
    "FrameSource",
    "SegmentChannel",
    "SegmentListener",
    "Segmenter",
    "SegmenterConfig",
    "frame_rms",
]
