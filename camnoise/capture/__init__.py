"""Frame sources feeding the camera session.

:class:`USBFrameSource` needs OpenCV and is imported from
:mod:`camnoise.capture.usb_source` directly.
"""

from .pipeline import OrderedPipeline
from .source import BrightnessTick, Coordinate, FrameSource, TickCallback
from .synthetic import SyntheticFrameSource

__all__ = [
    "BrightnessTick",
    "Coordinate",
    "FrameSource",
    "OrderedPipeline",
    "SyntheticFrameSource",
    "TickCallback",
]
