"""
Render subsystem for kioskcast.

This package provides the frame capture components:
- RenderSource: Headless Chromium page captured via the DevTools screencast
- FrameEvent: One captured frame awaiting submission and acknowledgement
- FrameQueue: Bounded ordered queue between event callbacks and the consumer loop
"""

from kioskcast.render.frame_queue import FrameQueue, FrameQueueFull, FrameQueueStats
from kioskcast.render.render_source import FrameEvent, RenderSource

__all__ = [
    "FrameEvent",
    "FrameQueue",
    "FrameQueueFull",
    "FrameQueueStats",
    "RenderSource",
]
