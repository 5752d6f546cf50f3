"""Frame bridge between the render source and the encoder."""

from kioskcast.bridge.frame_bridge import FrameBridge, decode_frame

__all__ = [
    "FrameBridge",
    "decode_frame",
]
