"""
Encoder subsystem for kioskcast.

This package provides the encoder components:
- FFmpegEncoder: Owns the ffmpeg process, its pipes and helper threads
- EncoderHandle: Snapshot of the process state
- build_ffmpeg_cmd: The ffmpeg argument vector for frames + looping audio -> HLS
"""

from kioskcast.encoder.ffmpeg_encoder import EncoderHandle, FFmpegEncoder, build_ffmpeg_cmd

__all__ = [
    "EncoderHandle",
    "FFmpegEncoder",
    "build_ffmpeg_cmd",
]
