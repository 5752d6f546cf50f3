"""
Audio supply for kioskcast.

Resolves the music directory into a looping FFmpeg concat input.
"""

from kioskcast.audio.audio_supply import AudioSource, resolve_audio_source

__all__ = [
    "AudioSource",
    "resolve_audio_source",
]
