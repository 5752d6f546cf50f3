"""
Audio supply: turns a directory of music files into a looping audio input.

The manifest written here is an FFmpeg concat demuxer list. FFmpeg reads it
with `-f concat -safe 0 -stream_loop -1`, so the playlist repeats forever.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple

from kioskcast.errors import NoAudioFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioSource:
    """
    Immutable description of the looping audio input.

    Attributes:
        paths: Absolute paths of the tracks, in playlist order (never empty)
        manifest_path: Absolute path of the concat manifest listing `paths`
        loop: Always True; the manifest is replayed indefinitely
    """

    paths: Tuple[str, ...]
    manifest_path: str
    loop: bool = True

    def __post_init__(self) -> None:
        if not self.paths:
            raise ValueError("AudioSource requires at least one audio file")
        if not self.loop:
            raise ValueError("AudioSource must loop")

    def input_args(self) -> List[str]:
        """FFmpeg input arguments for this source (demuxer options + -i)."""
        return [
            "-f", "concat",
            "-safe", "0",
            "-stream_loop", "-1",
            "-i", self.manifest_path,
        ]


def _concat_line(path: str) -> str:
    # concat demuxer quoting: a ' inside a quoted string becomes '\''
    escaped = path.replace("'", "'\\''")
    return f"file '{escaped}'"


def _list_tracks(music_dir: Path, extensions: Iterable[str]) -> List[Path]:
    suffixes = {ext.lower() for ext in extensions}
    return sorted(
        (entry for entry in music_dir.iterdir()
         if entry.is_file() and entry.suffix.lower() in suffixes),
        key=lambda entry: entry.name,
    )


def resolve_audio_source(
    music_dir: str,
    manifest_path: str,
    extensions: Iterable[str] = (".mp3",),
) -> AudioSource:
    """
    Scan `music_dir` for audio files and write the concat manifest.

    The directory is created if it does not exist yet, so an operator can
    drop files into it later.

    Args:
        music_dir: Directory holding the music files
        manifest_path: Where to write the concat manifest
        extensions: Accepted file suffixes (case-insensitive)

    Returns:
        AudioSource referencing the written manifest

    Raises:
        NoAudioFound: If the directory cannot be read or holds no matching files
    """
    music_path = Path(os.path.abspath(music_dir))
    logger.info(f"[Audio] Scanning for music in: {music_path}")

    try:
        music_path.mkdir(parents=True, exist_ok=True)
        tracks = _list_tracks(music_path, extensions)
    except OSError as e:
        logger.error(f"[Audio] CRITICAL: Could not read music directory: {e}")
        raise NoAudioFound(f"Could not read music directory {music_path}: {e}") from e

    if not tracks:
        logger.error(f"[Audio] CRITICAL: No {'/'.join(extensions)} files were found in {music_path}.")
        logger.error("[Audio] There is no silent fallback; the streamer will not start.")
        raise NoAudioFound(f"No audio files found in {music_path}")

    logger.info(f"[Audio] Found {len(tracks)} track(s).")

    paths = tuple(str(track) for track in tracks)
    manifest = Path(os.path.abspath(manifest_path))
    manifest.parent.mkdir(parents=True, exist_ok=True)
    manifest.write_text("\n".join(_concat_line(p) for p in paths), encoding="utf-8")
    logger.debug(f"[Audio] Wrote concat manifest {manifest}", extra={"tracks": len(paths)})

    return AudioSource(paths=paths, manifest_path=os.fspath(manifest))
