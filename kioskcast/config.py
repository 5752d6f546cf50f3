"""
Configuration management for kioskcast.

Reads configuration from an optional .env file and environment variables with
sensible defaults. The result is a frozen StreamerConfig built once at startup
and passed explicitly to every pipeline component.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/kioskcast/streamer.env")

DEFAULT_TARGET_URL = "http://127.0.0.1:8080/?kiosk=true&settings-mediaPlaying-boolean=true"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("KIOSKCAST_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _env(name: str, default: str) -> str:
    """Read an env var; set-but-empty counts as unset."""
    return os.getenv(name) or default


def _int_env(name: str, default: int) -> int:
    value = _env(name, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _validate_bitrate(name: str, bitrate: str) -> None:
    if not bitrate.endswith("k"):
        raise ValueError(f"Invalid {name}: {bitrate} (must end with 'k', e.g., '128k')")
    try:
        bitrate_value = int(bitrate[:-1])
    except ValueError:
        raise ValueError(f"Invalid {name}: {bitrate}")
    if bitrate_value <= 0:
        raise ValueError(f"Invalid {name}: {bitrate} (must be > 0)")


@dataclass(frozen=True)
class StreamConfig:
    """Encoding parameters that stay fixed for the lifetime of a pipeline run."""

    width: int = 640
    height: int = 480
    fps: int = 25
    video_bitrate: str = "2000k"
    audio_bitrate: str = "128k"
    segment_time: int = 2
    list_size: int = 5

    # Canonical encode format (not configurable from the environment)
    output_width: int = 1280
    output_height: int = 720
    audio_gain: float = 0.5
    frame_format: str = "jpeg"
    frame_quality: int = 85

    @property
    def keyframe_interval(self) -> int:
        """Frames between forced keyframes, aligned to segment boundaries."""
        return self.fps * self.segment_time

    def validate(self) -> None:
        """
        Validate encoding parameters.

        Raises:
            ValueError: If any parameter is out of range
        """
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid frame size: {self.width}x{self.height} (must be > 0)")
        if self.fps <= 0:
            raise ValueError(f"Invalid FPS: {self.fps} (must be > 0)")
        if self.segment_time <= 0:
            raise ValueError(f"Invalid segment time: {self.segment_time} (must be > 0)")
        if self.list_size <= 0:
            raise ValueError(f"Invalid playlist size: {self.list_size} (must be > 0)")
        _validate_bitrate("video bitrate", self.video_bitrate)
        _validate_bitrate("audio bitrate", self.audio_bitrate)
        if self.frame_format not in ("jpeg", "png"):
            raise ValueError(f"Invalid frame format: {self.frame_format} (must be 'jpeg' or 'png')")
        if not 0 <= self.frame_quality <= 100:
            raise ValueError(f"Invalid frame quality: {self.frame_quality} (must be 0-100)")


@dataclass(frozen=True)
class StreamerConfig:
    """kioskcast configuration loaded from .env file and environment variables."""

    target_url: str = DEFAULT_TARGET_URL
    hls_dir: str = "hls"
    music_dir: str = "music"
    audio_list_file: str = "audio_list.txt"
    stream: StreamConfig = field(default_factory=StreamConfig)

    ffmpeg_bin: str = "ffmpeg"
    ffmpeg_debug: bool = False
    audio_extensions: Tuple[str, ...] = (".mp3",)

    # Pipeline tuning
    frame_queue_capacity: int = 8
    encoder_queue_capacity: int = 50
    write_failure_limit: int = 0  # 0 = never escalate per-frame failures
    navigation_timeout_ms: int = 30000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def playlist_path(self) -> str:
        return os.path.join(self.hls_dir, "stream.m3u8")

    @classmethod
    def load_config(cls) -> "StreamerConfig":
        """
        Load configuration from environment variables.

        Returns:
            StreamerConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        stream = StreamConfig(
            width=_int_env("WIDTH", 640),
            height=_int_env("HEIGHT", 480),
            fps=_int_env("FPS", 25),
            video_bitrate=_env("VIDEO_BITRATE", "2000k"),
            audio_bitrate=_env("AUDIO_BITRATE", "128k"),
            segment_time=_int_env("HLS_SEGMENT_TIME", 2),
            list_size=_int_env("HLS_LIST_SIZE", 5),
        )

        log_file = os.getenv("KIOSKCAST_LOG_FILE")
        if log_file == "":
            log_file = None

        config = cls(
            target_url=_env("WS4KP_URL", DEFAULT_TARGET_URL),
            hls_dir=os.path.abspath(_env("HLS_DIR", "./hls")),
            music_dir=os.path.abspath(_env("MUSIC_DIR", "./music")),
            audio_list_file=os.path.abspath(_env("AUDIO_LIST_FILE", "./audio_list.txt")),
            stream=stream,
            ffmpeg_bin=_env("FFMPEG_BIN", "ffmpeg"),
            ffmpeg_debug=_env("FFMPEG_DEBUG", "0") == "1",
            frame_queue_capacity=_int_env("KIOSKCAST_FRAME_QUEUE", 8),
            encoder_queue_capacity=_int_env("KIOSKCAST_ENCODER_QUEUE", 50),
            write_failure_limit=_int_env("KIOSKCAST_WRITE_FAILURE_LIMIT", 0),
            navigation_timeout_ms=_int_env("KIOSKCAST_NAV_TIMEOUT_MS", 30000),
            log_level=_env("KIOSKCAST_LOG_LEVEL", "INFO"),
            log_file=log_file,
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.target_url:
            raise ValueError("Target URL cannot be empty (set WS4KP_URL)")

        self.stream.validate()

        if not self.audio_extensions:
            raise ValueError("At least one audio extension is required")

        if self.frame_queue_capacity <= 0:
            raise ValueError(f"Invalid frame queue capacity: {self.frame_queue_capacity} (must be > 0)")

        if self.encoder_queue_capacity <= 0:
            raise ValueError(f"Invalid encoder queue capacity: {self.encoder_queue_capacity} (must be > 0)")

        if self.write_failure_limit < 0:
            raise ValueError(f"Invalid write failure limit: {self.write_failure_limit} (must be >= 0)")

        if self.navigation_timeout_ms <= 0:
            raise ValueError(f"Invalid navigation timeout: {self.navigation_timeout_ms} (must be > 0)")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(VALID_LOG_LEVELS)})"
            )


def load_config() -> StreamerConfig:
    """
    Load and validate kioskcast configuration from environment variables.

    Returns:
        StreamerConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return StreamerConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
