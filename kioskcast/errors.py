"""
Exception taxonomy for kioskcast.

StartupError subclasses keep the pipeline from ever reaching STREAMING.
RuntimeFatal subclasses end a running pipeline. EncoderWriteError and
FrameDecodeError are per-frame failures that FrameBridge absorbs.
"""


class KioskcastError(Exception):
    """Base class for all kioskcast errors."""


class StartupError(KioskcastError):
    """A pipeline stage failed before streaming began."""


class NoAudioFound(StartupError):
    """The music directory holds no playable audio files."""


class EncoderSpawnError(StartupError):
    """FFmpeg could not be started or exited during startup."""


class RenderSourceError(StartupError):
    """Browser launch, navigation or screencast start failed."""


class RuntimeFatal(KioskcastError):
    """A running pipeline hit a condition it cannot continue from."""


class EncoderExited(RuntimeFatal):
    """The FFmpeg process exited (cleanly or not) while the pipeline was live."""

    def __init__(self, returncode: int) -> None:
        super().__init__(f"FFmpeg process exited with code {returncode}")
        self.returncode = returncode


class EncoderWriteStalled(RuntimeFatal):
    """Too many consecutive frame submissions failed."""


class CaptureSessionLost(RuntimeFatal):
    """The page, the browser or the screencast session went away while streaming."""


class EncoderWriteError(KioskcastError):
    """A single frame could not be submitted to the encoder."""


class FrameDecodeError(KioskcastError):
    """A captured frame payload could not be decoded into raw image bytes."""
