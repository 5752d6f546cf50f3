"""
Frame bridge: the single serialization point between capture and encoding.

For every captured frame, in capture order:
1. decode the transport encoding into raw image bytes
2. submit the bytes to the encoder (fire-and-forget)
3. acknowledge the frame so the render source sends the next one

The ack is always sent, and always after the submission attempt. A frame that
fails to decode or submit is logged and dropped, but still acknowledged, so
one bad frame never stalls the screencast.
"""

from __future__ import annotations

import base64
import binascii
import logging

from kioskcast.encoder.ffmpeg_encoder import FFmpegEncoder
from kioskcast.errors import (
    EncoderWriteError,
    EncoderWriteStalled,
    FrameDecodeError,
)
from kioskcast.render.render_source import FrameEvent, RenderSource

logger = logging.getLogger(__name__)

# Log a summary every N consecutive per-frame failures
FAILURE_LOG_EVERY = 25


def decode_frame(frame: FrameEvent) -> bytes:
    """
    Decode a frame payload into raw image bytes.

    Raises:
        FrameDecodeError: If the encoding is unknown or the payload is malformed
    """
    if frame.encoding == "base64":
        try:
            return base64.b64decode(frame.data, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise FrameDecodeError(f"Invalid base64 payload in frame {frame.sequence}: {e}") from e
    if frame.encoding == "binary":
        if not isinstance(frame.data, (bytes, bytearray, memoryview)):
            raise FrameDecodeError(
                f"Binary frame {frame.sequence} carries {type(frame.data).__name__}, not bytes"
            )
        return bytes(frame.data)
    raise FrameDecodeError(f"Unknown frame encoding {frame.encoding!r} (frame {frame.sequence})")


class FrameBridge:
    """
    Forwards FrameEvents from a RenderSource into an FFmpegEncoder.

    Only the supervisor loop calls handle(), one frame at a time, which makes
    the bridge the one place where encoder input order is decided.

    Attributes:
        frames_submitted: Frames accepted by the encoder
        frames_failed: Frames dropped because decode or submit failed
        frames_acked: Frames acknowledged back to the render source
        consecutive_failures: Current run of failed frames
    """

    def __init__(
        self,
        encoder: FFmpegEncoder,
        source: RenderSource,
        write_failure_limit: int = 0,
    ) -> None:
        """
        Args:
            encoder: Encoder receiving raw frames
            source: Render source receiving acknowledgements
            write_failure_limit: Consecutive failures that escalate to
                EncoderWriteStalled; 0 never escalates
        """
        self._encoder = encoder
        self._source = source
        self._write_failure_limit = write_failure_limit

        self.frames_submitted = 0
        self.frames_failed = 0
        self.frames_acked = 0
        self.consecutive_failures = 0
        self._last_sequence = 0

    def handle(self, frame: FrameEvent) -> bool:
        """
        Decode, submit and acknowledge one frame.

        Returns:
            True if the frame reached the encoder, False if it was dropped

        Raises:
            CaptureSessionLost: If the acknowledgement cannot be delivered
            EncoderWriteStalled: If the failure limit is enabled and reached
        """
        if frame.sequence and frame.sequence <= self._last_sequence:
            logger.warning(
                f"Frame {frame.sequence} arrived after frame {self._last_sequence}",
                extra={"sequence": frame.sequence},
            )
        self._last_sequence = max(self._last_sequence, frame.sequence)

        submitted = False
        try:
            raw = decode_frame(frame)
            self._encoder.write(raw)
            submitted = True
        except (FrameDecodeError, EncoderWriteError) as e:
            logger.error(f"[Bridge] Error processing frame {frame.sequence}: {e}")
        except Exception as e:
            logger.error(f"[Bridge] Unexpected error processing frame {frame.sequence}: {e}", exc_info=True)
        finally:
            self._source.ack(frame)
            self.frames_acked += 1

        if submitted:
            self.frames_submitted += 1
            if self.consecutive_failures:
                logger.info(f"[Bridge] Frame submission recovered after {self.consecutive_failures} failure(s)")
            self.consecutive_failures = 0
            return True

        self.frames_failed += 1
        self.consecutive_failures += 1
        if self.consecutive_failures % FAILURE_LOG_EVERY == 0:
            logger.warning(
                f"[Bridge] {self.consecutive_failures} consecutive frame submissions failed "
                f"({self.frames_failed} total)"
            )
        if self._write_failure_limit and self.consecutive_failures >= self._write_failure_limit:
            raise EncoderWriteStalled(
                f"{self.consecutive_failures} consecutive frame submissions failed "
                f"(limit {self._write_failure_limit})"
            )
        return False
