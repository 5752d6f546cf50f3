"""
Pipeline supervisor for kioskcast.

Sequences startup (audio -> encoder -> browser -> capture), runs the frame loop
and drives unconditional teardown on any fatal condition. There is no restart
and no degraded mode: every path out of run() ends in TERMINATED with exit
code 1.
"""

from __future__ import annotations

import enum
import logging
import threading
from contextlib import ExitStack
from typing import Callable, Optional

from kioskcast.audio.audio_supply import AudioSource, resolve_audio_source
from kioskcast.bridge.frame_bridge import FrameBridge
from kioskcast.config import StreamerConfig
from kioskcast.encoder.ffmpeg_encoder import FFmpegEncoder
from kioskcast.errors import EncoderExited, KioskcastError, RuntimeFatal, StartupError
from kioskcast.render.render_source import RenderSource

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1

# How long the frame loop waits for a frame before re-checking health (seconds)
FRAME_POLL_SEC = 0.1


class PipelineState(enum.Enum):
    """Pipeline lifecycle. Transitions only move forward; TERMINATED is absorbing."""
    NOT_STARTED = 1
    AUDIO_READY = 2
    ENCODER_RUNNING = 3
    RENDER_READY = 4
    STREAMING = 5
    TERMINATED = 6


class PipelineSupervisor:
    """
    Owns the pipeline components for one run.

    Components are created through factories so they can be replaced in tests:
    - audio_resolver(music_dir, manifest_path, extensions) -> AudioSource
    - encoder_factory(config, audio, on_exit=...) -> FFmpegEncoder-like
    - source_factory(config) -> RenderSource-like
    """

    def __init__(
        self,
        config: StreamerConfig,
        audio_resolver: Callable[..., AudioSource] = resolve_audio_source,
        encoder_factory: Callable[..., FFmpegEncoder] = FFmpegEncoder,
        source_factory: Callable[[StreamerConfig], RenderSource] = RenderSource,
        on_state_change: Optional[Callable[[PipelineState], None]] = None,
    ) -> None:
        self._config = config
        self._audio_resolver = audio_resolver
        self._encoder_factory = encoder_factory
        self._source_factory = source_factory
        self._on_state_change = on_state_change

        self._state = PipelineState.NOT_STARTED
        self._state_lock = threading.Lock()
        self._exit_code: Optional[int] = None

        # Set from the encoder exit monitor thread or stop()
        self._fatal_event = threading.Event()
        self._fatal_error: Optional[BaseException] = None

        self.audio: Optional[AudioSource] = None
        self.encoder: Optional[FFmpegEncoder] = None
        self.source: Optional[RenderSource] = None
        self.bridge: Optional[FrameBridge] = None

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def _set_state(self, new_state: PipelineState) -> None:
        with self._state_lock:
            old_state = self._state
            if old_state == PipelineState.TERMINATED:
                return
            self._state = new_state

        # Notify outside lock to avoid deadlock
        if old_state != new_state:
            logger.info(f"[Streamer] Pipeline state: {old_state.name} -> {new_state.name}")
            if self._on_state_change:
                self._on_state_change(new_state)

    # ------------------------------------------------------------ fatal flags

    def _on_encoder_exit(self, returncode: int) -> None:
        # Runs on the encoder exit monitor thread
        self._signal_fatal(EncoderExited(returncode))

    def _signal_fatal(self, error: BaseException) -> None:
        if self._fatal_event.is_set():
            return
        self._fatal_error = error
        self._fatal_event.set()

    def stop(self, reason: str = "stop requested") -> None:
        """Ask a running pipeline to terminate. Safe from any thread."""
        logger.info(f"[Streamer] Stop requested: {reason}")
        self._signal_fatal(RuntimeFatal(reason))

    def _raise_if_fatal(self) -> None:
        if self._fatal_event.is_set():
            raise self._fatal_error

    # -------------------------------------------------------------------- run

    def run(self) -> int:
        """
        Run the pipeline until a fatal condition.

        Returns:
            Process exit code (always 1; the pipeline never ends successfully)
        """
        config = self._config
        logger.info("[Streamer] Starting...")
        logger.info(f"[Streamer] Target URL: {config.target_url}")
        logger.info(f"[Streamer] HLS Output Dir: {config.hls_dir}")

        try:
            with ExitStack() as resources:
                self._start(resources)
                self._stream()
        except StartupError as e:
            logger.error(f"[Streamer] Startup failed in state {self.state.name}: {e}")
        except RuntimeFatal as e:
            logger.error(f"[Streamer] Pipeline terminated: {e}")
        except KioskcastError as e:
            logger.error(f"[Streamer] A critical error occurred: {e}")
        except Exception as e:
            logger.error(f"[Streamer] A critical error occurred: {e}", exc_info=True)
        finally:
            self._terminate(EXIT_FAILURE)

        return self._exit_code

    def _start(self, resources: ExitStack) -> None:
        config = self._config

        self.audio = self._audio_resolver(
            config.music_dir,
            config.audio_list_file,
            config.audio_extensions,
        )
        self._set_state(PipelineState.AUDIO_READY)

        self.encoder = self._encoder_factory(config, self.audio, on_exit=self._on_encoder_exit)
        # Registered before spawn so a half-started encoder is still released
        resources.callback(self._release_encoder)
        self.encoder.spawn()
        self._set_state(PipelineState.ENCODER_RUNNING)
        self._raise_if_fatal()

        self.source = self._source_factory(config)
        # LIFO: the browser closes before the encoder is stopped
        resources.callback(self._release_source)
        self.source.launch()
        self._set_state(PipelineState.RENDER_READY)
        self._raise_if_fatal()

        self.source.start_capture(config.stream.frame_format, config.stream.frame_quality)
        self.bridge = FrameBridge(
            self.encoder,
            self.source,
            write_failure_limit=config.write_failure_limit,
        )
        self._set_state(PipelineState.STREAMING)

    def _stream(self) -> None:
        """Frame loop: one frame at a time, in capture order, until a fatal event."""
        while True:
            self._raise_if_fatal()
            frame = self.source.next_frame(timeout=FRAME_POLL_SEC)
            if frame is None:
                continue
            # The encoder may have died while we waited for the frame
            self._raise_if_fatal()
            self.bridge.handle(frame)

    # --------------------------------------------------------------- teardown

    def _release_source(self) -> None:
        try:
            self.source.close()
        except Exception as e:
            logger.warning(f"[Streamer] Error closing render source: {e}")

    def _release_encoder(self) -> None:
        try:
            self.encoder.stop()
        except Exception as e:
            logger.warning(f"[Streamer] Error stopping encoder: {e}")

    def _terminate(self, code: int) -> None:
        with self._state_lock:
            if self._state == PipelineState.TERMINATED:
                return
        self._exit_code = code
        self._set_state(PipelineState.TERMINATED)
        if self.bridge is not None:
            logger.info(
                f"[Streamer] Frames submitted={self.bridge.frames_submitted} "
                f"failed={self.bridge.frames_failed} acked={self.bridge.frames_acked}"
            )
        logger.info(f"[Streamer] Terminated with exit code {code}")
