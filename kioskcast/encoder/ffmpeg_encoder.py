"""
FFmpeg encoder process for kioskcast.

This module provides FFmpegEncoder, which owns the ffmpeg subprocess that muxes
captured page frames (image2pipe on stdin) with the looping concat audio input
into an HLS playlist with a sliding window of segments.

Threads owned by a running encoder:
- FFmpegStdinWriter: the only writer of ffmpeg stdin, drains the input queue
- FFmpegStderrDrain: logs ffmpeg diagnostics and keeps the tail for errors
- FFmpegExitMonitor: waits on the process and reports its exit exactly once

Any exit of the process is final. The encoder is never restarted.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

from kioskcast.audio.audio_supply import AudioSource
from kioskcast.config import StreamConfig, StreamerConfig
from kioskcast.errors import EncoderSpawnError, EncoderWriteError
from kioskcast.render.frame_queue import FrameQueue, FrameQueueFull

logger = logging.getLogger(__name__)

# Keep the last 10KB of stderr for diagnostics
STDERR_TAIL_MAX = 10 * 1024

# Writer thread poll interval while the input queue is empty (seconds)
WRITER_POLL_SEC = 0.1


def build_ffmpeg_cmd(
    stream: StreamConfig,
    audio: AudioSource,
    playlist_path: str,
    ffmpeg_bin: str = "ffmpeg",
    loglevel: str = "error",
) -> List[str]:
    """
    Build the ffmpeg argument vector.

    Input 0 is the image stream on stdin, input 1 the looping concat audio.
    The filter graph rescales video to the canonical output size and pixel
    format and lowers the audio gain. The keyframe interval equals one HLS
    segment so every segment starts on a keyframe.

    Args:
        stream: Encoding parameters
        audio: Looping audio input
        playlist_path: Output .m3u8 path (segments are written beside it)
        ffmpeg_bin: ffmpeg executable
        loglevel: ffmpeg -loglevel value

    Returns:
        Full command list, executable first
    """
    filter_graph = (
        f"[0:v]scale={stream.output_width}:{stream.output_height},format=yuv420p[v];"
        f"[1:a]volume={stream.audio_gain}[a]"
    )
    return [
        ffmpeg_bin,
        "-loglevel", loglevel,
        "-f", "image2pipe",
        "-framerate", str(stream.fps),
        "-s", f"{stream.width}x{stream.height}",
        "-i", "pipe:0",

        *audio.input_args(),

        "-filter_complex", filter_graph,

        "-map", "[v]",
        "-map", "[a]",

        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-tune", "zerolatency",
        "-b:v", stream.video_bitrate,
        "-g", str(stream.keyframe_interval),

        "-c:a", "aac",
        "-b:a", stream.audio_bitrate,

        "-f", "hls",
        "-hls_time", str(stream.segment_time),
        "-hls_list_size", str(stream.list_size),
        "-hls_flags", "delete_segments",
        playlist_path,
    ]


@dataclass
class EncoderHandle:
    """
    Snapshot of the encoder process.

    Attributes:
        pid: Process id of ffmpeg
        returncode: Exit code once the process ended, None while running
        frames_written: Frames written to stdin so far
        write_failures: Frames lost because the stdin pipe write failed
        queued: Frames waiting in the input queue
        last_stderr: Tail of ffmpeg stderr
    """
    pid: Optional[int]
    returncode: Optional[int]
    frames_written: int = 0
    write_failures: int = 0
    queued: int = 0
    last_stderr: str = ""

    @property
    def running(self) -> bool:
        return self.pid is not None and self.returncode is None


class FFmpegEncoder:
    """
    Owner of the ffmpeg subprocess and its pipes.

    write() is fire-and-forget: frames go into a bounded input queue and the
    writer thread pushes them into stdin in FIFO order, so a slow pipe never
    blocks the caller. Use as a context manager, or call stop(), to release
    the process and its pipes on every exit path.
    """

    def __init__(
        self,
        config: StreamerConfig,
        audio: AudioSource,
        on_exit: Optional[Callable[[int], None]] = None,
        startup_grace_sec: float = 0.2,
    ) -> None:
        """
        Initialize encoder (no process is started until spawn()).

        Args:
            config: Streamer configuration (stream parameters, output dir, ffmpeg binary)
            audio: Resolved looping audio input
            on_exit: Called once with the return code when ffmpeg exits on its own
            startup_grace_sec: Time to wait after spawn before checking for an early exit
        """
        self._config = config
        self._audio = audio
        self._on_exit = on_exit
        self._startup_grace_sec = startup_grace_sec

        self._input = FrameQueue(capacity=config.encoder_queue_capacity)

        self._process: Optional[subprocess.Popen] = None
        self._stdin: Optional[BinaryIO] = None
        self._stderr: Optional[BinaryIO] = None

        self._writer_thread: Optional[threading.Thread] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._exit_thread: Optional[threading.Thread] = None

        self._shutdown_event = threading.Event()
        self._exited_event = threading.Event()
        self._state_lock = threading.Lock()
        self._returncode: Optional[int] = None
        self._stopping = False

        self._frames_written = 0
        self._write_failures = 0
        self._last_stderr = ""

    # ---------------------------------------------------------------- startup

    def build_cmd(self) -> List[str]:
        loglevel = "debug" if self._config.ffmpeg_debug else "error"
        return build_ffmpeg_cmd(
            self._config.stream,
            self._audio,
            self._config.playlist_path,
            ffmpeg_bin=self._config.ffmpeg_bin,
            loglevel=loglevel,
        )

    def spawn(self) -> EncoderHandle:
        """
        Start ffmpeg and its helper threads.

        Returns:
            EncoderHandle snapshot of the running process

        Raises:
            EncoderSpawnError: If ffmpeg cannot be started or exits during startup
        """
        if self._process is not None:
            raise EncoderSpawnError("Encoder already spawned")
        if not self._audio.paths:
            raise EncoderSpawnError("Cannot spawn encoder without audio input")

        cmd = self.build_cmd()
        os.makedirs(self._config.hls_dir, exist_ok=True)

        ffmpeg_in_path = shutil.which(cmd[0])
        logger.debug(
            "FFMPEG: binary check",
            extra={"bin": cmd[0], "resolved_path": ffmpeg_in_path},
        )
        logger.info(f"[FFmpeg] Spawning: {' '.join(cmd)}")

        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as e:
            self._process = None
            raise EncoderSpawnError(f"Failed to start ffmpeg ({cmd[0]}): {e}") from e

        self._stdin = self._process.stdin
        self._stderr = self._process.stderr
        logger.info(f"Started ffmpeg PID={self._process.pid}", extra={"pid": self._process.pid})

        # Drain stderr from the start so early failures are captured
        self._stderr_thread = threading.Thread(
            target=self._stderr_drain,
            daemon=True,
            name="FFmpegStderrDrain",
        )
        self._stderr_thread.start()

        if self._startup_grace_sec > 0:
            time.sleep(self._startup_grace_sec)

        early_exit = self._process.poll()
        if early_exit is not None:
            # Let the drain thread pick up whatever ffmpeg printed before dying
            self._stderr_thread.join(timeout=0.5)
            self._returncode = early_exit
            stderr_tail = self._last_stderr.strip()
            logger.error(
                f"FFmpeg exited immediately at startup (exit code: {early_exit})",
                extra={"pid": self._process.pid, "returncode": early_exit},
            )
            self._release()
            message = f"ffmpeg exited during startup with code {early_exit}"
            if stderr_tail:
                message += f": {stderr_tail}"
            raise EncoderSpawnError(message)

        self._writer_thread = threading.Thread(
            target=self._writer_loop,
            daemon=True,
            name="FFmpegStdinWriter",
        )
        self._writer_thread.start()

        self._exit_thread = threading.Thread(
            target=self._monitor_exit,
            daemon=True,
            name="FFmpegExitMonitor",
        )
        self._exit_thread.start()

        return self.handle()

    # ------------------------------------------------------------------ input

    def write(self, frame: bytes) -> None:
        """
        Submit one encoded image to ffmpeg stdin (fire-and-forget).

        Frames are written in submission order by the writer thread. This
        call never blocks on the pipe.

        Args:
            frame: Encoded image bytes (JPEG/PNG)

        Raises:
            EncoderWriteError: If the encoder is not running, the frame is
                empty, or the input queue is full
        """
        if not frame:
            raise EncoderWriteError("Refusing to submit an empty frame")
        if not self.running:
            raise EncoderWriteError("Encoder is not running")
        try:
            self._input.push(bytes(frame))
        except FrameQueueFull as e:
            raise EncoderWriteError(f"Encoder input backlog full: {e}") from e

    def _writer_loop(self) -> None:
        """Single writer of ffmpeg stdin."""
        logger.debug("FFmpeg stdin writer thread started")
        while not self._shutdown_event.is_set() and not self._exited_event.is_set():
            frame = self._input.pop(timeout=WRITER_POLL_SEC)
            if frame is None:
                continue

            stdin = self._stdin
            if stdin is None:
                break
            try:
                stdin.write(frame)
                stdin.flush()
                self._frames_written += 1
            except (BrokenPipeError, OSError, ValueError) as e:
                # A lost frame is not fatal; process death is reported by the exit monitor
                self._write_failures += 1
                logger.error(
                    f"[FFmpeg] Error writing frame to stdin: {e}",
                    extra={"write_failures": self._write_failures},
                )
        logger.debug("FFmpeg stdin writer thread exiting")

    # ------------------------------------------------------------ diagnostics

    def _stderr_drain(self) -> None:
        """Log ffmpeg stderr line by line until the pipe closes."""
        proc = self._process
        if proc is None or proc.stderr is None:
            return

        try:
            while not self._shutdown_event.is_set():
                try:
                    line = proc.stderr.readline()
                except (OSError, ValueError) as e:
                    logger.debug(f"Stderr read error (likely closed): {e}")
                    break

                if not line:
                    break

                decoded_line = line.decode(errors="ignore").rstrip()
                if not decoded_line:
                    continue

                logger.error(f"[FFMPEG] {decoded_line}")
                new_line = decoded_line + "\n"
                tail = self._last_stderr + new_line
                self._last_stderr = tail[-STDERR_TAIL_MAX:]
            logger.debug("FFmpeg stderr drain thread exiting")
        except Exception as e:
            logger.warning(f"Stderr drain thread error: {e}")

    def _monitor_exit(self) -> None:
        proc = self._process
        if proc is None:
            return

        returncode = proc.wait()

        with self._state_lock:
            self._returncode = returncode
            stopping = self._stopping
        self._exited_event.set()

        dropped = self._input.clear()
        if stopping:
            logger.info(f"[FFmpeg] Process exited with code {returncode}")
            return

        logger.error(
            f"[FFmpeg] Process exited with code {returncode}",
            extra={"pid": proc.pid, "returncode": returncode, "dropped_frames": dropped},
        )
        if self._on_exit is not None:
            try:
                self._on_exit(returncode)
            except Exception as e:
                logger.error(f"Encoder exit callback failed: {e}", exc_info=True)

    # ----------------------------------------------------------------- status

    @property
    def running(self) -> bool:
        with self._state_lock:
            return (
                self._process is not None
                and self._returncode is None
                and not self._stopping
            )

    @property
    def returncode(self) -> Optional[int]:
        with self._state_lock:
            return self._returncode

    @property
    def last_stderr(self) -> str:
        return self._last_stderr

    def wait_exit(self, timeout: Optional[float] = None) -> bool:
        """Block until ffmpeg has exited. Returns False on timeout."""
        return self._exited_event.wait(timeout=timeout)

    def handle(self) -> EncoderHandle:
        proc = self._process
        with self._state_lock:
            returncode = self._returncode
        return EncoderHandle(
            pid=proc.pid if proc is not None else None,
            returncode=returncode,
            frames_written=self._frames_written,
            write_failures=self._write_failures,
            queued=len(self._input),
            last_stderr=self._last_stderr,
        )

    # --------------------------------------------------------------- teardown

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop ffmpeg and release its pipes and threads.

        Safe to call more than once and after ffmpeg already exited.

        Args:
            timeout: Seconds to wait for ffmpeg to terminate before killing it
        """
        with self._state_lock:
            if self._stopping:
                return
            self._stopping = True

        if self._process is None:
            return

        logger.info("Stopping ffmpeg...")
        self._shutdown_event.set()

        dropped = self._input.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} queued frame(s) at stop")

        # Wait for the writer before closing stdin so it is never closed mid-write
        if self._writer_thread is not None and self._writer_thread.is_alive():
            self._writer_thread.join(timeout=1.0)
            if self._writer_thread.is_alive():
                logger.warning("Stdin writer thread did not terminate within timeout")

        proc = self._process
        if proc.poll() is None:
            try:
                proc.terminate()
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("Encoder process did not terminate, killing")
                proc.kill()
                proc.wait()
            except OSError as e:
                logger.warning(f"Error stopping encoder process: {e}")

        if self._exit_thread is not None and self._exit_thread.is_alive():
            self._exit_thread.join(timeout=1.0)

        self._release()

        if self._stderr_thread is not None and self._stderr_thread.is_alive():
            self._stderr_thread.join(timeout=1.0)
            if self._stderr_thread.is_alive():
                logger.warning("Stderr drain thread did not terminate within timeout")

        logger.info("FFmpeg encoder stopped")

    def _release(self) -> None:
        """Close pipe descriptors owned by this encoder."""
        self._shutdown_event.set()
        for name in ("_stdin", "_stderr"):
            pipe = getattr(self, name)
            if pipe is None:
                continue
            try:
                pipe.close()
            except OSError as e:
                logger.debug(f"Error closing ffmpeg {name[1:]}: {e}")
            setattr(self, name, None)

    def __enter__(self) -> "FFmpegEncoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
