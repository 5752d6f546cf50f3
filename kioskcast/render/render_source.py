"""
Render source: a headless Chromium page captured through the DevTools screencast.

The screencast is a request/ack protocol. Chromium pushes a
`Page.screencastFrame` event and withholds the next one until the consumer
answers with `Page.screencastFrameAck`, which paces capture to the consumer.

Playwright's sync API dispatches CDP events on the thread that owns it, and
only while that thread is inside a Playwright call. RenderSource therefore
queues incoming frames in a bounded FrameQueue and its consumer pulls them
with next_frame(), which keeps the Playwright loop turning while it waits.
All methods must be called from the thread that called launch().
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from kioskcast.config import StreamerConfig
from kioskcast.errors import CaptureSessionLost, RenderSourceError
from kioskcast.render.frame_queue import FrameQueue, FrameQueueFull

logger = logging.getLogger(__name__)

# How long next_frame() hands control to Playwright per wait (ms)
PUMP_INTERVAL_MS = 10


@dataclass(frozen=True)
class FrameEvent:
    """
    One captured frame, consumed exactly once by FrameBridge.

    Attributes:
        data: Image payload in transport encoding
        encoding: "base64" for screencast frames, "binary" for raw bytes
        session_id: Screencast frame id to acknowledge
        sequence: Capture order, starting at 1
    """
    data: Any
    encoding: str
    session_id: int
    sequence: int = 0


def chromium_args(width: int, height: int) -> list:
    """Launch flags for an unattended kiosk browser."""
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-gpu",
        "--autoplay-policy=no-user-gesture-required",
        f"--window-size={width},{height}",
    ]


class RenderSource:
    """
    Headless browser page that emits paced, ack-gated FrameEvents.

    Lifecycle: launch() -> start_capture() -> next_frame()/ack() ... -> close().
    A crash of the page, a disconnect of the browser or a protocol violation is
    recorded as fatal and surfaces as CaptureSessionLost from next_frame().
    """

    def __init__(self, config: StreamerConfig) -> None:
        self._config = config
        self._queue = FrameQueue(capacity=config.frame_queue_capacity)

        self._playwright = None
        self._browser = None
        self._page = None
        self._cdp = None

        self._sequence = 0
        self._capturing = False
        self._closing = False

        self._fatal_lock = threading.Lock()
        self._fatal_reason: Optional[str] = None

    # ------------------------------------------------------------------ setup

    def launch(self) -> None:
        """
        Launch Chromium and load the target page.

        Returns once the page reached network idle.

        Raises:
            RenderSourceError: If the browser cannot start or navigation fails
        """
        stream = self._config.stream
        url = self._config.target_url

        logger.info("[Browser] Launching browser...")
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=True,
                args=chromium_args(stream.width, stream.height),
            )
            self._browser.on("disconnected", lambda _browser: self._record_fatal("browser disconnected"))

            self._page = self._browser.new_page(
                viewport={"width": stream.width, "height": stream.height},
            )
            self._page.on("crash", lambda _page: self._record_fatal("page crashed"))
            self._page.on("close", lambda _page: self._record_fatal("page closed"))

            logger.info(f"[Browser] Navigating to {url}...")
            self._page.goto(
                url,
                wait_until="networkidle",
                timeout=self._config.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            raise RenderSourceError(f"Failed to load {url}: {e}") from e

        logger.info("[Browser] Page loaded.")

    def start_capture(self, frame_format: str = "jpeg", quality: int = 85) -> None:
        """
        Start the screencast. Frames become available through next_frame().

        Raises:
            RenderSourceError: If the page is not loaded or the CDP session fails
        """
        if self._page is None:
            raise RenderSourceError("start_capture() called before launch()")

        try:
            self._cdp = self._page.context.new_cdp_session(self._page)
            self._cdp.on("Page.screencastFrame", self._on_screencast_frame)
            self._cdp.send("Page.startScreencast", {
                "format": frame_format,
                "quality": quality,
            })
        except PlaywrightError as e:
            raise RenderSourceError(f"Failed to start screencast: {e}") from e

        self._capturing = True
        logger.info("[CDP] Screencast started.", extra={"format": frame_format, "quality": quality})

    # ---------------------------------------------------------------- capture

    def _on_screencast_frame(self, params: Dict[str, Any]) -> None:
        # Runs on the Playwright dispatch (owner) thread
        self._sequence += 1
        frame = FrameEvent(
            data=params.get("data", ""),
            encoding="base64",
            session_id=params.get("sessionId"),
            sequence=self._sequence,
        )
        try:
            self._queue.push(frame)
        except FrameQueueFull:
            # The screencast only sends after an ack, so a full queue means
            # frames arrive without being acknowledged.
            self._record_fatal(
                f"screencast frame queue overflow at frame {frame.sequence} "
                f"(capacity={self._queue.capacity})"
            )

    def next_frame(self, timeout: float = 0.1) -> Optional[FrameEvent]:
        """
        Return the next captured frame in capture order.

        Args:
            timeout: Seconds to wait for a frame while pumping Playwright events

        Returns:
            The oldest pending FrameEvent, or None if none arrived in time

        Raises:
            RenderSourceError: If capture was never started
            CaptureSessionLost: If the capture session failed
        """
        if not self._capturing:
            raise RenderSourceError("next_frame() called before start_capture()")

        deadline = time.monotonic() + timeout
        while True:
            self._raise_if_failed()

            frame = self._queue.pop()
            if frame is not None:
                return frame

            remaining_ms = (deadline - time.monotonic()) * 1000.0
            if remaining_ms <= 0:
                return None

            try:
                self._page.wait_for_timeout(min(PUMP_INTERVAL_MS, remaining_ms))
            except PlaywrightError as e:
                self._record_fatal(f"event loop failed: {e}")

    def ack(self, frame: FrameEvent) -> None:
        """
        Acknowledge a frame so Chromium sends the next one.

        Raises:
            CaptureSessionLost: If the ack cannot be delivered
        """
        if self._cdp is None:
            raise RenderSourceError("ack() called before start_capture()")
        try:
            self._cdp.send("Page.screencastFrameAck", {"sessionId": frame.session_id})
        except PlaywrightError as e:
            self._record_fatal(f"screencast ack failed: {e}")
            raise CaptureSessionLost(f"Failed to acknowledge frame {frame.sequence}: {e}") from e

    # ----------------------------------------------------------------- health

    def _record_fatal(self, reason: str) -> None:
        if self._closing:
            return
        with self._fatal_lock:
            if self._fatal_reason is None:
                self._fatal_reason = reason
                logger.error(f"[CDP] Capture session failed: {reason}")

    def _raise_if_failed(self) -> None:
        with self._fatal_lock:
            reason = self._fatal_reason
        if reason is not None:
            raise CaptureSessionLost(f"Capture session terminated: {reason}")

    @property
    def failed(self) -> bool:
        with self._fatal_lock:
            return self._fatal_reason is not None

    @property
    def pending_frames(self) -> int:
        return len(self._queue)

    # --------------------------------------------------------------- teardown

    def close(self) -> None:
        """Stop capture and release the browser. Best-effort and idempotent."""
        if self._closing:
            return
        self._closing = True

        if self._cdp is not None and self._capturing:
            try:
                self._cdp.send("Page.stopScreencast")
            except PlaywrightError as e:
                logger.debug(f"[CDP] stopScreencast failed during close: {e}")
        self._capturing = False

        dropped = self._queue.clear()
        if dropped:
            logger.debug(f"[CDP] Discarded {dropped} unacknowledged frame(s) at close")

        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"[Browser] Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as e:
                logger.warning(f"[Browser] Error stopping Playwright: {e}")
            self._playwright = None

        self._page = None
        self._cdp = None
        logger.info("[Browser] Closed.")

    def __enter__(self) -> "RenderSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
