"""
Shared pytest fixtures for kioskcast contract tests.
"""
import threading
from dataclasses import replace

import pytest

from kioskcast.config import StreamerConfig

from _doubles import FakeEncoder, wait_until


@pytest.fixture
def config(tmp_path):
    """StreamerConfig rooted in a temporary directory."""
    return StreamerConfig(
        target_url="http://127.0.0.1:8080/?kiosk=true",
        hls_dir=str(tmp_path / "hls"),
        music_dir=str(tmp_path / "music"),
        audio_list_file=str(tmp_path / "audio_list.txt"),
    )


@pytest.fixture
def small_queue_config(config):
    return replace(config, encoder_queue_capacity=2, frame_queue_capacity=2)


@pytest.fixture
def music_dir(tmp_path):
    """Music directory with three eligible tracks."""
    music = tmp_path / "music"
    music.mkdir()
    for name in ("a.mp3", "b.mp3", "c.mp3"):
        (music / name).write_bytes(b"ID3")
    return music


@pytest.fixture(autouse=True)
def reset_fake_encoders():
    FakeEncoder.instances.clear()
    yield
    FakeEncoder.instances.clear()


@pytest.fixture(autouse=False)  # Request explicitly in tests that start threads
def thread_leak_guard():
    """
    Detect thread leaks between tests.

    Ensures encoder shutdown actually joins the threads it started.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    # Give daemon threads a moment to observe shutdown
    wait_until(lambda: not (set(t.ident for t in threading.enumerate()) - before), timeout=2.0)
    after = set(t.ident for t in threading.enumerate())
    leaked = after - before
    if leaked:
        leaked_threads = [t for t in threading.enumerate() if t.ident in leaked]
        thread_info = '\n'.join(f"  - {t.name} (daemon={t.daemon})" for t in leaked_threads)
        assert False, f"Thread leak detected, shutdown incomplete.\nLeaked threads:\n{thread_info}"
