"""
Contract tests for the kioskcast entry point.
"""

import logging
import logging.handlers
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

import kioskcast.__main__ as entry
from kioskcast.config import StreamerConfig
from kioskcast.supervisor import EXIT_FAILURE


@pytest.fixture
def no_signal_handlers():
    with patch.object(entry.signal, "signal") as install:
        yield install


def test_invalid_configuration_exits_with_failure(monkeypatch, tmp_path):
    monkeypatch.setenv("KIOSKCAST_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("FPS", "not-a-number")

    assert entry.main() == EXIT_FAILURE


def test_pipeline_termination_exit_code_is_returned(config, no_signal_handlers):
    supervisor = MagicMock()
    supervisor.run.return_value = EXIT_FAILURE

    with patch.object(entry, "load_config", return_value=config), \
            patch.object(entry, "PipelineSupervisor", return_value=supervisor):
        assert entry.main() == EXIT_FAILURE

    no_signal_handlers.assert_called_once()


def test_keyboard_interrupt_still_exits_with_failure(config, no_signal_handlers):
    supervisor = MagicMock()
    supervisor.run.side_effect = KeyboardInterrupt

    with patch.object(entry, "load_config", return_value=config), \
            patch.object(entry, "PipelineSupervisor", return_value=supervisor):
        assert entry.main() == EXIT_FAILURE


def test_sigterm_stops_supervisor_and_exits_with_failure(config, no_signal_handlers):
    supervisor = MagicMock()

    def run():
        # Deliver SIGTERM through the installed handler while the pipeline runs
        _signum, handler = no_signal_handlers.call_args.args
        handler(15, None)
        return EXIT_FAILURE

    supervisor.run.side_effect = run

    with patch.object(entry, "load_config", return_value=config), \
            patch.object(entry, "PipelineSupervisor", return_value=supervisor):
        assert entry.main() == EXIT_FAILURE

    supervisor.stop.assert_called_once_with("signal 15")


def test_log_file_mirrors_root_logger(config, tmp_path):
    log_path = tmp_path / "kioskcast.log"
    root = logging.getLogger()
    before = list(root.handlers)

    entry.configure_file_logging(replace(config, log_file=str(log_path)))
    try:
        added = [h for h in root.handlers if h not in before]
        assert len(added) == 1
        assert isinstance(added[0], logging.handlers.WatchedFileHandler)
        assert added[0].baseFilename == str(log_path)
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()


def test_no_log_file_adds_no_handler(config):
    root = logging.getLogger()
    before = list(root.handlers)

    entry.configure_file_logging(StreamerConfig())

    assert root.handlers == before
