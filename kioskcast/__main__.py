#!/usr/bin/env python3
"""
kioskcast main entry point.

Allows kioskcast to be run as a module: python3 -m kioskcast
"""

import logging
import logging.handlers
import os
import signal
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Set default log level from environment, or INFO if not set
log_level = os.getenv("KIOSKCAST_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format=LOG_FORMAT,
)

from kioskcast.config import StreamerConfig, load_config
from kioskcast.supervisor import EXIT_FAILURE, PipelineSupervisor


def configure_file_logging(config: StreamerConfig) -> None:
    """Mirror logs into KIOSKCAST_LOG_FILE (rotation-tolerant) when configured."""
    if not config.log_file:
        return
    handler = logging.handlers.WatchedFileHandler(config.log_file, mode="a")
    handler.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)


def main() -> int:
    try:
        config = load_config()
    except ValueError as e:
        logging.error(f"kioskcast failed to start: {e}")
        return EXIT_FAILURE

    try:
        configure_file_logging(config)
    except OSError as e:
        logging.warning(f"Could not open log file {config.log_file}: {e}")

    supervisor = PipelineSupervisor(config)

    def sigterm_handler(signum, frame):
        supervisor.stop(f"signal {signum}")

    signal.signal(signal.SIGTERM, sigterm_handler)

    # The pipeline never ends successfully, not even on operator request
    try:
        return supervisor.run()
    except KeyboardInterrupt:
        logging.info("kioskcast shutdown requested")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
