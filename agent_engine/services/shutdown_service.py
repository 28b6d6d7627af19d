"""Shutdown service for graceful engine termination."""

import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownService:
    """Stops the scheduler at a tick boundary on request or on a process signal."""

    def __init__(self, scheduler):
        """
        Initialize shutdown service.

        Args:
            scheduler: Object exposing ``stop()`` (the cycle controller)
        """
        self.scheduler = scheduler
        self.requested = False

    def shutdown(self) -> None:
        """
        Request a graceful shutdown.

        In-flight agent evaluations finish; no new cycle starts.
        """
        if self.requested:
            return
        self.requested = True
        logger.info("=" * 60)
        logger.info("SHUTDOWN REQUESTED")
        logger.info("=" * 60)
        logger.info("Completing in-flight agent evaluations before shutdown...")
        self.scheduler.stop()

    def register_signal_handlers(self) -> None:
        """
        Register signal handlers for graceful shutdown.

        Handles SIGINT (Ctrl+C) and SIGTERM (kill command).
        """
        def signal_handler(signum, frame):
            signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
            logger.info(f"Received {signal_name}")
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("Signal handlers registered (SIGINT, SIGTERM)")
