#!/usr/bin/env python3
"""
Main entry point for the Agent Execution Engine.

This script loads configuration, initializes the engine,
starts the control API and runs the cycle scheduler.
"""

import argparse
import json
import logging
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from agent_engine.config import Config
from agent_engine.engine import TradingEngine


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(verbose: bool = False, json_logs: bool = False, log_dir: str = "logs") -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set log level to DEBUG, otherwise INFO
        json_logs: If True, enable JSON structured logging
        log_dir: Directory for log files
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    Path(log_dir).mkdir(exist_ok=True)

    if json_logs:
        formatter = JSONFormatter()
    else:
        log_format = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
        date_format = "%Y-%m-%d %H:%M:%S"
        formatter = logging.Formatter(log_format, date_format)

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(f"{log_dir}/engine.log", mode="a")
    ]
    if json_logs:
        handlers.append(logging.FileHandler(f"{log_dir}/engine.json", mode="a"))

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Reduce noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Agent Execution Engine - autonomous multi-agent trading scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agent-engine                       # paper mode, control API on API_PORT
  agent-engine --env .env.live       # load a different env file
  agent-engine --no-api --verbose    # scheduler only, debug logging

Safety:
  RUN_MODE=paper (default) fills trades locally with simulated slippage.
  RUN_MODE=live routes trades to EXECUTION_SERVICE_URL.
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default=".env",
        help="Path to environment file (default: .env)"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Enable JSON structured logging (outputs to logs/engine.json)"
    )

    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the control API server"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Agent Execution Engine v1.0.0"
    )

    return parser.parse_args(argv)


def start_api_server(engine: TradingEngine, host: str, port: int) -> threading.Thread:
    """Serve the control API from a daemon thread."""
    import uvicorn
    import api_server

    logger = logging.getLogger(__name__)

    # Register engine BEFORE starting API server
    api_server.engine_instance = engine

    def run_api_server():
        try:
            uvicorn.run(api_server.app, host=host, port=port, log_level="warning")
        except Exception as e:
            logger.error(f"API server thread crashed: {e}", exc_info=True)

    api_thread = threading.Thread(target=run_api_server, name="api-server", daemon=True)
    api_thread.start()
    logger.info(f"API server starting on http://{host}:{port}")
    return api_thread


def main(argv=None) -> int:
    """
    Main entry point for the engine.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = parse_arguments(argv)

    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("AGENT EXECUTION ENGINE")
    logger.info("=" * 80)

    # Load configuration
    try:
        logger.info(f"Loading configuration from: {args.env}")
        if args.env != ".env":
            if not Path(args.env).exists():
                logger.error(f"Environment file not found: {args.env}")
                return 1
            load_dotenv(args.env, override=True)

        config = Config.from_env()
        logger.info("[OK] Configuration loaded successfully")

    except ValueError as e:
        logger.error(f"[ERROR] Configuration error: {e}")
        logger.error("Please check your .env file and ensure all variables are valid.")
        return 1

    if config.is_live:
        logger.warning("!" * 80)
        logger.warning("!!! LIVE MODE ENABLED - trades go to the execution service !!!")
        logger.warning("!" * 80)
    else:
        logger.info("PAPER MODE - trades are simulated locally")

    # Initialize engine
    try:
        engine = TradingEngine(config)
        engine.restore()
        logger.info("[OK] Engine initialized")
    except Exception as e:
        logger.error(f"[ERROR] Failed to initialize engine: {e}", exc_info=True)
        return 1

    engine.register_signal_handlers()

    if not args.no_api:
        start_api_server(engine, config.api_host, config.api_port)

    try:
        logger.info("Starting scheduler...")
        logger.info("Press Ctrl+C to stop gracefully")
        logger.info("=" * 80)

        engine.run()
        return 0

    except Exception as e:
        logger.error(f"[ERROR] Fatal error in scheduler: {e}", exc_info=True)
        return 1
    finally:
        engine.shutdown()
        logger.info("Engine stopped")


if __name__ == "__main__":
    sys.exit(main())
