"""Logging configuration for nectar-agent."""

import logging
import os
import sys

# Define TRACE level (lower than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

NOISY_LOGGERS = ("web3", "urllib3", "requests")


class ColoredFormatter(logging.Formatter):
    """Colored log formatter using ANSI escape codes."""

    COLORS = {
        "TRACE": "\033[90m",  # Dark gray
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[levelname]}{self.BOLD}{levelname}{self.RESET}"
            )

        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the agent.

    The level comes from the ``level`` argument, falling back to the
    LOG_LEVEL environment variable and then INFO.

    At DEBUG the web3/urllib3/requests loggers stay at WARNING so RPC chatter
    does not drown the cycle output. TRACE shows everything.
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric = TRACE if log_level == "TRACE" else getattr(logging, log_level, None)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ColoredFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    logging.basicConfig(level=numeric, handlers=[handler], force=True)

    if log_level == "TRACE":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(TRACE)
    elif numeric <= logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Usually __name__ of the calling module

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
