"""
plainsub.logging - Logging setup for the CLI.

Pipeline status lines go to the console through the status callback, so the
root logger stays at WARNING unless --verbose is given. Recognition and LLM
libraries log heavily at INFO; they are held at WARNING even in verbose mode.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("plainsub")

NOISY_LOGGERS = ("faster_whisper", "LiteLLM", "litellm", "httpx", "numba")


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the plainsub package.

    Args:
        verbose: If True, enable DEBUG level logging with timestamps and
            logger names; otherwise WARNING level
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
