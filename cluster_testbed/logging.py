"""Logging setup for a test run.

The harness and the client under test log verbosely unless the
logger-disable toggle is set, in which case only warnings and errors are
shown.

structlog renders each event and hands it to the stdlib logger of the
calling module, so pytest's log capture and ``--log-cli-level`` see it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import structlog

PACKAGE_LOGGER = "cluster_testbed"


def configure_logging(*, verbose: bool = True, loggers: Iterable[str] = ()) -> None:
    """Configure structlog and the harness logger levels for the run.

    ``loggers`` names further stdlib loggers (the client under test) that
    follow the same verbosity. The root logger is left alone.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    # Handlers are left to the host (pytest installs its own capture).
    for name in (PACKAGE_LOGGER, *loggers):
        logging.getLogger(name).setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
