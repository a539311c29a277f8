"""Process-wide logging for the checkreview worker and CLI.

Configured in two steps because litellm attaches its own handlers the
moment it is imported:

1. ``setup_logging()`` runs before anything pulls in litellm. It pins
   ``LITELLM_LOG``, installs the root handler and quiets the HTTP,
   provider and SQLite driver loggers.
2. ``cleanup_third_party_handlers()`` runs once the queue, review and
   LLM modules are imported, and strips litellm's handlers so each
   record reaches the root handler exactly once.

Each step runs at most once per process.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Same variable Settings.log_level reads
LOG_LEVEL_ENV = "LOG_LEVEL"

_LITELLM_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy")

# Per-request chatter from provider calls and the queue's SQLite driver
QUIET_LOGGERS: dict[str, int] = {
    **dict.fromkeys(_LITELLM_LOGGERS, logging.WARNING),
    "openai": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}

_completed: set[str] = set()


def resolve_level(level: str | None = None) -> int:
    """Map a level name to its number. Unknown names fall back to INFO."""
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def setup_logging(level: str | None = None) -> None:
    """Install the root handler and quiet third-party loggers.

    ``level`` defaults to ``$LOG_LEVEL``. Call before importing
    ``checkreview.llm``.
    """
    if "setup" in _completed:
        return
    _completed.add("setup")

    # litellm._logging reads this at import time
    os.environ.setdefault("LITELLM_LOG", "WARNING")

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def cleanup_third_party_handlers() -> None:
    """Strip litellm's own handlers so its records propagate to root."""
    if "cleanup" in _completed:
        return
    _completed.add("cleanup")

    for name in _LITELLM_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
