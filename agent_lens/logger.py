"""Package logger helpers.

Parsers log through ``logging.getLogger("agent_lens.*")`` and never configure
handlers themselves; hosts that want output call :func:`configure_logging`.
"""
from __future__ import annotations

import logging

from agent_lens import config

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def resolve_level(level_name: str | None = None, debug: bool | None = None) -> int:
    if debug is None:
        debug = config.DEBUG
    if debug:
        return logging.DEBUG
    if level_name is None:
        level_name = config.LOG_LEVEL
    token = (level_name or "").strip().lower()
    return _LEVELS.get(token, logging.INFO)


def get_logger(name: str = "") -> logging.Logger:
    return logging.getLogger(f"agent_lens.{name}" if name else "agent_lens")


def configure_logging(level_name: str | None = None, debug: bool | None = None) -> logging.Logger:
    """Apply the configured level to the ``agent_lens`` logger hierarchy."""
    root = get_logger()
    root.setLevel(resolve_level(level_name, debug))
    if not root.handlers and not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return root
