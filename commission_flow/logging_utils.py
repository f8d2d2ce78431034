from __future__ import annotations

import logging

from commission_flow.config import get_settings

ROOT_LOGGER = "commission_flow"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        return root

    settings = get_settings()
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(settings.log_format))
    root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    _configure_root()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
