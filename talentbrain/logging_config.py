"""Centralized logging configuration for TalentBrain."""
from __future__ import annotations

import logging
import os
import sys
from typing import List, Optional

from talentbrain.env_loader import load_env

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that drown out the loop's own status lines
NOISY_LOGGERS = ("httpx", "openai", "sentence_transformers", "sqlalchemy.engine", "urllib3")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once using env overrides."""
    load_env()
    if logging.getLogger().handlers:
        return

    log_level = (level or os.environ.get("TB_LOG_LEVEL", "INFO")).upper()
    log_format = os.environ.get("TB_LOG_FORMAT", DEFAULT_FORMAT)
    log_file = os.environ.get("TB_LOG_FILE", "talentbrain.log")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers)

    logging.getLogger("talentbrain").setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
