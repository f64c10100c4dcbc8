from __future__ import annotations

import logging
from typing import Optional

ROOT_LOGGER = "pdf_parser"

# verbosity levels accepted by load(): 0 errors, 1 warnings, 5 infos
_VERBOSITY_LEVELS = (
    (5, logging.INFO),
    (1, logging.WARNING),
)


def verbosity_to_level(verbosity: Optional[int]) -> int:
    value = verbosity or 0
    for threshold, level in _VERBOSITY_LEVELS:
        if value >= threshold:
            return level
    return logging.ERROR


def set_verbosity(verbosity: Optional[int]) -> None:
    logging.getLogger(ROOT_LOGGER).setLevel(verbosity_to_level(verbosity))


def setup_logging(verbosity: Optional[int] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    set_verbosity(verbosity)
