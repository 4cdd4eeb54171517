from __future__ import annotations

"""Loguru sinks for ollabranch entry points.

The library only ever calls ``logger.<level>(...)``; sinks are added here, once,
by whoever owns the process (the CLI does it in ``main``).

Sinks
-----
* stderr at the chosen level, short format;
* ``app.log`` at INFO and above;
* ``traffic.log`` with the DEBUG records of the client, stream and monitor
  components (the raw request bodies and stream lines end up here).

File sinks follow ``settings.LOG_ROTATION`` / ``settings.LOG_RETENTION`` and
are skipped entirely when ``settings.LOG_FILES`` is false.
"""
import sys
from pathlib import Path
from typing import List, Literal, Optional

from loguru import logger

from ollabranch.settings import settings

# Component tags whose DEBUG output goes to traffic.log
TRAFFIC_TAGS = ("[CLIENT]", "[STREAM]", "[MONITOR")

_handler_ids: List[int] = []


def _is_traffic(record) -> bool:
    return record["message"].startswith(TRAFFIC_TAGS)


def setup_logger(
    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | None = None,
    log_dir: Optional[Path] = None,
) -> List[int]:
    """Install the sinks once per process and return their handler ids.

    *level* defaults to ``settings.LOG_LEVEL`` and *log_dir* to
    ``settings.LOG_DIR``.  Later calls are no-ops until :func:`reset_logger`.
    """
    if _handler_ids:
        return list(_handler_ids)

    level = level or settings.LOG_LEVEL  # type: ignore[assignment]
    logger.remove()  # drop loguru's default stderr sink

    _handler_ids.append(
        logger.add(sys.stderr, level=level, format="<level>{message}</level>", colorize=True)
    )

    if settings.LOG_FILES:
        directory = Path(log_dir or settings.LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        rolling = {"rotation": settings.LOG_ROTATION, "retention": settings.LOG_RETENTION}
        _handler_ids.append(logger.add(directory / "app.log", level="INFO", **rolling))
        _handler_ids.append(
            logger.add(directory / "traffic.log", level="DEBUG", filter=_is_traffic, **rolling)
        )

    logger.info("Logger initialised (level: {})", level)
    return list(_handler_ids)


def reset_logger() -> None:
    """Remove the sinks added by :func:`setup_logger` so it can run again."""
    while _handler_ids:
        logger.remove(_handler_ids.pop())
