"""Post-commit removal of video artifacts orphaned by card replacement."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def remove_orphaned_artifacts(paths: Iterable[str]) -> list[str]:
    """Delete each file, logging failures instead of raising.

    Must only run after the transaction that orphaned the files has
    committed. A file that is already gone counts as removed.

    Returns:
        The paths that no longer exist on disk.
    """
    removed = []
    for path in paths:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            logger.debug("Orphaned artifact already gone: %s", path)
        except OSError as e:
            logger.warning("Failed to delete orphaned artifact %s: %s", path, e)
            continue
        removed.append(path)
    if removed:
        logger.info("Removed %d orphaned video artifacts", len(removed))
    return removed
