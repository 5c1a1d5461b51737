"""
Utility functions for file system housekeeping.

This module provides helper functions for:
- Ensuring directory creation with proper error handling
- Removing temporary files produced during composition
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    This is a safe idempotent operation that won't fail if the directory
    already exists.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_file(path: Path) -> bool:
    """
    Delete a temporary file if it exists.

    Args:
        path: File to delete

    Returns:
        True if a file was removed, False if there was nothing to remove or
        the removal failed (the failure is logged)
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.error(f"Could not remove temporary file {path}: {exc}")
        return False
    logger.info(f"Cleaned up temporary file: {path}")
    return True
