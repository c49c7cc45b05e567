"""
Pre-flight Checks
=================

Verifies that output can be written before any camera is contacted.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Union

from colorgrid.errors import PermissionCheckError


logger = logging.getLogger(__name__)


def check_write_permissions(directories: Iterable[Union[str, Path]]) -> List[Path]:
    """
    Ensure every directory exists and is writable.

    Missing directories are created.

    Args:
        directories: Working and output directories

    Returns:
        The resolved directories

    Raises:
        PermissionCheckError: If a directory cannot be created or written
    """
    checked = []
    for directory in directories:
        path = Path(directory)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PermissionCheckError(
                f"Failed to create folder {path}. Please check permissions. ({e})"
            )
        if not path.is_dir() or not os.access(path, os.W_OK | os.X_OK):
            raise PermissionCheckError(
                f"Failed to create file in folder {path}. Please check permissions."
            )
        checked.append(path.resolve())

    logger.debug(f"Write permission verified: {[str(p) for p in checked]}")
    return checked
