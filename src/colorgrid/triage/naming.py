"""
Output Naming
=============

Deterministic file names for saved frames and matched cells.

Formats:
    frame:  <prefix>-<serial>-<counter>.<ext>   (serial known)
            <prefix>-<counter>.<ext>            (serial empty)
    cell:   <frame name> _ Frame _ <cell index>.<ext>

The counter is unique within a run. resume_counter() scans existing
output so a restarted process continues numbering instead of
overwriting earlier files.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, Union


logger = logging.getLogger(__name__)


CELL_SEPARATOR = " _ Frame _ "


def frame_name(prefix: str, serial: str, counter: int) -> str:
    """Frame name without extension."""
    if not serial:
        return f"{prefix}-{counter}"
    return f"{prefix}-{serial}-{counter}"


def frame_filename(prefix: str, serial: str, counter: int, ext: str) -> str:
    return f"{frame_name(prefix, serial, counter)}.{ext}"


def cell_filename(name: str, cell_index: int, ext: str) -> str:
    """File name of a matched cell of frame `name`."""
    return f"{name}{CELL_SEPARATOR}{cell_index}.{ext}"


def _counter_pattern(prefix: str, serial: str) -> "re.Pattern[str]":
    stem = re.escape(frame_name(prefix, serial, 0)[:-1])
    return re.compile(rf"^{stem}(\d+)(?:{re.escape(CELL_SEPARATOR)}\d+)?\.[^.]+$")


def resume_counter(
    directories: Iterable[Union[str, Path]],
    prefix: str,
    serial: str,
) -> int:
    """
    First counter value not used by files already in `directories`.

    Args:
        directories: Output directories to scan (missing ones are ignored)
        prefix: Frame name prefix
        serial: Device serial ("" when unknown)

    Returns:
        0 for empty directories, otherwise highest counter found + 1
    """
    pattern = _counter_pattern(prefix, serial)
    highest = -1
    for directory in directories:
        path = Path(directory)
        if not path.is_dir():
            continue
        for entry in path.iterdir():
            match = pattern.match(entry.name)
            if match:
                highest = max(highest, int(match.group(1)))

    if highest >= 0:
        logger.info(f"Existing output found, numbering resumes at {highest + 1}")
    return highest + 1
