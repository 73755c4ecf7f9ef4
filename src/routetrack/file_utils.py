#!/usr/bin/env python3
"""
Filename utilities for choosing where the simulation map is written.
"""

import os
import logging

logger = logging.getLogger(__name__)

MAX_NUMBERED_VARIANTS = 99
DEFAULT_BASE_NAME = "route"


def _candidates(directory: str, stem: str):
    yield os.path.join(directory, f"{stem}.html")
    for i in range(1, MAX_NUMBERED_VARIANTS + 1):
        yield os.path.join(directory, f"{stem} ({i}).html")


def generate_output_filename(source: str = "") -> str:
    """
    Pick an unused output HTML filename and reserve it by creating it empty.

    The name is derived from the route source: a GPX path loses its .gpx
    extension and gains " simulation"; anything else falls back to
    "route simulation" in the current directory. Taken names get a numbered
    suffix such as " (1)".

    Args:
        source: Path of the GPX file the route came from, if any

    Returns:
        The reserved filename

    Raises:
        RuntimeError: If every numbered variant is already taken
        ValueError: If the file cannot be created
    """
    if source.lower().endswith(".gpx"):
        directory = os.path.dirname(source)
        base_name = os.path.basename(source)[:-4]
    else:
        directory = ""
        base_name = DEFAULT_BASE_NAME

    stem = base_name + " simulation"
    for candidate in _candidates(directory, stem):
        try:
            with open(candidate, "x"):
                pass
            return candidate
        except FileExistsError:
            continue
        except OSError as e:
            logger.error(f"Cannot create file {candidate}: {e}")
            raise ValueError(f"Cannot create file: {e}")

    logger.error(
        f"Could not find an available filename after {MAX_NUMBERED_VARIANTS + 1} attempts. "
        f"Please clean up your output directory or specify --output explicitly."
    )
    raise RuntimeError(
        f"No available filename found after {MAX_NUMBERED_VARIANTS + 1} attempts"
    )
