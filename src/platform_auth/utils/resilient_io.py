# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/utils/resilient_io.py

"""
Crash-safe JSON file helpers.

Writes go to a temp file in the target directory and are moved into place
with os.replace, so readers never observe a half-written document.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union


def safe_mkdir(path: Union[str, Path], logger: logging.Logger) -> bool:
    try:
        Path(path).mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Failed to create directory '{path}': {e}")
        return False


def safe_write_json(
    path: Union[str, Path],
    data: Any,
    logger: logging.Logger,
    secure_permissions: bool = False,
    indent: int = 2,
) -> bool:
    """
    Atomically write JSON data to a file.

    Args:
        path: Target file path
        data: JSON-serializable payload
        logger: Logger used to report failures
        secure_permissions: Restrict the file to owner read/write (0600)
        indent: JSON indentation

    Returns:
        True when the file was replaced, False on any I/O or serialization error
    """
    target = Path(path)
    if not safe_mkdir(target.parent, logger):
        return False

    tmp_path: Optional[str] = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        if secure_permissions:
            try:
                os.chmod(tmp_path, 0o600)
            except OSError:
                # Not supported on every filesystem (e.g. some Windows mounts)
                pass
        os.replace(tmp_path, target)
        tmp_path = None
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write JSON to '{target.name}': {e}")
        return False
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def safe_read_json(
    path: Union[str, Path],
    logger: logging.Logger,
    default: Any = None,
) -> Any:
    """Read a JSON file, returning `default` when it is missing or unreadable."""
    target = Path(path)
    if not target.exists():
        return default
    try:
        with open(target, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read JSON from '{target.name}': {e}")
        return default
