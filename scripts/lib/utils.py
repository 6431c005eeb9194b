"""
Utility functions for Salesmap Attribution Hub.
Atomic file writes and raw snapshot lookup.

Usage:
    from scripts.lib.utils import atomic_write_json, find_latest_file, load_json
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)


def atomic_write_json(data: Any, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.
    Prevents a half-written snapshot if the program crashes during write.

    Args:
        data: JSON-serialisable payload.
        file_path: Target file path.
        indent: JSON indentation level.

    Returns:
        True if successful, False otherwise.
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)

        os.replace(temp_path, file_path)
        logger.debug("Atomically wrote JSON to %s", file_path)
        return True

    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        if temp_path.exists():
            temp_path.unlink()
        return False


def find_latest_file(directory: str | Path, prefix: str) -> Optional[Path]:
    """Return the newest ``<prefix>_*.json`` file in a directory, or None."""
    directory = Path(directory)
    candidates = sorted(directory.glob(f"{prefix}_*.json"))
    if not candidates:
        return None
    # Date stamps are ISO formatted, so lexical order is chronological.
    return candidates[-1]


def load_json(file_path: str | Path) -> Dict[str, Any]:
    """Load a JSON file, returning an empty dict when it is missing or invalid."""
    file_path = Path(file_path)
    if not file_path.exists():
        logger.warning("File not found: %s", file_path)
        return {}
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load %s: %s", file_path, e)
        return {}
