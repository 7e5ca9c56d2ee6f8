"""
JSON file persistence.

Whole-file reads and writes for the state files in the config directory.
"""

import json
import os
from pathlib import Path
from typing import Any

from provider_fallback.core.errors import ConfigError

PRIVATE_FILE_MODE = 0o600


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document from disk.

    Args:
        path: File to read
        default: Value returned when the file does not exist

    Returns:
        Parsed JSON content, or ``default`` if the file is missing

    Raises:
        ConfigError: If the file cannot be read or is not valid JSON
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e


def write_json(path: Path, data: Any, private: bool = False) -> None:
    """Overwrite a JSON document, creating the parent directory if needed.

    Args:
        path: File to write
        data: JSON-serialisable content
        private: Restrict the file to owner read/write
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(data, indent=2)
    if private:
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        # O_CREAT mode is ignored for files that already exist
        os.chmod(path, PRIVATE_FILE_MODE)
    else:
        with open(path, "w", encoding="utf-8") as f:
            f.write(payload)
