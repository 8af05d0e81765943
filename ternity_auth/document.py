"""Persisted settings document.

A single JSON file in the user-data directory holds application
settings alongside the ``auth`` map of per-environment token blobs.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile

from pathlib import Path
from typing import Any


logger = logging.getLogger("ternity.auth")


class SettingsDocument:
    """Read/write access to the JSON settings document.

    Parameters
    ----------
    path : Path
        Location of the document (typically ``<config_dir>/config.json``).
    """

    def __init__(self, path: Path | str) -> None:
        """Initialize the document accessor."""
        self.path = Path(path)

    def read(self) -> dict[str, Any]:
        """Read the document; missing or corrupt files read as empty."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Could not read %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Settings document %s is corrupt, ignoring it", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def write(self, data: dict[str, Any]) -> None:
        """Atomically replace the document with ``data``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".config-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_selected_environment(self) -> str | None:
        """Environment id last chosen by the user, if any."""
        value = self.read().get("environment")
        return value if isinstance(value, str) else None

    def set_selected_environment(self, env_id: str) -> None:
        """Remember the user's chosen environment."""
        data = self.read()
        data["environment"] = env_id
        self.write(data)
