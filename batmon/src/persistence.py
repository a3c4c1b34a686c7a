"""
Atomic JSON document store addressed by logical name.

Each logical document (``history``, ``calibration``) lives in its own
``<name>.json`` file under a base directory. Writes go to a temporary file in
the same directory followed by ``os.replace``, so a crash mid-write leaves the
previous document intact. Callers always read a full document and write a
full replacement; there are no partial updates.

Operations:
- load(name): parsed JSON, or None if missing/unreadable.
- save(name, data): best-effort atomic write, returns success.
- delete(name): remove a document if present.
- size(name): on-disk size in bytes (0 if absent).

Failures are logged and swallowed; in-memory state stays authoritative
until the next successful write.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

HISTORY_DOCUMENT = "history"
CALIBRATION_DOCUMENT = "calibration"


class DocumentStore:
    """Key-to-document store backed by one JSON file per logical name.

    Args:
        directory: Base directory for document files. Created on first
            write if it does not exist. Accepts ``str`` or ``pathlib.Path``.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        """Return the file path backing document *name*."""
        return self.directory / f"{name}.json"

    def load(self, name: str) -> Any | None:
        """Read and parse document *name*.

        Returns:
            The parsed JSON value, or None when the file is missing,
            unreadable, or not valid JSON.
        """
        path = self.path_for(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Document '%s' not found at %s", name, path)
            return None
        except OSError:
            logger.warning("Failed to read document '%s'", name, exc_info=True)
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Document '%s' is not valid JSON, ignoring", name)
            return None

    def save(self, name: str, data: Any) -> bool:
        """Atomically replace document *name* with *data*.

        Returns:
            True if the document was written, False if the write failed.
        """
        path = self.path_for(name)
        tmp_name: str | None = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(data, separators=(",", ":"))
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            return True
        except (OSError, TypeError, ValueError):
            logger.warning("Failed to write document '%s'", name, exc_info=True)
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            return False

    def delete(self, name: str) -> None:
        """Remove document *name*; a missing document is a no-op."""
        try:
            self.path_for(name).unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete document '%s'", name, exc_info=True)

    def size(self, name: str) -> int:
        """Return the on-disk size of document *name* in bytes (0 if absent)."""
        try:
            return self.path_for(name).stat().st_size
        except OSError:
            return 0
