"""JSON persistence primitives for the shared state directory.

Several worker processes read these files while others rewrite them, so a
write always lands in a temporary sibling first and is then renamed over the
target. Readers therefore see either the old or the new document, never a
partial one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StateFileError(ValueError):
    """A document was rejected before it could be persisted."""


def atomic_write_json(path: Path, payload: Any) -> None:
    """Persist ``payload`` as pretty JSON via write-to-temp then atomic rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n"
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> Any:
    """Load and decode a JSON document.

    Raises ``FileNotFoundError`` when absent, ``OSError`` on read failures and
    ``ValueError`` (``json.JSONDecodeError``) on malformed content.
    """

    return json.loads(path.read_text("utf-8"))


def remove_file(path: Path) -> bool:
    """Delete ``path``; return False when it was already gone."""

    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def read_json_or_none(path: Path) -> Any | None:
    """Tolerant reader: ``None`` when the file is absent, unreadable or malformed."""

    try:
        return load_json(path)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as error:
        logger.warning("Ignoring unreadable state file %s: %s", path, error)
        return None
