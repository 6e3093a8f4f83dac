"""JSON snapshot persistence keyed by resource name"""
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')


class SnapshotStore:
    """
    One JSON document per key under ``data_dir``.

    ``save`` replaces the whole document atomically (temp file + rename) so a
    concurrent reader sees either the previous snapshot or the new one.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def ensure_data_dir(self):
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key) or key.startswith('.'):
            raise ValueError(f"Invalid snapshot key: {key!r}")
        return self.data_dir / f"{key}.json"

    def save(self, key: str, snapshot: Any):
        path = self.path_for(key)
        self.ensure_data_dir()

        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.info("Saved snapshot %s to %s", key, path)

    def load(self, key: str) -> Optional[Any]:
        """Return the last saved snapshot, or None if nothing was saved yet"""
        path = self.path_for(key)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
