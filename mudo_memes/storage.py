# mudo_memes/storage.py
"""
Device-scoped overlay persistence.

Overlays are stored in a single JSON file mapping device IDs to three
named slots of meme IDs::

    {"<device>": {"liked": [...], "saved": [...], "deletedFallback": [...]}}

All read/write operations on the file are synchronised with a
threading.Lock shared by every store that points at the same path.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Set

from typing_extensions import Literal

from .errors import OverlayCorrupt

logger = logging.getLogger(__name__)

Slot = Literal["liked", "saved", "deletedFallback"]
SLOTS = ("liked", "saved", "deletedFallback")

_locks: Dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(path, threading.Lock())


class OverlayStore:
    """Three string-set slots for one device, persisted on disk."""

    def __init__(self, path: Path, device_id: str = "default"):
        self.path = Path(path).resolve()
        self.device_id = str(device_id)
        self._lock = _lock_for(self.path)

    def for_device(self, device_id: str) -> "OverlayStore":
        return OverlayStore(self.path, device_id)

    def _load_all(self) -> Dict[str, Dict[str, List[str]]]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise OverlayCorrupt(f"Cannot read overlay file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise OverlayCorrupt(f"Overlay file {self.path} is not a JSON object")
        return data

    def read(self, slot: Slot) -> Set[str]:
        """Return the ids stored in ``slot`` for this device.

        Missing file, device or slot yields an empty set. A file that
        cannot be parsed, or a slot that is not a list of strings,
        raises ``OverlayCorrupt``.
        """
        with self._lock:
            data = self._load_all()
        device = data.get(self.device_id) or {}
        if not isinstance(device, dict):
            raise OverlayCorrupt(f"Overlay entry for device {self.device_id!r} is malformed")
        ids = device.get(slot, [])
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise OverlayCorrupt(f"Overlay slot {slot!r} for device {self.device_id!r} is malformed")
        return set(ids)

    def write(self, slot: Slot, ids: Iterable[str]) -> bool:
        """Persist ``ids`` into ``slot``. Returns False if the write failed.

        A corrupt file is replaced rather than preserved.
        """
        if slot not in SLOTS:
            raise ValueError(f"Unknown overlay slot: {slot}")
        with self._lock:
            try:
                data = self._load_all()
            except OverlayCorrupt:
                logger.warning("Overwriting corrupt overlay file %s", self.path)
                data = {}
            device = data.get(self.device_id)
            if not isinstance(device, dict):
                device = {}
            device[slot] = sorted(set(ids))
            data[self.device_id] = device
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._replace(data)
            except OSError as exc:
                logger.error("Failed to write overlay slot %s to %s: %s", slot, self.path, exc)
                return False
        return True

    def _replace(self, data: Dict[str, Dict[str, List[str]]]) -> None:
        # Temp file in the same directory, swapped in whole: a failed write
        # never leaves a truncated file for the other devices.
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
