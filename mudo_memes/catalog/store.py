"""
Fallback catalog and in-memory filtering.

``FALLBACK_MEMES`` is populated at import time from the bundled
dataset. It is shown whenever the Record Source is unreachable,
unconfigured or empty, and is appended after the remote rows
otherwise. Fallback records have no server counterpart; their ids are
deliberately not UUID-shaped so that ``is_server_id`` can tell the two
id spaces apart.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from .schemas import ALL_CATEGORIES, MemeRecord

logger = logging.getLogger(__name__)

DATA_FILE = Path(__file__).resolve().parents[1] / "data" / "fallback_memes.json"

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_server_id(meme_id: str) -> bool:
    """True when ``meme_id`` has the shape of a server-issued UUID."""
    return bool(_UUID_RE.match(meme_id or ""))


def load_fallback_memes(path: Path = DATA_FILE) -> List[MemeRecord]:
    """Load the static fallback catalog.

    Entries that fail validation are skipped and logged; a missing or
    unreadable file yields an empty catalog.
    """
    memes: List[MemeRecord] = []
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as exc:
        logger.error("Could not load fallback catalog from %s: %s", path, exc)
        return memes
    for entry in raw:
        try:
            meme = MemeRecord.model_validate(entry)
        except ValueError as exc:
            logger.warning("Skipping invalid fallback entry %r: %s", entry.get("id"), exc)
            continue
        if is_server_id(meme.id):
            logger.warning("Fallback entry %s uses a server-shaped id; skipped", meme.id)
            continue
        memes.append(meme)
    return memes


FALLBACK_MEMES: List[MemeRecord] = load_fallback_memes()


def _matches_query(meme: MemeRecord, nq: str) -> bool:
    if not nq:
        return True
    return (
        nq in meme.title.lower()
        or nq in meme.quote.lower()
        or any(nq in tag.lower() for tag in meme.tags)
    )


def filter_memes(
    memes: Iterable[MemeRecord],
    q: Optional[str] = None,
    category: Optional[str] = None,
    saved_flag: Optional[str] = None,
) -> List[MemeRecord]:
    """Filter ``memes`` preserving order.

    Parameters
    ----------
    memes : Iterable[MemeRecord]
        The reconciled collection.
    q : Optional[str]
        Case-insensitive substring matched against title, quote and
        every tag; a record matches if any of them contains it.
    category : Optional[str]
        ``전체`` / ``all`` / empty selects every category, otherwise an
        exact match on the record's category.
    saved_flag : Optional[str]
        Name of a boolean record attribute (``is_favorite`` or
        ``is_saved``) that must be true; ``None`` disables the check.
    """
    nq = (q or "").lower()
    ncat = (category or "").strip()
    if ncat in ("", ALL_CATEGORIES, "all"):
        ncat = ""
    items = []
    for meme in memes:
        if not _matches_query(meme, nq):
            continue
        if ncat and meme.category != ncat:
            continue
        if saved_flag and not getattr(meme, saved_flag):
            continue
        items.append(meme)
    return items
