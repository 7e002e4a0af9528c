"""
The catalog reconciler.

``CatalogReconciler`` owns the in-memory meme collection for one device
and one view. It merges the Record Source rows with the fallback
catalog, derives the like/save flags from the device overlay, and
serves the filtered view plus the like/save/delete (and upload/edit)
mutations so that the collection and the overlay never disagree.

Two views exist. The ``general`` view shows everything; the ``saved``
view shows only saved records and drops a record from its collection
as soon as it is un-saved.

Every degradation (source down, overlay unreadable, malformed rows,
failed mutations) is queued as a ``Notice`` which callers collect
with ``drain_notices()``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Optional, Sequence, Set

from ..errors import OverlayCorrupt, PermissionDenied, RemoteOperationFailed, SourceUnavailable
from ..models import ImagePayload, MemeDraft
from ..storage import OverlayStore, Slot
from .schemas import ALL_CATEGORIES, MemeRecord, Notice
from .store import FALLBACK_MEMES, filter_memes, is_server_id
from .supabase_service import RecordSource, parse_row

logger = logging.getLogger(__name__)

VIEWS = ("general", "saved")
SCOPE_FLAGS = ("is_favorite", "is_saved")

# PostgREST "no rows" and "relation does not exist": profiles are optional.
BENIGN_LOOKUP_CODES = {"PGRST116", "42P01"}


class CatalogReconciler:
    def __init__(
        self,
        source: RecordSource,
        overlay: OverlayStore,
        fallback: Optional[Sequence[MemeRecord]] = None,
        view: str = "general",
        saved_scope_flag: str = "is_favorite",
        liked_scope_flag: str = "is_favorite",
    ):
        if view not in VIEWS:
            raise ValueError(f"Unknown view: {view}")
        for flag in (saved_scope_flag, liked_scope_flag):
            if flag not in SCOPE_FLAGS:
                raise ValueError(f"Unknown scope flag: {flag}")
        self.source = source
        self.overlay = overlay
        self.view = view
        self.saved_scope_flag = saved_scope_flag
        self.liked_scope_flag = liked_scope_flag
        self._fallback: List[MemeRecord] = list(FALLBACK_MEMES if fallback is None else fallback)

        self._lock = threading.RLock()
        self._memes: List[MemeRecord] = []
        self._notices: List[Notice] = []
        self._generation = 0
        self._applied = 0
        self._stale = True

    # -- state -------------------------------------------------------------

    @property
    def memes(self) -> List[MemeRecord]:
        with self._lock:
            return list(self._memes)

    @property
    def stale(self) -> bool:
        return self._stale

    def mark_stale(self) -> None:
        self._stale = True

    def get(self, meme_id: str) -> Optional[MemeRecord]:
        with self._lock:
            return next((m for m in self._memes if m.id == meme_id), None)

    def _index(self, meme_id: str) -> int:
        for i, meme in enumerate(self._memes):
            if meme.id == meme_id:
                return i
        raise KeyError(meme_id)

    # -- notices -----------------------------------------------------------

    def _notify(self, level: str, code: str, message: str) -> None:
        with self._lock:
            self._notices.append(Notice(level=level, code=code, message=message))

    def drain_notices(self) -> List[Notice]:
        with self._lock:
            notices, self._notices = self._notices, []
        return notices

    # -- overlay -----------------------------------------------------------

    def _read_slots(self, *slots: Slot) -> List[Set[str]]:
        result: List[Set[str]] = []
        corrupt = False
        for slot in slots:
            try:
                result.append(self.overlay.read(slot))
            except OverlayCorrupt as exc:
                logger.warning("Overlay slot %s unreadable, treating as empty: %s", slot, exc)
                corrupt = True
                result.append(set())
        if corrupt:
            self._notify("warning", "overlay_corrupt", "저장된 좋아요/저장 정보를 읽지 못해 초기화했습니다")
        return result

    def _update_overlay(self, slot: Slot, meme_id: str, present: bool) -> None:
        # Re-read first: a sibling view of the same device may have written since.
        (ids,) = self._read_slots(slot)
        if present:
            ids.add(meme_id)
        else:
            ids.discard(meme_id)
        if not self.overlay.write(slot, ids):
            logger.warning("Overlay write for slot %s not confirmed", slot)
            self._notify("warning", "overlay_write_failed", "변경 사항을 기기에 저장하지 못했습니다")

    def _with_flags(self, meme: MemeRecord, liked: Set[str], saved: Set[str]) -> MemeRecord:
        return meme.model_copy(update={"is_favorite": meme.id in liked, "is_saved": meme.id in saved})

    # -- load --------------------------------------------------------------

    def _lookup_names(self, rows: List[dict]) -> Dict[str, str]:
        ids = {str(r["user_id"]) for r in rows if isinstance(r, dict) and r.get("user_id")}
        if not ids:
            return {}
        try:
            return self.source.lookup_display_names(ids)
        except RemoteOperationFailed as exc:
            if exc.code in BENIGN_LOOKUP_CODES:
                logger.info("Profiles unavailable (%s); showing memes without nicknames", exc.code)
            else:
                logger.warning("Profile lookup failed; showing memes without nicknames: %s", exc)
        except Exception as exc:
            logger.exception("Unexpected error during profile lookup")
            self._notify("warning", "profile_lookup_failed", f"닉네임을 불러오지 못했습니다: {exc}")
        return {}

    def _fetch_remote(self) -> List[MemeRecord]:
        try:
            rows = self.source.list_records()
        except SourceUnavailable as exc:
            logger.warning("Record source unavailable, using fallback catalog: %s", exc)
            self._notify("warning", "source_unavailable", f"데이터 로드 실패: {exc}")
            return []
        except Exception as exc:
            logger.exception("Unexpected error fetching memes")
            self._notify("warning", "source_unavailable", f"데이터를 불러오는 중 오류가 발생했습니다: {exc}")
            return []
        if not rows:
            logger.info("No memes in the record source; using fallback catalog")
            return []

        names = self._lookup_names(rows)
        records: List[MemeRecord] = []
        malformed = 0
        for row in rows:
            try:
                records.append(parse_row(row, names))
            except (ValueError, TypeError) as exc:
                malformed += 1
                row_id = row.get("id") if isinstance(row, dict) else row
                logger.warning("Skipping malformed meme row %r: %s", row_id, exc)
        if malformed:
            self._notify("warning", "malformed_rows", f"{malformed}개의 짤 데이터를 읽지 못했습니다")
        logger.info("Loaded %d memes from the record source", len(records))
        return records

    def load(self) -> List[MemeRecord]:
        """Rebuild the collection from the source, fallback and overlay.

        Never raises for source or overlay failures. If a newer load
        finished first, this load's result is discarded.
        """
        with self._lock:
            self._generation += 1
            ticket = self._generation

        remote = self._fetch_remote()

        with self._lock:
            if ticket < self._applied:
                logger.info("Discarding superseded load #%d", ticket)
                return list(self._memes)
            # Read the overlay under the lock: mutations made while the
            # fetch was in flight are already on disk.
            liked, saved, hidden = self._read_slots("liked", "saved", "deletedFallback")
            fallback = [m for m in self._fallback if m.id not in hidden]

            merged: Dict[str, MemeRecord] = {}
            for meme in remote + fallback:
                # remote rows come first and win on id collision
                if meme.id not in merged:
                    merged[meme.id] = self._with_flags(meme, liked, saved)
            memes = list(merged.values())
            if self.view == "saved":
                memes = [m for m in memes if m.is_saved]

            self._applied = ticket
            self._memes = memes
            self._stale = False
            return list(memes)

    # -- queries -----------------------------------------------------------

    def filter(self, query: str = "", category: str = ALL_CATEGORIES, scope: str = "all") -> List[MemeRecord]:
        if scope == "all":
            flag = None
        elif scope == "saved":
            flag = self.saved_scope_flag
        elif scope == "liked":
            flag = self.liked_scope_flag
        else:
            raise ValueError(f"Unknown scope: {scope}")
        return filter_memes(self.memes, q=query, category=category, saved_flag=flag)

    # -- mutations ---------------------------------------------------------

    def toggle_like(self, meme_id: str) -> MemeRecord:
        """Flip the like flag and adjust the count by one (never below 0).

        Local only; the server count is not written back.
        """
        with self._lock:
            i = self._index(meme_id)
            meme = self._memes[i]
            liked = not meme.is_favorite
            count = meme.like_count + 1 if liked else max(0, meme.like_count - 1)
            updated = meme.model_copy(update={"is_favorite": liked, "like_count": count})
            self._memes[i] = updated
            self._update_overlay("liked", meme_id, liked)
            return updated

    def toggle_save(self, meme_id: str) -> MemeRecord:
        """Flip the save flag. In the saved view an un-saved record is removed."""
        with self._lock:
            i = self._index(meme_id)
            meme = self._memes[i]
            saved = not meme.is_saved
            updated = meme.model_copy(update={"is_saved": saved})
            if self.view == "saved" and not saved:
                del self._memes[i]
            else:
                self._memes[i] = updated
            self._update_overlay("saved", meme_id, saved)
        if saved:
            self._notify("info", "saved", "저장되었습니다")
        else:
            self._notify("info", "unsaved", "저장이 해제되었습니다")
        return updated

    def _deny(self, message: str) -> PermissionDenied:
        self._notify("error", "permission_denied", message)
        return PermissionDenied(message)

    def _fail(self, message: str, exc: RemoteOperationFailed) -> RemoteOperationFailed:
        logger.error("%s (%s)", message, exc)
        self._notify("error", "remote_operation_failed", f"{message}: {exc}")
        return exc

    def _drop_blob(self, image_url: str) -> None:
        path = self.source.blob_path_for(image_url)
        if not path:
            return
        try:
            self.source.delete_blob(path)
        except Exception as exc:
            logger.warning("Could not delete image blob %s: %s", path, exc)

    def delete(self, meme_id: str, requester_id: Optional[str], requester_is_admin: bool) -> None:
        """Delete a meme. The caller is expected to have confirmed with the user.

        Fallback records are hidden on this device only; server records
        are deleted remotely and the collection is reloaded.
        """
        with self._lock:
            meme = self.get(meme_id)
            if meme is None:
                raise KeyError(meme_id)
            is_owner = bool(requester_id) and meme.owner_id == requester_id
            if not (requester_is_admin or is_owner):
                logger.info("Delete of %s denied for requester %s", meme_id, requester_id)
                raise self._deny("본인이 업로드한 짤만 삭제할 수 있습니다")

            if not is_server_id(meme_id):
                self._memes = [m for m in self._memes if m.id != meme_id]
                self._update_overlay("deletedFallback", meme_id, True)
                self._notify("info", "deleted", "삭제되었습니다")
                return

        self._drop_blob(meme.image_url)
        try:
            self.source.delete_record(meme_id)
        except RemoteOperationFailed as exc:
            raise self._fail("삭제 중 오류가 발생했습니다", exc)
        self._notify("info", "deleted", "삭제되었습니다")
        self.load()

    def create(self, draft: MemeDraft, image: ImagePayload, requester_id: Optional[str]) -> Optional[MemeRecord]:
        """Upload ``image``, insert a new row and reload."""
        if not requester_id:
            raise self._deny("로그인이 필요합니다")
        path = f"{requester_id}/{int(time.time() * 1000)}.{image.extension}"
        try:
            image_url = self.source.upload_blob(path, image.data, image.content_type)
        except RemoteOperationFailed as exc:
            raise self._fail("이미지 업로드 실패", exc)

        fields = draft.to_row()
        # episode is still NOT NULL in the memes table
        fields.update({"user_id": requester_id, "image_url": image_url, "episode": ""})
        try:
            row = self.source.insert_record(fields)
        except RemoteOperationFailed as exc:
            self._drop_blob(image_url)
            raise self._fail("짤 등록 실패", exc)

        self._notify("info", "created", "짤이 성공적으로 등록되었습니다!")
        self.load()
        return self.get(str(row.get("id"))) if isinstance(row, dict) else None

    def update(
        self,
        meme_id: str,
        draft: MemeDraft,
        requester_id: Optional[str],
        requester_is_admin: bool,
        image: Optional[ImagePayload] = None,
    ) -> Optional[MemeRecord]:
        """Edit a server record; a new image replaces the stored one."""
        meme = self.get(meme_id)
        if meme is None:
            raise KeyError(meme_id)
        if not requester_id:
            raise self._deny("로그인이 필요합니다")
        if not (requester_is_admin or meme.owner_id == requester_id):
            raise self._deny("본인이 업로드한 짤만 수정할 수 있습니다")
        if not is_server_id(meme_id):
            raise self._deny("기본 짤은 수정할 수 없습니다. 데이터베이스에 저장된 짤만 수정할 수 있습니다.")

        fields = draft.to_row()
        if image is not None:
            path = f"{requester_id}/{int(time.time() * 1000)}.{image.extension}"
            try:
                fields["image_url"] = self.source.upload_blob(path, image.data, image.content_type)
            except RemoteOperationFailed as exc:
                raise self._fail("이미지 업로드 실패", exc)
        try:
            self.source.update_record(meme_id, fields)
        except RemoteOperationFailed as exc:
            if image is not None:
                self._drop_blob(fields["image_url"])
            raise self._fail("짤 수정 실패", exc)
        if image is not None:
            self._drop_blob(meme.image_url)

        self._notify("info", "updated", "짤이 성공적으로 수정되었습니다!")
        self.load()
        return self.get(meme_id)
