"""
Route definitions for the meme catalog API.

Endpoints under /api/catalog:
- GET    /memes               : filtered catalog (remote + fallback + overlay)
- POST   /memes/reload        : force a reload from the record source
- GET    /memes/{meme_id}     : one meme from the current collection
- POST   /memes/{meme_id}/like: toggle like
- POST   /memes/{meme_id}/save: toggle save
- DELETE /memes/{meme_id}     : delete (owner or admin)
- POST   /memes               : upload a new meme (multipart)
- PUT    /memes/{meme_id}     : edit a meme (multipart)
- GET    /vocabulary          : categories and emotion tags
- GET    /debug/fallback      : debug the fallback dataset
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile
from pydantic import BaseModel

from ..config import get_settings
from ..errors import PermissionDenied, RemoteOperationFailed, ValidationFailed
from ..models import ImagePayload, build_draft, build_image
from ..storage import OverlayStore
from .reconciler import CatalogReconciler
from .schemas import (
    ALL_CATEGORIES,
    CATEGORIES,
    EMOTIONS,
    CategorySelector,
    MemeAction,
    MemeList,
    Scope,
    View,
    Vocabulary,
)
from .store import FALLBACK_MEMES, is_server_id
from .supabase_service import RecordSource, SupabaseRecordSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


# ---------------------------------------------------------------------------
# Reconciler registry
#
# One reconciler per (device, view). A device's views share the same
# overlay file, so a mutation through one view marks its siblings stale
# and they reload on next access. Mutations of server data mark every
# reconciler stale. The registry keeps at most ``max_entries``
# reconcilers; the least recently used one is dropped and rebuilt from
# the overlay file if its device comes back.

class ReconcilerRegistry:
    def __init__(
        self,
        source: RecordSource,
        overlay: OverlayStore,
        saved_scope_flag: str = "is_favorite",
        liked_scope_flag: str = "is_favorite",
        max_entries: int = 256,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.source = source
        self.overlay = overlay
        self.saved_scope_flag = saved_scope_flag
        self.liked_scope_flag = liked_scope_flag
        self.max_entries = max_entries
        self._reconcilers: OrderedDict[Tuple[str, str], CatalogReconciler] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._reconcilers)

    def get(self, device_id: str, view: str = "general") -> CatalogReconciler:
        key = (device_id, view)
        with self._lock:
            rec = self._reconcilers.get(key)
            if rec is None:
                rec = CatalogReconciler(
                    self.source,
                    self.overlay.for_device(device_id),
                    view=view,
                    saved_scope_flag=self.saved_scope_flag,
                    liked_scope_flag=self.liked_scope_flag,
                )
                self._reconcilers[key] = rec
                while len(self._reconcilers) > self.max_entries:
                    evicted, _ = self._reconcilers.popitem(last=False)
                    logger.debug("Evicted reconciler for device %s (%s view)", *evicted)
            else:
                self._reconcilers.move_to_end(key)
        if rec.stale:
            rec.load()
        return rec

    def touched(self, device_id: str, view: str, everywhere: bool = False) -> None:
        with self._lock:
            for (dev, v), rec in self._reconcilers.items():
                if (dev, v) == (device_id, view):
                    continue
                if everywhere or dev == device_id:
                    rec.mark_stale()


_registry: Optional[ReconcilerRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ReconcilerRegistry:
    global _registry
    with _registry_lock:
        if _registry is None:
            settings = get_settings()
            source = SupabaseRecordSource.from_settings(settings)
            if not source.configured:
                logger.warning("SUPABASE_URL / SUPABASE_KEY not set; serving the fallback catalog only")
            _registry = ReconcilerRegistry(
                source,
                OverlayStore(settings.overlay_file),
                saved_scope_flag=settings.saved_scope_flag,
                liked_scope_flag=settings.liked_scope_flag,
                max_entries=settings.max_reconcilers,
            )
        return _registry


# ---------------------------------------------------------------------------
# Identity
#
# The device id scopes likes/saves/hidden fallback memes. The requester
# id comes from the authenticated front-end; the role is looked up per
# request and never cached.

class Requester(BaseModel):
    user_id: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def device_id(x_device_id: Optional[str] = Header(default=None)) -> str:
    return (x_device_id or "").strip() or "default"


def requester(x_user_id: Optional[str] = Header(default=None)) -> Requester:
    user_id = (x_user_id or "").strip() or None
    if user_id is None:
        return Requester()
    return Requester(user_id=user_id, role=get_registry().source.lookup_role(user_id))


def _require_login(who: Requester) -> None:
    if not who.user_id:
        raise HTTPException(status_code=401, detail="로그인이 필요합니다")


def _to_http(rec: CatalogReconciler, exc: Exception) -> HTTPException:
    # The message travels in the HTTP detail; drop the queued copy.
    rec.drain_notices()
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail="Meme not found")
    if isinstance(exc, ValidationFailed):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, RemoteOperationFailed):
        return HTTPException(status_code=502, detail=str(exc))
    raise exc


def _read_upload(file: Optional[UploadFile]) -> Optional[ImagePayload]:
    if file is None:
        return None
    data = file.file.read()
    return build_image(file.filename or "", file.content_type or "", data)


# ---------------------------------------------------------------------------
# Catalog endpoints

@router.get("/memes", response_model=MemeList)
def list_memes(
    q: Optional[str] = Query(default=None, description="제목/상황/태그 검색"),
    category: CategorySelector = Query(default=ALL_CATEGORIES, description="인물 필터"),
    scope: Scope = Query(default="all", description="all / saved / liked"),
    view: View = Query(default="general"),
    device: str = Depends(device_id),
) -> MemeList:
    rec = get_registry().get(device, view)
    items = rec.filter(q or "", category, scope)
    return MemeList(total=len(items), items=items, notices=rec.drain_notices())


@router.post("/memes/reload", response_model=MemeList)
def reload_memes(view: View = Query(default="general"), device: str = Depends(device_id)) -> MemeList:
    rec = get_registry().get(device, view)
    items = rec.load()
    return MemeList(total=len(items), items=items, notices=rec.drain_notices())


@router.get("/memes/{meme_id}", response_model=MemeAction)
def get_meme(meme_id: str, view: View = Query(default="general"), device: str = Depends(device_id)) -> MemeAction:
    rec = get_registry().get(device, view)
    meme = rec.get(meme_id)
    if meme is None:
        raise HTTPException(status_code=404, detail="Meme not found")
    return MemeAction(item=meme, notices=rec.drain_notices())


@router.post("/memes/{meme_id}/like", response_model=MemeAction)
def like_meme(meme_id: str, view: View = Query(default="general"), device: str = Depends(device_id)) -> MemeAction:
    registry = get_registry()
    rec = registry.get(device, view)
    try:
        updated = rec.toggle_like(meme_id)
    except KeyError as exc:
        raise _to_http(rec, exc)
    registry.touched(device, view)
    return MemeAction(item=updated, notices=rec.drain_notices())


@router.post("/memes/{meme_id}/save", response_model=MemeAction)
def save_meme(meme_id: str, view: View = Query(default="general"), device: str = Depends(device_id)) -> MemeAction:
    registry = get_registry()
    rec = registry.get(device, view)
    try:
        updated = rec.toggle_save(meme_id)
    except KeyError as exc:
        raise _to_http(rec, exc)
    registry.touched(device, view)
    return MemeAction(item=updated, notices=rec.drain_notices())


@router.delete("/memes/{meme_id}")
def delete_meme(
    meme_id: str,
    view: View = Query(default="general"),
    device: str = Depends(device_id),
    who: Requester = Depends(requester),
):
    """Delete a meme. The front-end must have asked the user to confirm."""
    _require_login(who)
    registry = get_registry()
    rec = registry.get(device, view)
    try:
        rec.delete(meme_id, who.user_id, who.is_admin)
    except (KeyError, PermissionDenied, RemoteOperationFailed) as exc:
        raise _to_http(rec, exc)
    registry.touched(device, view, everywhere=is_server_id(meme_id))
    return {"status": "ok", "notices": [n.model_dump() for n in rec.drain_notices()]}


@router.post("/memes", response_model=MemeList)
def upload_meme(
    title: str = Form(default=""),
    quote: str = Form(default=""),
    category: str = Form(default=""),
    tags: List[str] = Form(default=[]),
    file: Optional[UploadFile] = File(default=None),
    device: str = Depends(device_id),
    who: Requester = Depends(requester),
) -> MemeList:
    _require_login(who)
    registry = get_registry()
    rec = registry.get(device, "general")
    try:
        draft = build_draft(title=title, quote=quote, category=category, tags=tags)
        image = _read_upload(file)
        if image is None:
            raise ValidationFailed("이미지를 선택하세요")
        rec.create(draft, image, who.user_id)
    except (ValidationFailed, PermissionDenied, RemoteOperationFailed) as exc:
        raise _to_http(rec, exc)
    registry.touched(device, "general", everywhere=True)
    items = rec.memes
    return MemeList(total=len(items), items=items, notices=rec.drain_notices())


@router.put("/memes/{meme_id}", response_model=MemeList)
def edit_meme(
    meme_id: str,
    title: str = Form(default=""),
    quote: str = Form(default=""),
    category: str = Form(default=""),
    tags: List[str] = Form(default=[]),
    file: Optional[UploadFile] = File(default=None),
    device: str = Depends(device_id),
    who: Requester = Depends(requester),
) -> MemeList:
    _require_login(who)
    registry = get_registry()
    rec = registry.get(device, "general")
    try:
        draft = build_draft(title=title, quote=quote, category=category, tags=tags)
        rec.update(meme_id, draft, who.user_id, who.is_admin, image=_read_upload(file))
    except (KeyError, ValidationFailed, PermissionDenied, RemoteOperationFailed) as exc:
        raise _to_http(rec, exc)
    registry.touched(device, "general", everywhere=True)
    items = rec.memes
    return MemeList(total=len(items), items=items, notices=rec.drain_notices())


@router.get("/vocabulary", response_model=Vocabulary)
def vocabulary() -> Vocabulary:
    return Vocabulary(categories=[ALL_CATEGORIES] + CATEGORIES, emotions=EMOTIONS)


@router.get("/debug/fallback")
def debug_fallback():
    """
    Debug endpoint to verify the fallback dataset is loaded.
    Visit: http://127.0.0.1:8000/api/catalog/debug/fallback
    """
    return {
        "count": len(FALLBACK_MEMES),
        "sample": [
            {"id": m.id, "title": m.title, "category": m.category}
            for m in FALLBACK_MEMES[:5]
        ],
    }
