"""Shared fixtures: an in-memory Record Source and a tmp overlay file."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional

import pytest

from mudo_memes.catalog.reconciler import CatalogReconciler
from mudo_memes.catalog.schemas import MemeRecord
from mudo_memes.errors import SourceUnavailable
from mudo_memes.storage import OverlayStore

BLOB_PREFIX = "https://proj.supabase.co/storage/v1/object/public/meme-images/"

U1 = "11111111-1111-4111-8111-111111111111"
U2 = "22222222-2222-4222-8222-222222222222"
U3 = "33333333-3333-4333-8333-333333333333"


def make_row(meme_id: str, title: str = "원격 짤", user_id: Optional[str] = "u1", **extra: Any) -> Dict[str, Any]:
    row = {
        "id": meme_id,
        "image_url": f"{BLOB_PREFIX}{user_id}/{meme_id}.png",
        "title": title,
        "quote": f"{title} 상황",
        "category": "유재석",
        "tags": ["웃김"],
        "likes": 3,
        "user_id": user_id,
        "episode": "",
    }
    row.update(extra)
    return row


class FakeSource:
    """Record Source double keeping rows in a list."""

    def __init__(
        self,
        rows: Optional[Iterable[Dict[str, Any]]] = None,
        names: Optional[Dict[str, str]] = None,
        roles: Optional[Dict[str, str]] = None,
        configured: bool = True,
    ):
        self.rows: List[Dict[str, Any]] = [dict(r) for r in rows or []]
        self.names = dict(names or {})
        self.roles = dict(roles or {})
        self.configured = configured
        self.fail_list: Optional[Exception] = None
        self.fail_names: Optional[Exception] = None
        self.fail_delete: Optional[Exception] = None
        self.fail_blob_delete: Optional[Exception] = None
        self.fail_upload: Optional[Exception] = None
        self.fail_insert: Optional[Exception] = None
        self.fail_update: Optional[Exception] = None
        self.list_calls = 0
        self.deleted_records: List[str] = []
        self.deleted_blobs: List[str] = []
        self.uploaded: Dict[str, bytes] = {}
        self.updates: List[Dict[str, Any]] = []

    def list_records(self) -> List[Dict[str, Any]]:
        self.list_calls += 1
        if not self.configured:
            raise SourceUnavailable("Supabase URL or key is not set")
        if self.fail_list is not None:
            raise self.fail_list
        return [dict(r) for r in self.rows]

    def lookup_display_names(self, ids: Iterable[str]) -> Dict[str, str]:
        if self.fail_names is not None:
            raise self.fail_names
        wanted = set(ids)
        return {k: v for k, v in self.names.items() if k in wanted}

    def lookup_role(self, user_id: str) -> str:
        return self.roles.get(user_id, "user")

    def insert_record(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_insert is not None:
            raise self.fail_insert
        row = dict(fields, id=str(uuid.uuid4()), likes=0)
        self.rows.insert(0, row)
        return row

    def update_record(self, meme_id: str, fields: Dict[str, Any]) -> None:
        if self.fail_update is not None:
            raise self.fail_update
        self.updates.append(dict(fields, id=meme_id))
        for row in self.rows:
            if row["id"] == meme_id:
                row.update(fields)

    def delete_record(self, meme_id: str) -> None:
        if self.fail_delete is not None:
            raise self.fail_delete
        self.deleted_records.append(meme_id)
        self.rows = [r for r in self.rows if r["id"] != meme_id]

    def upload_blob(self, path: str, data: bytes, content_type: str) -> str:
        if self.fail_upload is not None:
            raise self.fail_upload
        self.uploaded[path] = data
        return f"{BLOB_PREFIX}{path}"

    def delete_blob(self, path: str) -> None:
        if self.fail_blob_delete is not None:
            raise self.fail_blob_delete
        self.deleted_blobs.append(path)

    def blob_path_for(self, image_url: str) -> Optional[str]:
        if not image_url.startswith(BLOB_PREFIX):
            return None
        return "/".join(image_url.split("/")[-2:])


@pytest.fixture
def fallback() -> List[MemeRecord]:
    return [
        MemeRecord(
            id="m1", image_url="/memes/a.jpg", title="A", quote="hello",
            category="유재석", tags=["웃김"], like_count=5,
        ),
        MemeRecord(
            id="m2", image_url="/memes/b.jpg", title="B", quote="world",
            category="박명수", tags=["화남"], like_count=0,
        ),
        MemeRecord(
            id="m3", image_url="/memes/c.jpg", title="C", quote="again",
            category="하하", tags=["기쁨", "승리"], like_count=2,
        ),
    ]


@pytest.fixture
def overlay(tmp_path) -> OverlayStore:
    return OverlayStore(tmp_path / "overlays.json", device_id="dev-1")


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(
        rows=[make_row(U1, "첫번째", user_id="u1"), make_row(U2, "두번째", user_id="u2")],
        names={"u1": "무도팬"},
    )


@pytest.fixture
def make_reconciler(overlay, fallback):
    def _make(source, view="general", **kwargs) -> CatalogReconciler:
        return CatalogReconciler(source, overlay, fallback=fallback, view=view, **kwargs)

    return _make
