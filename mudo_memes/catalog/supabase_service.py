"""
Supabase integration for the meme catalog. This module is the Record
Source: every call that leaves the process for meme metadata, profile
nicknames, user roles or image blobs goes through
``SupabaseRecordSource``.

Rows come back from PostgREST as loosely-typed JSON. ``parse_row()``
is the single place where a raw row becomes a ``MemeRecord``; rows
that do not validate raise ``ValueError`` and are skipped by the
caller.

Only the Python standard library is used for HTTP requests. Failures
are raised as ``RemoteOperationFailed`` (or ``SourceUnavailable`` for
the listing call, which the reconciler recovers from by falling back
to the local catalog).
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Iterable, List, Mapping, Optional

from typing_extensions import Protocol

from ..config import Settings
from ..errors import RemoteOperationFailed, SourceUnavailable
from .schemas import MemeRecord


logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ROLES = {"admin", "moderator", "user"}


class RecordSource(Protocol):
    """What the reconciler needs from the remote store."""

    configured: bool

    def list_records(self) -> List[Dict[str, Any]]: ...

    def lookup_display_names(self, ids: Iterable[str]) -> Dict[str, str]: ...

    def lookup_role(self, user_id: str) -> str: ...

    def insert_record(self, fields: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update_record(self, meme_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_record(self, meme_id: str) -> None: ...

    def upload_blob(self, path: str, data: bytes, content_type: str) -> str: ...

    def delete_blob(self, path: str) -> None: ...

    def blob_path_for(self, image_url: str) -> Optional[str]: ...


def _describe_error(status: Optional[int], payload: Any) -> RemoteOperationFailed:
    """Build an exception from a PostgREST / storage error body."""
    code: Optional[str] = None
    parts: List[str] = []
    if isinstance(payload, dict):
        for key in ("message", "details", "hint", "error"):
            val = payload.get(key)
            if val:
                parts.append(f"{key}={val}")
        raw_code = payload.get("code") or payload.get("statusCode")
        code = str(raw_code) if raw_code is not None else None
    elif payload:
        parts.append(str(payload)[:200])
    if status is not None:
        parts.insert(0, f"status={status}")
    if code:
        parts.append(f"code={code}")
    return RemoteOperationFailed(", ".join(parts) or "unknown error", code=code)


def parse_row(row: Mapping[str, Any], display_names: Optional[Mapping[str, str]] = None) -> MemeRecord:
    """Convert a raw ``memes`` row into a ``MemeRecord``.

    Overlay flags are left false; the reconciler derives them.
    """
    if not isinstance(row, Mapping):
        raise ValueError(f"Row is not an object: {row!r}")
    owner_id = row.get("user_id")
    owner_id = str(owner_id) if owner_id else None
    names = display_names or {}
    tags = row.get("tags")
    if isinstance(tags, str):
        tags = [tags]
    likes = row.get("likes")
    return MemeRecord.model_validate(
        {
            "id": str(row.get("id") or ""),
            "image_url": row.get("image_url") or "",
            "title": row.get("title"),
            "quote": row.get("quote"),
            "category": row.get("category"),
            "tags": tags or [],
            "like_count": int(likes) if isinstance(likes, (int, float)) else 0,
            "owner_id": owner_id,
            "owner_display_name": names.get(owner_id) if owner_id else None,
        }
    )


class SupabaseRecordSource:
    """Record Source backed by Supabase PostgREST and Storage."""

    def __init__(
        self,
        url: Optional[str],
        key: Optional[str],
        bucket: str = "meme-images",
        timeout: float = 10.0,
    ):
        self.url = (url or "").rstrip("/")
        self.key = key or ""
        self.bucket = bucket
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRecordSource":
        return cls(
            settings.supabase_url,
            settings.supabase_key,
            bucket=settings.bucket,
            timeout=settings.http_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    # -- transport ---------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        if not self.configured:
            raise RemoteOperationFailed("Supabase is not configured")
        url = f"{self.url}{path}"
        if params:
            query = urllib.parse.urlencode(params, safe=',.()"')
            url = f"{url}?{query}"
        all_headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Accept": "application/json",
        }
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")
            all_headers["Content-Type"] = "application/json"
        all_headers.update(headers or {})
        request = urllib.request.Request(url, data=data, headers=all_headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8", errors="ignore")
        except urllib.error.HTTPError as exc:
            raw_err = exc.read().decode("utf-8", errors="ignore")
            try:
                payload = json.loads(raw_err)
            except ValueError:
                payload = raw_err
            err = _describe_error(exc.code, payload)
            logger.error("Supabase %s %s failed: %s", method, path, err)
            raise err from exc
        except (urllib.error.URLError, socket.timeout, OSError) as exc:
            logger.error("Supabase %s %s unreachable: %s", method, path, exc)
            raise RemoteOperationFailed(f"Supabase unreachable: {exc}") from exc
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise RemoteOperationFailed(f"Malformed response from {path}") from exc

    # -- records -----------------------------------------------------------

    def list_records(self) -> List[Dict[str, Any]]:
        """All meme rows, newest first."""
        if not self.configured:
            raise SourceUnavailable("Supabase URL or key is not set")
        try:
            rows = self._request(
                "GET", "/rest/v1/memes", params={"select": "*", "order": "created_at.desc"}
            )
        except RemoteOperationFailed as exc:
            raise SourceUnavailable(str(exc)) from exc
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise SourceUnavailable("Unexpected payload from memes listing")
        return rows

    def lookup_display_names(self, ids: Iterable[str]) -> Dict[str, str]:
        """Map user ids to profile nicknames. Missing profiles are omitted."""
        unique = sorted({str(i) for i in ids if i})
        if not unique:
            return {}
        quoted = ",".join(f'"{i}"' for i in unique)
        rows = self._request(
            "GET", "/rest/v1/profiles", params={"select": "id,nickname", "id": f"in.({quoted})"}
        )
        names: Dict[str, str] = {}
        for row in rows or []:
            if isinstance(row, dict) and row.get("id") and isinstance(row.get("nickname"), str):
                names[str(row["id"])] = row["nickname"]
        return names

    def lookup_role(self, user_id: str) -> str:
        """Role of ``user_id``; ``"user"`` when unknown or on any error."""
        if not user_id or not self.configured:
            return "user"
        try:
            rows = self._request(
                "GET",
                "/rest/v1/user_roles",
                params={"select": "role", "user_id": f"eq.{user_id}", "limit": "1"},
            )
        except RemoteOperationFailed as exc:
            logger.warning("Role lookup for %s failed, defaulting to 'user': %s", user_id, exc)
            return "user"
        if rows and isinstance(rows, list) and isinstance(rows[0], dict):
            role = rows[0].get("role")
            if role in ROLES:
                return role
        return "user"

    def insert_record(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        rows = self._request(
            "POST", "/rest/v1/memes", body=dict(fields), headers={"Prefer": "return=representation"}
        )
        if isinstance(rows, list) and rows:
            return rows[0]
        if isinstance(rows, dict):
            return rows
        raise RemoteOperationFailed("Insert returned no row")

    def update_record(self, meme_id: str, fields: Mapping[str, Any]) -> None:
        self._request(
            "PATCH",
            "/rest/v1/memes",
            params={"id": f"eq.{meme_id}"},
            body=dict(fields),
            headers={"Prefer": "return=minimal"},
        )

    def delete_record(self, meme_id: str) -> None:
        self._request("DELETE", "/rest/v1/memes", params={"id": f"eq.{meme_id}"})

    # -- blobs -------------------------------------------------------------

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"

    def blob_path_for(self, image_url: str) -> Optional[str]:
        """Storage path (``<user>/<file>``) of an image in our bucket."""
        prefix = f"{self.url}/storage/v1/object/public/{self.bucket}/"
        if not self.url or not image_url or not image_url.startswith(prefix):
            return None
        return "/".join(image_url.split("/")[-2:])

    def upload_blob(self, path: str, data: bytes, content_type: str) -> str:
        self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{urllib.parse.quote(path)}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return self.public_url(path)

    def delete_blob(self, path: str) -> None:
        self._request(
            "DELETE", f"/storage/v1/object/{self.bucket}", body={"prefixes": [path]}
        )
