# mudo_memes/models.py
import re
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from .catalog.schemas import CATEGORIES, EMOTIONS
from .errors import ValidationFailed

MAX_IMAGE_BYTES = 10 * 1024 * 1024
_EXTENSION_RE = re.compile(r"[a-z0-9]{1,5}")


class MemeDraft(BaseModel):
    """Fields submitted by the upload / edit form."""

    title: str
    quote: str
    category: str
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _check_title(cls, v: Any) -> str:
        v = (v or "").strip() if isinstance(v, str) or v is None else v
        if not v:
            raise ValueError("제목을 입력하세요")
        if len(v) > 100:
            raise ValueError("제목은 100자 이내로 입력하세요")
        return v

    @field_validator("quote", mode="before")
    @classmethod
    def _check_quote(cls, v: Any) -> str:
        v = (v or "").strip() if isinstance(v, str) or v is None else v
        if not v:
            raise ValueError("상황을 입력하세요")
        if len(v) > 500:
            raise ValueError("상황은 500자 이내로 입력하세요")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def _check_category(cls, v: Any) -> str:
        if v not in CATEGORIES:
            raise ValueError("카테고리를 선택하세요")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _check_tags(cls, v: Any) -> List[str]:
        tags = list(v or [])
        if not tags:
            raise ValueError("최소 1개의 태그를 선택하세요")
        unknown = [t for t in tags if t not in EMOTIONS]
        if unknown:
            raise ValueError(f"알 수 없는 태그입니다: {', '.join(map(str, unknown))}")
        if len(set(tags)) != len(tags):
            raise ValueError("태그는 중복 선택할 수 없습니다")
        return tags

    def to_row(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "quote": self.quote,
            "category": self.category,
            "tags": list(self.tags),
        }


class ImagePayload(BaseModel):
    """An image file attached to an upload or edit."""

    filename: str = ""
    data: bytes = b""
    content_type: str = ""

    @field_validator("data")
    @classmethod
    def _check_data(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("이미지를 선택하세요")
        if len(v) > MAX_IMAGE_BYTES:
            raise ValueError("이미지 크기는 10MB 이하여야 합니다")
        return v

    @field_validator("content_type")
    @classmethod
    def _check_content_type(cls, v: str) -> str:
        if not (v or "").lower().startswith("image/"):
            raise ValueError("이미지 파일만 업로드 가능합니다")
        return v.lower()

    @property
    def extension(self) -> str:
        """Storage-key suffix: the filename's extension when it is plain
        alphanumerics, otherwise taken from the content type."""
        if "." in self.filename:
            ext = self.filename.rsplit(".", 1)[-1].lower()
            if _EXTENSION_RE.fullmatch(ext):
                return ext
        subtype = _EXTENSION_RE.match(self.content_type.split("/", 1)[-1])
        return subtype.group(0) if subtype else "img"


def _first_message(exc: ValidationError) -> str:
    msg = exc.errors()[0].get("msg", "입력값이 올바르지 않습니다")
    prefix = "Value error, "
    return msg[len(prefix):] if msg.startswith(prefix) else msg


def build_draft(**fields: Any) -> MemeDraft:
    """Validate form fields, raising ``ValidationFailed`` with the first message."""
    try:
        return MemeDraft(**fields)
    except ValidationError as exc:
        raise ValidationFailed(_first_message(exc)) from exc


def build_image(filename: str, content_type: str, data: bytes) -> ImagePayload:
    try:
        return ImagePayload(filename=filename or "", content_type=content_type or "", data=data or b"")
    except ValidationError as exc:
        raise ValidationFailed(_first_message(exc)) from exc
