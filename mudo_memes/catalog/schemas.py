"""
Pydantic schema definitions for the meme catalog.

``MemeRecord`` is the single typed shape every meme takes once it has
crossed the Record Source boundary or been read from the fallback
catalog. The two overlay-derived flags (``is_favorite`` and
``is_saved``) are never authoritative server state: they are
recomputed from the device's overlay every time the catalog is loaded
or mutated.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from typing_extensions import Literal

Category = Literal["유재석", "박명수", "정형돈", "정준하", "하하", "노홍철", "길"]

# Filter-only selector; never stored on a record.
ALL_CATEGORIES = "전체"
CategorySelector = Literal["전체", "all", "유재석", "박명수", "정형돈", "정준하", "하하", "노홍철", "길"]

CATEGORIES: List[str] = ["유재석", "박명수", "정형돈", "정준하", "하하", "노홍철", "길"]

Emotion = Literal[
    "웃김", "화남", "슬픔", "감동", "놀람", "당황", "사과", "현웃",
    "기쁨", "설렘", "부끄러움", "짜증", "놀림", "멘붕", "허탈", "기대",
    "실망", "자신감", "겸손", "도전", "승리", "패배", "질투", "의심",
    "확신", "고민", "결심", "무서움", "안도", "만족", "불만",
]

EMOTIONS: List[str] = [
    "웃김", "화남", "슬픔", "감동", "놀람", "당황", "사과", "현웃",
    "기쁨", "설렘", "부끄러움", "짜증", "놀림", "멘붕", "허탈", "기대",
    "실망", "자신감", "겸손", "도전", "승리", "패배", "질투", "의심",
    "확신", "고민", "결심", "무서움", "안도", "만족", "불만",
]

Scope = Literal["all", "saved", "liked"]
View = Literal["general", "saved"]
OverlayFlag = Literal["is_favorite", "is_saved"]


class MemeRecord(BaseModel):
    """A single meme entry.

    ``id`` lives in one of two id spaces: server-issued UUIDs and
    fallback-catalog ids (any other shape). ``owner_id`` is absent for
    fallback records; ``owner_display_name`` is filled in on a best
    effort basis from the profiles lookup.
    """

    id: str = Field(min_length=1)
    image_url: str
    title: str = Field(min_length=1, max_length=100)
    quote: str = Field(min_length=1, max_length=500)
    category: Category
    tags: List[Emotion] = Field(min_length=1)
    like_count: int = Field(default=0, ge=0)
    is_favorite: bool = False
    is_saved: bool = False
    owner_id: Optional[str] = None
    owner_display_name: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, tags: List[str]) -> List[str]:
        # insertion order is display order
        return list(dict.fromkeys(tags))


class Notice(BaseModel):
    """A non-fatal degradation or an operation outcome for the UI."""

    level: Literal["info", "warning", "error"]
    code: str
    message: str


class MemeList(BaseModel):
    """Filtered view of the catalog returned from ``/memes``."""

    total: int
    items: List[MemeRecord]
    notices: List[Notice] = Field(default_factory=list)


class MemeAction(BaseModel):
    """Result of a like/save toggle: the refreshed record."""

    item: MemeRecord
    notices: List[Notice] = Field(default_factory=list)


class Vocabulary(BaseModel):
    categories: List[str]
    emotions: List[str]
