# mudo_memes/config.py
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    bucket: str = "meme-images"
    overlay_file: Path = DATA_DIR / "overlays.json"
    http_timeout: float = 10.0
    # Which flag the "saved" / "liked" scopes filter on. The web client
    # historically checked is_favorite for both.
    saved_scope_flag: str = "is_favorite"
    liked_scope_flag: str = "is_favorite"
    log_level: str = "INFO"
    # Upper bound on cached per-device catalogs held in memory.
    max_reconcilers: int = 256

    @property
    def source_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def get_settings() -> Settings:
    """Build settings from the environment.

    Missing Supabase variables are not an error: the catalog then runs
    on the fallback dataset only.
    """
    return Settings(
        supabase_url=os.environ.get("SUPABASE_URL") or None,
        supabase_key=os.environ.get("SUPABASE_KEY") or None,
        bucket=os.environ.get("MUDO_BUCKET", "meme-images"),
        overlay_file=Path(os.environ.get("MUDO_OVERLAY_FILE", str(DATA_DIR / "overlays.json"))),
        http_timeout=float(os.environ.get("MUDO_HTTP_TIMEOUT", 10)),
        saved_scope_flag=os.environ.get("MUDO_SAVED_SCOPE_FLAG", "is_favorite"),
        liked_scope_flag=os.environ.get("MUDO_LIKED_SCOPE_FLAG", "is_favorite"),
        log_level=os.environ.get("MUDO_LOG_LEVEL", "INFO"),
        max_reconcilers=int(os.environ.get("MUDO_MAX_RECONCILERS", 256)),
    )
