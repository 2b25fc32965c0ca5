from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Creation(BaseModel):
    """List-view projection of a saved creation. is_locked is computed per read."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subject: Optional[str] = None
    artist_name: Optional[str] = None
    artist_age: Optional[str] = None
    artist_grade: Optional[str] = None
    year: Optional[int] = None
    created_at: datetime
    is_locked: bool = False
    thumbnail_url: Optional[str] = None


class CreationDetail(Creation):
    original_image_url: Optional[str] = None
    video_url: Optional[str] = None
    page_image_urls: List[str] = Field(default_factory=list)
    story_pages: List[dict] = Field(default_factory=list)
    urls_expire_at: Optional[datetime] = None


class NewCreation(BaseModel):
    """Payload for saving an already-uploaded creation."""
    title: str = Field(min_length=1, max_length=200)
    subject: Optional[str] = None
    artist_name: Optional[str] = None
    artist_age: Optional[str] = None
    artist_grade: Optional[str] = None
    year: Optional[int] = None
    original_image_path: Optional[str] = None
    video_path: Optional[str] = None
    page_images: List[str] = Field(default_factory=list)
    story_pages: List[dict] = Field(default_factory=list)
