"""
Image Schemas
Image references, decoded header metrics and aspect ratio catalogs.
"""

from dataclasses import dataclass
from typing import List, Optional
from pydantic import BaseModel, model_validator


class ImageRef(BaseModel):
    """Either raw image bytes or a resolvable URL - never both."""
    url: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @model_validator(mode="after")
    def check_exactly_one_source(self):
        if (self.url is None) == (self.data is None):
            raise ValueError("ImageRef needs exactly one of 'url' or 'data'")
        return self

    @property
    def is_buffer(self) -> bool:
        return self.data is not None

    def describe(self) -> str:
        """Short, log-safe description (never includes the bytes)."""
        if self.url is not None:
            return self.url
        return f"<{len(self.data)} bytes {self.mime_type or 'image'}>"


@dataclass(frozen=True)
class ImageMetrics:
    """
    Dimensions read from an encoded image header.

    width/height are orientation-corrected (swapped when the EXIF
    orientation is 5-8); raw_width/raw_height are as encoded.
    """
    width: int
    height: int
    raw_width: int
    raw_height: int
    orientation: int = 1
    rotated: bool = False
    format: str = ""

    @property
    def ratio(self) -> float:
        return self.width / self.height


class AspectRatioCatalog(BaseModel):
    """Ordered set of supported "W:H" ratios plus the fallback default."""
    ratios: List[str]
    default: str

    @model_validator(mode="after")
    def check_default_in_catalog(self):
        if not self.ratios:
            raise ValueError("Aspect ratio catalog is empty")
        if self.default not in self.ratios:
            raise ValueError(f"Default aspect ratio {self.default!r} is not in the catalog")
        return self

    def __contains__(self, ratio: object) -> bool:
        return ratio in self.ratios
