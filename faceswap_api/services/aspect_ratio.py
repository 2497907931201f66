"""
Aspect Ratio Resolver
Picks a supported "W:H" ratio for a request, either as asked or matched to the
true (orientation-corrected) dimensions of the reference image.
"""

import logging
from typing import Optional, Tuple

from faceswap_api.core.config import settings
from faceswap_api.schemas.image import AspectRatioCatalog, ImageMetrics, ImageRef
from faceswap_api.services.image_inspector import inspect_image

logger = logging.getLogger(__name__)

ORIGINAL = "original"


def default_catalog() -> AspectRatioCatalog:
    """Catalog configured for the generative providers."""
    return AspectRatioCatalog(ratios=list(settings.ASPECT_RATIOS), default=settings.DEFAULT_ASPECT_RATIO)


def parse_ratio(ratio: str) -> Optional[Tuple[int, int]]:
    """ "16:9" -> (16, 9); None when malformed."""
    try:
        w, h = ratio.split(":")
        w, h = int(w), int(h)
    except (AttributeError, ValueError):
        return None
    if w <= 0 or h <= 0:
        return None
    return w, h


def orientation_of(width: float, height: float) -> str:
    if height > width:
        return "portrait"
    if width > height:
        return "landscape"
    return "square"


def closest_ratio(width: int, height: int, catalog: AspectRatioCatalog) -> str:
    """
    Catalog entry nearest to width/height.

    Entries with the same orientation are preferred when the catalog has any;
    ties keep the earlier entry.
    """
    if width <= 0 or height <= 0:
        return catalog.default

    actual = width / height
    target_orientation = orientation_of(width, height)

    parsed = [(r, parse_ratio(r)) for r in catalog.ratios]
    parsed = [(r, wh) for r, wh in parsed if wh is not None]
    same = [(r, wh) for r, wh in parsed if orientation_of(*wh) == target_orientation]
    candidates = same or parsed

    best = None
    best_diff = None
    for ratio, (w, h) in candidates:
        diff = abs(w / h - actual)
        if best_diff is None or diff < best_diff:
            best, best_diff = ratio, diff

    return best or catalog.default


class AspectRatioResolver:
    """Resolves requested ratios; never raises, always returns a catalog member."""

    def __init__(self, fetcher=None):
        self.fetcher = fetcher

    def resolve_from_metrics(
        self,
        requested: Optional[str],
        metrics: Optional[ImageMetrics],
        catalog: AspectRatioCatalog,
        allow_original: bool = True
    ) -> str:
        if requested in catalog:
            return requested
        if (requested is None or requested == ORIGINAL) and allow_original and metrics is not None:
            return closest_ratio(metrics.width, metrics.height, catalog)
        return catalog.default

    async def resolve(
        self,
        requested: Optional[str],
        image: Optional[ImageRef],
        catalog: AspectRatioCatalog,
        allow_original: bool = True
    ) -> str:
        """
        Args:
            requested: "W:H", "original" or None
            image: Image whose dimensions drive "original"
            catalog: Supported ratios and default
            allow_original: Whether "original" may inspect the image
        """
        if requested in catalog:
            return requested

        if requested not in (None, ORIGINAL) or not allow_original or image is None:
            return catalog.default

        metrics = None
        try:
            if self.fetcher is not None:
                metrics = await self.fetcher.inspect(image)
            elif image.data is not None:
                metrics = inspect_image(image.data)
        except Exception as e:
            logger.warning(f"[AspectRatio] Could not inspect {image.describe()}: {e}")
            metrics = None

        if metrics is None:
            logger.info(f"[AspectRatio] Dimensions unavailable, using default {catalog.default}")
            return catalog.default

        ratio = self.resolve_from_metrics(requested, metrics, catalog, allow_original)
        logger.info(
            f"[AspectRatio] {metrics.width}x{metrics.height} "
            f"(orientation {metrics.orientation}) -> {ratio}"
        )
        return ratio


__all__ = ["ORIGINAL", "default_catalog", "parse_ratio", "orientation_of", "closest_ratio", "AspectRatioResolver"]
