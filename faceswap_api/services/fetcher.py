"""
Image Fetcher
Loads image bytes from buffers or http(s) URLs with explicit timeouts,
optionally requesting only the header byte range.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from faceswap_api.core.config import settings
from faceswap_api.schemas.image import ImageMetrics, ImageRef
from faceswap_api.services.image_inspector import inspect_image
from faceswap_api.services.retry import FetchError

logger = logging.getLogger(__name__)


def validate_image_url(url: str) -> bool:
    """Only absolute http(s) URLs with a host are fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ImageFetcher:
    """Byte-fetch capability shared by the resolver and the orchestrator."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_ms: Optional[int] = None,
        header_range_bytes: Optional[int] = None
    ):
        self.http_client = http_client
        self.timeout_ms = timeout_ms or settings.TIMEOUT_IMAGE_FETCH_MS
        self.header_range_bytes = header_range_bytes or settings.IMAGE_HEADER_RANGE_BYTES

    async def _get(self, url: str, headers: dict, timeout: float) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.get(url, headers=headers, timeout=timeout, follow_redirects=True)
        async with httpx.AsyncClient() as client:
            return await client.get(url, headers=headers, timeout=timeout, follow_redirects=True)

    async def fetch(
        self,
        ref: ImageRef,
        timeout_ms: Optional[int] = None,
        range_header: Optional[str] = None
    ) -> bytes:
        """
        Get the bytes behind an image reference.

        Raises:
            FetchError: invalid URL or non-2xx response
            httpx.TimeoutException: the fetch exceeded its timeout
        """
        if ref.data is not None:
            return ref.data

        if not validate_image_url(ref.url):
            raise FetchError(f"Invalid or unsafe image URL: {ref.url}", retryable=False)

        headers = {"Range": range_header} if range_header else {}
        timeout = (timeout_ms or self.timeout_ms) / 1000
        response = await self._get(ref.url, headers, timeout)

        if response.status_code < 200 or response.status_code >= 300:
            raise FetchError(
                f"Failed to fetch image: {response.status_code}",
                status_code=response.status_code,
                details={"url": ref.url}
            )
        return response.content

    async def fetch_header(self, ref: ImageRef, timeout_ms: Optional[int] = None) -> bytes:
        """
        Fetch just enough bytes to read the image header.

        Falls back to a full fetch when the server refuses the range request.
        """
        if ref.data is not None:
            return ref.data

        range_header = f"bytes=0-{self.header_range_bytes - 1}"
        try:
            return await self.fetch(ref, timeout_ms, range_header=range_header)
        except FetchError as e:
            if e.status_code is None:
                raise
            logger.info(f"[Fetch] Range request refused ({e.status_code}), fetching full image")
            return await self.fetch(ref, timeout_ms)

    async def inspect(self, ref: ImageRef, timeout_ms: Optional[int] = None) -> Optional[ImageMetrics]:
        """
        Read image metrics, fetching the full image only when the header
        range was not enough (e.g. a large EXIF thumbnail before the frame header).
        """
        data = await self.fetch_header(ref, timeout_ms)
        metrics = inspect_image(data)
        if metrics is None and ref.url is not None and len(data) >= self.header_range_bytes:
            logger.info(f"[Fetch] Header not found in first {len(data)} bytes, fetching full image")
            metrics = inspect_image(await self.fetch(ref, timeout_ms))
        return metrics


__all__ = ["validate_image_url", "ImageFetcher"]
