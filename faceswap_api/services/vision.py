"""
Google Vision SafeSearch Client
Checks a generated image URL with SAFE_SEARCH_DETECTION and normalizes the
annotation into a SafetyVerdict.
"""

import logging
import time
from typing import Optional

import httpx

from faceswap_api.core.config import settings
from faceswap_api.schemas.generation import SafetyVerdict
from faceswap_api.services.safety import SafetyViolationNormalizer

logger = logging.getLogger(__name__)


class SafeSearchClient:
    """
    Client for the Vision images:annotate endpoint.

    check() never raises for upstream problems: a failed check comes back
    as is_safe=False with `error` set, so callers fail closed.
    """

    def __init__(
        self,
        normalizer: Optional[SafetyViolationNormalizer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout_ms: Optional[int] = None
    ):
        self.normalizer = normalizer or SafetyViolationNormalizer(settings.SAFETY_STRICTNESS)
        self.http_client = http_client
        self.api_key = api_key if api_key is not None else settings.GOOGLE_VISION_API_KEY
        self.endpoint = endpoint or settings.GOOGLE_VISION_ENDPOINT
        self.timeout_ms = timeout_ms or settings.TIMEOUT_PROVIDER_MS

    @staticmethod
    def build_request(image_url: str) -> dict:
        return {
            "requests": [{
                "image": {"source": {"imageUri": image_url}},
                "features": [{"type": "SAFE_SEARCH_DETECTION", "maxResults": 1}],
            }]
        }

    async def _post(self, body: dict) -> httpx.Response:
        # Key goes in the query string; self.endpoint stays log-safe
        params = {"key": self.api_key}
        timeout = self.timeout_ms / 1000
        if self.http_client is not None:
            return await self.http_client.post(self.endpoint, params=params, json=body, timeout=timeout)
        async with httpx.AsyncClient() as client:
            return await client.post(self.endpoint, params=params, json=body, timeout=timeout)

    def _failed(self, message: str) -> SafetyVerdict:
        logger.error(f"[SafeSearch] Check failed: {message}")
        return SafetyVerdict(is_safe=False, source="safe_search", error=message)

    async def check(self, image_url: str) -> SafetyVerdict:
        """Run SafeSearch on a public image URL."""
        if not self.api_key:
            return self._failed("GOOGLE_VISION_API_KEY not set")

        start = time.time()
        try:
            response = await self._post(self.build_request(image_url))
        except httpx.HTTPError as e:
            return self._failed(f"{type(e).__name__}: {e}")

        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"[SafeSearch] {response.status_code} in {duration_ms}ms")

        if response.status_code < 200 or response.status_code >= 300:
            text = response.text
            if response.status_code == 403 and "billing" in text.lower():
                return self._failed("Billing not enabled for Google Vision API")
            return self._failed(f"API error: {response.status_code} - {text[:200]}")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return self._failed("Invalid JSON from Vision API")

        responses = data.get("responses") or [{}]
        if not isinstance(responses, list) or not isinstance(responses[0], dict):
            return self._failed("Unexpected Vision API response shape")

        first = responses[0]
        error = first.get("error")
        if error:
            message = error.get("message", "Vision API error") if isinstance(error, dict) else error
            return self._failed(str(message))

        annotation = first.get("safeSearchAnnotation")
        if not annotation:
            return self._failed("No safe search annotation")

        verdict = self.normalizer.from_safe_search(annotation)
        if not verdict.is_safe:
            logger.warning(f"[SafeSearch] Unsafe: {verdict.category} ({verdict.level}) -> {verdict.code}")
        return verdict


__all__ = ["SafeSearchClient"]
