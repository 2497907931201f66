"""
Provider Catalog
The closed set of upstream image providers, their request builders and
response parsers. Nothing here performs I/O; the orchestrator sends the
ProviderCall objects built here.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from faceswap_api.schemas.image import ImageRef
from faceswap_api.services.retry import NonRetryableError


class ProviderId(str, Enum):
    """Upstreams known at deploy time."""
    RAPIDAPI_FACESWAP = "rapidapi_faceswap"
    VERTEX_FACESWAP = "vertex_faceswap"
    VERTEX_MERGE = "vertex_merge"
    VERTEX_BACKGROUND = "vertex_background"
    WAVESPEED_UPSCALE = "wavespeed_upscale"


class AuthKind(str, Enum):
    RAPIDAPI_KEY = "rapidapi_key"
    SERVICE_ACCOUNT = "service_account"   # Signed JWT -> OAuth2 bearer token
    API_KEY_BEARER = "api_key_bearer"


class PayloadKind(str, Enum):
    MULTIPART_URLS = "multipart_urls"
    JSON_INLINE_IMAGES = "json_inline_images"
    JSON_IMAGE_URL = "json_image_url"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one upstream."""
    id: ProviderId
    name: str
    endpoint_setting: Optional[str]   # Settings field holding the URL; None for Vertex (built per model)
    auth: AuthKind
    payload: PayloadKind
    accepts_aspect_ratio: bool
    inline_safety: bool         # Response carries promptFeedback/candidates safety signals
    needs_source: bool
    needs_target: bool
    polls_result: bool = False
    safe_search_result: bool = False  # Run SafeSearch on the returned URL


VERTEX_ENDPOINT_TEMPLATE = (
    "https://{host}/v1/projects/{project}/locations/{location}"
    "/publishers/google/models/{model}:generateContent"
)

PROVIDERS: Dict[ProviderId, ProviderDescriptor] = {
    ProviderId.RAPIDAPI_FACESWAP: ProviderDescriptor(
        id=ProviderId.RAPIDAPI_FACESWAP,
        name="RapidAPI",
        endpoint_setting="RAPIDAPI_ENDPOINT",
        auth=AuthKind.RAPIDAPI_KEY,
        payload=PayloadKind.MULTIPART_URLS,
        accepts_aspect_ratio=False,
        inline_safety=False,
        needs_source=True,
        needs_target=True,
        safe_search_result=True,
    ),
    ProviderId.VERTEX_FACESWAP: ProviderDescriptor(
        id=ProviderId.VERTEX_FACESWAP,
        name="Vertex AI",
        endpoint_setting=None,
        auth=AuthKind.SERVICE_ACCOUNT,
        payload=PayloadKind.JSON_INLINE_IMAGES,
        accepts_aspect_ratio=True,
        inline_safety=True,
        needs_source=True,
        needs_target=False,
    ),
    ProviderId.VERTEX_MERGE: ProviderDescriptor(
        id=ProviderId.VERTEX_MERGE,
        name="Vertex AI",
        endpoint_setting=None,
        auth=AuthKind.SERVICE_ACCOUNT,
        payload=PayloadKind.JSON_INLINE_IMAGES,
        accepts_aspect_ratio=True,
        inline_safety=True,
        needs_source=True,
        needs_target=True,
    ),
    ProviderId.VERTEX_BACKGROUND: ProviderDescriptor(
        id=ProviderId.VERTEX_BACKGROUND,
        name="Vertex AI",
        endpoint_setting=None,
        auth=AuthKind.SERVICE_ACCOUNT,
        payload=PayloadKind.JSON_INLINE_IMAGES,
        accepts_aspect_ratio=True,
        inline_safety=True,
        needs_source=False,
        needs_target=False,
    ),
    ProviderId.WAVESPEED_UPSCALE: ProviderDescriptor(
        id=ProviderId.WAVESPEED_UPSCALE,
        name="WaveSpeed",
        endpoint_setting="WAVESPEED_UPSCALER_ENDPOINT",
        auth=AuthKind.API_KEY_BEARER,
        payload=PayloadKind.JSON_IMAGE_URL,
        accepts_aspect_ratio=False,
        inline_safety=False,
        needs_source=False,
        needs_target=True,
        polls_result=True,
    ),
}


def resolve_provider(name: Optional[str], default: str) -> ProviderDescriptor:
    """
    Map a provider name (or the deployment default) onto its descriptor.

    Raises:
        NonRetryableError: unknown provider name
    """
    value = (name or default or "").strip().lower()
    try:
        return PROVIDERS[ProviderId(value)]
    except ValueError:
        raise NonRetryableError(
            f"Unknown provider: {value or '<empty>'}",
            status_code=400,
            details={"supported": [p.value for p in ProviderId]}
        ) from None


# Vertex AI

VERTEX_MODELS = {
    "2.5": "gemini-2.5-flash-image",
    "3": "gemini-3-pro-image-preview",
}
DEFAULT_VERTEX_MODEL = "2.5"

# Preview models are only served from the global endpoint
GLOBAL_ONLY_MODELS = frozenset(["gemini-3-pro-image-preview"])

IMAGE_GENERATION_CONFIG = {
    "temperature": 1,
    "maxOutputTokens": 32768,
    "topP": 0.95,
    "responseModalities": ["TEXT", "IMAGE"],
    "imageConfig": {
        "imageSize": "1K",
        "personGeneration": "ALLOW_ALL",
    },
}

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]

PROMPT_GENERATION_CONFIG = {
    "temperature": 0.1,
    "maxOutputTokens": 2048,
    "topK": 1,
    "topP": 1,
    "responseMimeType": "application/json",
}

# Caller extra_params that may override the provider payload
VERTEX_GENERATION_PARAMS = frozenset(["temperature", "topP", "topK", "maxOutputTokens", "seed"])
VERTEX_IMAGE_PARAMS = frozenset(["imageSize", "personGeneration"])
WAVESPEED_PARAMS = frozenset(["target_resolution", "output_format"])


def split_extra_params(
    extra_params: Optional[Dict[str, Any]],
    allowed: frozenset
) -> Tuple[Dict[str, Any], List[str]]:
    """
    Returns:
        (accepted, ignored_keys); None values are dropped
    """
    accepted: Dict[str, Any] = {}
    ignored: List[str] = []
    for key, value in (extra_params or {}).items():
        if key in allowed and value is not None:
            accepted[key] = value
        else:
            ignored.append(key)
    return accepted, sorted(ignored)


def vertex_model_id(alias: Optional[Any] = None) -> str:
    """'2.5' / '3' (or a full model id) -> model id; unknown aliases use the default."""
    key = str(alias).strip() if alias is not None else ""
    if key in VERTEX_MODELS:
        return VERTEX_MODELS[key]
    if key in VERTEX_MODELS.values():
        return key
    return VERTEX_MODELS[DEFAULT_VERTEX_MODEL]


def vertex_location(model: str, configured: Optional[str]) -> str:
    if model in GLOBAL_ONLY_MODELS:
        return "global"
    return (configured or "us-central1").strip()


def vertex_endpoint(project: str, location: str, model: str) -> str:
    host = "aiplatform.googleapis.com" if location == "global" else f"{location}-aiplatform.googleapis.com"
    return VERTEX_ENDPOINT_TEMPLATE.format(host=host, project=project, location=location, model=model)


# Calls

@dataclass
class ProviderCall:
    """One fully-shaped upstream HTTP request."""
    provider: ProviderId
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Dict[str, Any]] = None
    files: Optional[Dict[str, Tuple[None, str]]] = None
    timeout_ms: int = 60000
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None

    def diagnostic_payload(self) -> Dict[str, Any]:
        """Request description that is safe to log or return to callers."""
        body: Any = self.json
        if self.files is not None:
            body = {name: value for name, (_, value) in self.files.items()}
        return sanitize_payload({
            "method": self.method,
            "url": self.url,
            "headers": self.headers,
            "body": body,
        })


def build_rapidapi_call(
    source: ImageRef,
    target: ImageRef,
    endpoint: str,
    host: str,
    api_key: str,
    timeout_ms: int
) -> ProviderCall:
    """
    Multipart form with the two image URLs.

    Raises:
        NonRetryableError: missing API key or an image given as raw bytes
    """
    if not api_key:
        raise NonRetryableError("RapidAPI key is not configured", status_code=500)
    if source.url is None or target.url is None:
        raise NonRetryableError("RapidAPI face swap requires image URLs", status_code=400)

    return ProviderCall(
        provider=ProviderId.RAPIDAPI_FACESWAP,
        method="POST",
        url=endpoint,
        headers={
            "accept": "application/json",
            "x-rapidapi-host": host,
            "x-rapidapi-key": api_key,
        },
        files={
            "target_url": (None, target.url),
            "source_url": (None, source.url),
        },
        timeout_ms=timeout_ms,
    )


def inline_image_part(data: bytes, mime_type: str) -> Dict[str, Any]:
    return {
        "inline_data": {
            "mime_type": mime_type,
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


def build_vertex_call(
    provider: ProviderId,
    images: List[Tuple[bytes, str]],
    prompt_text: str,
    aspect_ratio: str,
    model: str,
    project: str,
    location: str,
    access_token: str,
    timeout_ms: int,
    overrides: Optional[Dict[str, Any]] = None
) -> ProviderCall:
    """
    generateContent request with the images inlined before the prompt text.

    Args:
        provider: One of the Vertex providers
        images: (bytes, mime_type) pairs in the order the prompt refers to them
        prompt_text: Final instruction text
        aspect_ratio: Resolved catalog ratio
        model: Full model id
        overrides: generationConfig / imageConfig keys from the caller
    """
    if not project:
        raise NonRetryableError("GOOGLE_VERTEX_PROJECT_ID is not configured", status_code=500)

    parts = [inline_image_part(data, mime) for data, mime in images]
    parts.append({"text": prompt_text})

    overrides = overrides or {}
    generation_config = dict(IMAGE_GENERATION_CONFIG)
    generation_config.update({k: v for k, v in overrides.items() if k in VERTEX_GENERATION_PARAMS})
    image_config = dict(IMAGE_GENERATION_CONFIG["imageConfig"], aspectRatio=aspect_ratio)
    image_config.update({k: v for k, v in overrides.items() if k in VERTEX_IMAGE_PARAMS})
    generation_config["imageConfig"] = image_config

    return ProviderCall(
        provider=provider,
        method="POST",
        url=vertex_endpoint(project, location, model),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        json={
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        },
        timeout_ms=timeout_ms,
        model=model,
        aspect_ratio=aspect_ratio,
    )


def build_prompt_call(
    image: Tuple[bytes, str],
    instruction: str,
    response_schema: Dict[str, Any],
    model: str,
    project: str,
    location: str,
    access_token: str,
    timeout_ms: int
) -> ProviderCall:
    """Text-only generateContent request asking for a JSON scene description."""
    if not project:
        raise NonRetryableError("GOOGLE_VERTEX_PROJECT_ID is not configured", status_code=500)

    data, mime_type = image
    return ProviderCall(
        provider=ProviderId.VERTEX_FACESWAP,
        method="POST",
        url=vertex_endpoint(project, location, model),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        json={
            "contents": [{
                "role": "user",
                "parts": [{"text": instruction}, inline_image_part(data, mime_type)],
            }],
            "generationConfig": dict(PROMPT_GENERATION_CONFIG, responseSchema=response_schema),
            "safetySettings": SAFETY_SETTINGS,
        },
        timeout_ms=timeout_ms,
        model=model,
    )


def build_wavespeed_call(
    target: ImageRef,
    endpoint: str,
    api_key: str,
    timeout_ms: int,
    target_resolution: str = "4k",
    output_format: str = "jpeg"
) -> ProviderCall:
    """
    Async upscale submission; the result is polled separately.

    Raises:
        NonRetryableError: missing API key or no image URL
    """
    if not api_key:
        raise NonRetryableError("WaveSpeed API key is not configured", status_code=500)
    if target.url is None:
        raise NonRetryableError("WaveSpeed upscaler requires an image URL", status_code=400)

    return ProviderCall(
        provider=ProviderId.WAVESPEED_UPSCALE,
        method="POST",
        url=endpoint,
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        json={
            "enable_base64_output": False,
            "enable_sync_mode": False,
            "image": target.url,
            "output_format": output_format,
            "target_resolution": target_resolution,
        },
        timeout_ms=timeout_ms,
    )


def build_wavespeed_poll_call(request_id: str, result_endpoint: str, api_key: str, timeout_ms: int) -> ProviderCall:
    return ProviderCall(
        provider=ProviderId.WAVESPEED_UPSCALE,
        method="GET",
        url=result_endpoint.format(request_id=request_id),
        headers={"Authorization": f"Bearer {api_key}"},
        timeout_ms=timeout_ms,
    )


# Response parsing

def parse_rapidapi_response(body: Dict[str, Any]) -> Tuple[Optional[str], str]:
    """
    Returns:
        (result_url, message); result_url is None when the swap failed
    """
    if not isinstance(body, dict):
        return None, "Invalid response from face swap provider"
    message = str(body.get("message") or "")
    result_url = body.get("file_url") or body.get("result_url") or body.get("url")
    if not result_url:
        return None, message or "Face swap provider returned no result URL"
    return str(result_url), message or "Processing successful"


def extract_inline_image(body: Dict[str, Any]) -> Optional[Tuple[bytes, str]]:
    """First inline image of the first candidate as (bytes, mime_type)."""
    candidates = body.get("candidates") or [] if isinstance(body, dict) else []
    if not candidates:
        return None
    content = candidates[0].get("content") or {}
    for part in content.get("parts") or []:
        inline = part.get("inlineData") or part.get("inline_data")
        if not inline or not inline.get("data"):
            continue
        try:
            data = base64.b64decode(inline["data"])
        except ValueError:
            return None
        mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
        return data, mime_type
    return None


def extract_candidate_text(body: Dict[str, Any]) -> str:
    candidates = body.get("candidates") or [] if isinstance(body, dict) else []
    if not candidates:
        return ""
    content = candidates[0].get("content") or {}
    return "".join(str(part.get("text", "")) for part in content.get("parts") or [])


def extract_upstream_error_message(body: Any) -> Optional[str]:
    """`error.message` or `message` of an upstream error body."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if body.get("message"):
        return str(body["message"])
    return None


WAVESPEED_DONE = frozenset(["completed", "succeeded", "success"])
WAVESPEED_FAILED = frozenset(["failed", "error"])


def extract_wavespeed_request_id(body: Dict[str, Any]) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    request_id = body.get("id") or body.get("requestId") or body.get("request_id") or data.get("id")
    return str(request_id) if request_id else None


def wavespeed_status(body: Dict[str, Any]) -> str:
    if not isinstance(body, dict):
        return ""
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    return str(body.get("status") or data.get("status") or "").lower()


def _url_of(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and isinstance(value.get("url"), str):
        return value["url"]
    return None


def extract_wavespeed_result_url(body: Dict[str, Any]) -> Optional[str]:
    """Result URL from any of the shapes WaveSpeed has returned."""
    if not isinstance(body, dict):
        return None
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    for value in (body.get("output"), data.get("output"), body.get("url"), data.get("url")):
        url = _url_of(value)
        if url:
            return url
    for outputs in (body.get("outputs"), data.get("outputs")):
        if isinstance(outputs, list) and outputs:
            url = _url_of(outputs[0])
            if url:
                return url
    return None


# Diagnostics

SENSITIVE_KEY_SUFFIXES = (
    "key",
    "keys",
    "token",
    "password",
    "secret",
    "authorization",
    "credential",
    "credentials",
    "assertion",
    "bearer",
)
MAX_INLINE_DATA_CHARS = 100
REDACTED = "[REDACTED]"


def is_sensitive_key(key: str) -> bool:
    normalized = str(key).lower().replace("-", "").replace("_", "")
    return normalized.endswith(SENSITIVE_KEY_SUFFIXES)


def sanitize_payload(value: Any) -> Any:
    """
    Deep copy of a payload with secrets redacted and inline image data elided.
    """
    if isinstance(value, dict):
        clean = {}
        for key, item in value.items():
            if is_sensitive_key(key):
                clean[key] = REDACTED
            elif key == "data" and isinstance(item, str) and len(item) > MAX_INLINE_DATA_CHARS:
                clean[key] = "..."
            else:
                clean[key] = sanitize_payload(item)
        return clean
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return value


__all__ = [
    "ProviderId",
    "AuthKind",
    "PayloadKind",
    "ProviderDescriptor",
    "PROVIDERS",
    "resolve_provider",
    "vertex_model_id",
    "vertex_location",
    "vertex_endpoint",
    "split_extra_params",
    "ProviderCall",
    "build_rapidapi_call",
    "build_vertex_call",
    "build_prompt_call",
    "build_wavespeed_call",
    "build_wavespeed_poll_call",
    "parse_rapidapi_response",
    "extract_inline_image",
    "extract_candidate_text",
    "extract_upstream_error_message",
    "extract_wavespeed_request_id",
    "extract_wavespeed_result_url",
    "wavespeed_status",
    "sanitize_payload",
]
