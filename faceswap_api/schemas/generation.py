"""
Generation Schemas
Pydantic models for generation requests, safety verdicts and unified results.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field

from faceswap_api.schemas.image import ImageRef


class GenerationRequest(BaseModel):
    """Schema for one generation call; built by the route handler."""
    source_image: Optional[ImageRef] = None   # Selfie / face to use
    target_image: Optional[ImageRef] = None   # Preset / scene / image to upscale
    provider: Optional[str] = None            # Falls back to DEFAULT_PROVIDER
    aspect_ratio_hint: Optional[str] = None   # "W:H", "original" or absent
    prompt: Union[str, Dict[str, Any], None] = None
    additional_prompt: Optional[str] = None
    character_gender: Optional[str] = None    # "male" | "female"
    model: Optional[str] = None               # Vertex model alias ("2.5", "3")
    fast_mode: bool = False
    extra_params: Dict[str, Any] = {}

    model_config = {"frozen": True, "protected_namespaces": ()}


class SafetyVerdict(BaseModel):
    """Unified safety classification from either upstream vocabulary."""
    is_safe: bool
    code: Optional[int] = None
    category: Optional[str] = None
    level: Optional[str] = None
    reason: Optional[str] = None
    source: Optional[str] = None    # "safe_search" | "generative"
    error: Optional[str] = None     # Set when the check itself could not run


class CachedToken(BaseModel):
    """Bearer token as stored in the token cache."""
    token: str
    expires_at: int


class RetryDecision(BaseModel):
    """Whether to try again and how long to wait first."""
    should_retry: bool
    delay_ms: int = 0


class AttemptRecord(BaseModel):
    """Diagnostics for one INVOKE attempt."""
    attempt: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None
    duration_ms: int = 0
    delay_ms: int = 0


class ProviderDiagnostics(BaseModel):
    """Log-safe information about how the provider was called."""
    provider: Optional[str] = None
    endpoint: Optional[str] = None
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    attempt_history: List[AttemptRecord] = []
    duration_ms: int = 0
    state: str = "SELECT_PROVIDER"
    extra: Dict[str, Any] = {}


class ErrorInfo(BaseModel):
    """Classified reason for a failed generation."""
    code: int
    message: str


class GenerationResult(BaseModel):
    """Unified success/failure result returned to route handlers."""
    success: bool
    result_ref: Optional[ImageRef] = None
    safety: Optional[SafetyVerdict] = None
    provider_diagnostics: ProviderDiagnostics = Field(default_factory=ProviderDiagnostics)
    error: Optional[ErrorInfo] = None
    message: str = ""


class PromptResult(BaseModel):
    """Structured scene description produced by the prompt-generation model."""
    success: bool
    prompt: Optional[Dict[str, Any]] = None
    error: Optional[ErrorInfo] = None
    provider_diagnostics: ProviderDiagnostics = Field(default_factory=ProviderDiagnostics)
