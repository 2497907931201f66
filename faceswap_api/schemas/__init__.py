# Schemas package - Pydantic models for requests/responses
from faceswap_api.schemas.image import ImageRef, ImageMetrics, AspectRatioCatalog
from faceswap_api.schemas.api import GenerateRequestBody, PromptRequestBody, ApiEnvelope
from faceswap_api.schemas.generation import (
    GenerationRequest,
    SafetyVerdict,
    CachedToken,
    RetryDecision,
    AttemptRecord,
    ProviderDiagnostics,
    ErrorInfo,
    GenerationResult,
    PromptResult,
)

__all__ = [
    "ImageRef",
    "ImageMetrics",
    "AspectRatioCatalog",
    "GenerationRequest",
    "SafetyVerdict",
    "CachedToken",
    "RetryDecision",
    "AttemptRecord",
    "ProviderDiagnostics",
    "ErrorInfo",
    "GenerationResult",
    "PromptResult",
    "GenerateRequestBody",
    "PromptRequestBody",
    "ApiEnvelope",
]
