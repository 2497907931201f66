"""
API Schemas
Request bodies and the response envelope of the HTTP adapter.
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel

from faceswap_api.schemas.generation import GenerationRequest
from faceswap_api.schemas.image import ImageRef


class GenerateRequestBody(BaseModel):
    """Schema for POST /generate."""
    target_url: Optional[str] = None    # Preset / scene / image to upscale
    source_url: Optional[str] = None    # Selfie
    provider: Optional[str] = None
    aspect_ratio: Optional[str] = None  # "W:H" or "original"
    prompt: Union[str, Dict[str, Any], None] = None
    additional_prompt: Optional[str] = None
    character_gender: Optional[str] = None
    model: Optional[str] = None
    fast: bool = False
    extra_params: Dict[str, Any] = {}

    model_config = {"protected_namespaces": ()}

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            source_image=ImageRef(url=self.source_url) if self.source_url else None,
            target_image=ImageRef(url=self.target_url) if self.target_url else None,
            provider=self.provider,
            aspect_ratio_hint=self.aspect_ratio,
            prompt=self.prompt,
            additional_prompt=self.additional_prompt,
            character_gender=self.character_gender,
            model=self.model,
            fast_mode=self.fast,
            extra_params=self.extra_params,
        )


class PromptRequestBody(BaseModel):
    """Schema for POST /prompt."""
    image_url: str
    fast: bool = False
    filter_style: bool = False
    instruction: Optional[str] = None


class ApiEnvelope(BaseModel):
    """Response envelope shared by every endpoint."""
    data: Optional[Dict[str, Any]] = None
    status: str
    message: str
    code: int
    debug: Optional[Dict[str, Any]] = None
