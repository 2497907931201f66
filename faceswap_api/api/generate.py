"""
Generation API Routes
Thin adapter from HTTP requests to the provider orchestrator.
"""

import base64
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from faceswap_api.api.deps import get_orchestrator
from faceswap_api.core.config import settings
from faceswap_api.schemas.api import ApiEnvelope, GenerateRequestBody, PromptRequestBody
from faceswap_api.schemas.generation import GenerationResult, PromptResult, ProviderDiagnostics
from faceswap_api.schemas.image import ImageRef
from faceswap_api.services.orchestrator import ProviderOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_status(code: Optional[int]) -> int:
    """Safety codes (1001+) are not HTTP statuses; they map to 422."""
    if code is None:
        return 500
    if 400 <= code < 600:
        return code
    return 422


def _debug(diagnostics: ProviderDiagnostics) -> Optional[Dict[str, Any]]:
    if not settings.ENABLE_DEBUG_RESPONSE:
        return None
    return diagnostics.model_dump()


def _respond(envelope: ApiEnvelope, http_status: int) -> JSONResponse:
    return JSONResponse(status_code=http_status, content=envelope.model_dump(exclude_none=True))


def _result_data(result: GenerationResult) -> Dict[str, Any]:
    ref: ImageRef = result.result_ref
    data: Dict[str, Any] = {
        "provider": result.provider_diagnostics.provider,
        "aspect_ratio": result.provider_diagnostics.aspect_ratio,
    }
    if ref.url is not None:
        data["result_url"] = ref.url
    else:
        data["mime_type"] = ref.mime_type
        data["result_base64"] = base64.b64encode(ref.data).decode("ascii")
    return data


def generation_response(result: GenerationResult) -> JSONResponse:
    """Translate a GenerationResult into the API envelope."""
    debug = _debug(result.provider_diagnostics)

    if result.success and result.safety is not None and not result.safety.is_safe:
        return _respond(ApiEnvelope(
            status="error",
            message=result.safety.reason or "Content blocked",
            code=422,
            debug=debug,
        ), 422)

    if result.success:
        return _respond(ApiEnvelope(
            data=_result_data(result),
            status="success",
            message=result.message or "Processing successful",
            code=200,
            debug=debug,
        ), 200)

    code = result.error.code if result.error else 500
    return _respond(ApiEnvelope(
        status="error",
        message=result.error.message if result.error else "Processing failed",
        code=code,
        debug=debug,
    ), _http_status(code))


def prompt_response(result: PromptResult) -> JSONResponse:
    debug = _debug(result.provider_diagnostics)
    if result.success:
        return _respond(ApiEnvelope(
            data={"prompt": result.prompt},
            status="success",
            message="Prompt generated",
            code=200,
            debug=debug,
        ), 200)

    code = result.error.code if result.error else 500
    return _respond(ApiEnvelope(
        status="error",
        message=result.error.message if result.error else "Prompt generation failed",
        code=code,
        debug=debug,
    ), _http_status(code))


@router.post("/generate")
async def generate_image(
    body: GenerateRequestBody,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator),
):
    """
    Run a face swap, merge, background or upscale request synchronously.
    """
    logger.info(f"Generate request: provider={body.provider or settings.DEFAULT_PROVIDER}")
    result = await orchestrator.generate(body.to_generation_request())
    return generation_response(result)


@router.post("/prompt")
async def generate_prompt(
    body: PromptRequestBody,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator),
):
    """Describe a preset image as a reusable JSON prompt."""
    result = await orchestrator.generate_prompt(
        ImageRef(url=body.image_url),
        fast=body.fast,
        custom_instruction=body.instruction,
        filter_style=body.filter_style,
    )
    return prompt_response(result)
