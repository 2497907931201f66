"""
Provider Orchestrator
Runs one generation request through the provider state machine:

    SELECT_PROVIDER -> BUILD_REQUEST -> ACQUIRE_CREDENTIAL? -> INVOKE
        -> (RETRY_WAIT -> INVOKE)* -> NORMALIZE_SAFETY -> DONE | FAILED

generate() always returns a GenerationResult; upstream, credential and
fetch failures become success=False results with diagnostics attached.
"""

import asyncio
import json
import logging
import random
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from faceswap_api.core.config import Settings, settings as default_settings
from faceswap_api.core.redis import get_token_cache
from faceswap_api.schemas.generation import (
    AttemptRecord,
    ErrorInfo,
    GenerationRequest,
    GenerationResult,
    PromptResult,
    ProviderDiagnostics,
    SafetyVerdict,
)
from faceswap_api.schemas.image import AspectRatioCatalog, ImageRef
from faceswap_api.services.aspect_ratio import AspectRatioResolver
from faceswap_api.services.credentials import CredentialBroker
from faceswap_api.services.fetcher import ImageFetcher
from faceswap_api.services.image_inspector import guess_mime_type
from faceswap_api.services.prompt_generation import (
    PROMPT_GENERATION_DEFAULT,
    PROMPT_GENERATION_FILTER,
    PROMPT_RESPONSE_SCHEMA,
    augment_prompt,
    build_background_prompt,
    build_faceswap_prompt,
    build_merge_prompt,
    parse_prompt_json,
)
from faceswap_api.services.providers import (
    AuthKind,
    PayloadKind,
    ProviderCall,
    ProviderDescriptor,
    ProviderId,
    VERTEX_GENERATION_PARAMS,
    VERTEX_IMAGE_PARAMS,
    WAVESPEED_PARAMS,
    build_prompt_call,
    build_rapidapi_call,
    build_vertex_call,
    build_wavespeed_call,
    build_wavespeed_poll_call,
    extract_candidate_text,
    extract_inline_image,
    extract_upstream_error_message,
    extract_wavespeed_request_id,
    extract_wavespeed_result_url,
    parse_rapidapi_response,
    resolve_provider,
    sanitize_payload,
    split_extra_params,
    vertex_location,
    vertex_model_id,
    wavespeed_status,
    WAVESPEED_DONE,
    WAVESPEED_FAILED,
)
from faceswap_api.services.retry import (
    NonRetryableError,
    ProviderError,
    RetryableError,
    RetryPolicy,
    UpstreamHTTPError,
)
from faceswap_api.services.safety import SafetyViolationNormalizer
from faceswap_api.services.vision import SafeSearchClient

logger = logging.getLogger(__name__)

# State names reported in diagnostics
SELECT_PROVIDER = "SELECT_PROVIDER"
BUILD_REQUEST = "BUILD_REQUEST"
ACQUIRE_CREDENTIAL = "ACQUIRE_CREDENTIAL"
INVOKE = "INVOKE"
RETRY_WAIT = "RETRY_WAIT"
NORMALIZE_SAFETY = "NORMALIZE_SAFETY"
DONE = "DONE"
FAILED = "FAILED"

# WaveSpeed result polling (milliseconds)
WAVESPEED_FIRST_POLL_DELAY_MS = 8000
WAVESPEED_EARLY_POLL_DELAY_MS = 4000
WAVESPEED_POLL_DELAY_MS = 2000


def wavespeed_poll_delay(poll_index: int) -> int:
    """8s before the first poll, 4s before the next two, then 2s."""
    if poll_index == 0:
        return WAVESPEED_FIRST_POLL_DELAY_MS
    if poll_index < 3:
        return WAVESPEED_EARLY_POLL_DELAY_MS
    return WAVESPEED_POLL_DELAY_MS


def mock_result_url() -> str:
    return f"mock://results/{uuid.uuid4().hex}.jpg"


class ProviderOrchestrator:
    """Top-level coordinator for one generation call chain."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        fetcher: Optional[ImageFetcher] = None,
        credential_broker: Optional[CredentialBroker] = None,
        normalizer: Optional[SafetyViolationNormalizer] = None,
        safe_search: Optional[SafeSearchClient] = None,
        resolver: Optional[AspectRatioResolver] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        max_attempts: Optional[int] = None,
        uniform: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], float] = time.monotonic
    ):
        self.settings = settings or default_settings
        self.http_client = http_client
        self.fetcher = fetcher or ImageFetcher(
            http_client,
            timeout_ms=self.settings.TIMEOUT_IMAGE_FETCH_MS,
            header_range_bytes=self.settings.IMAGE_HEADER_RANGE_BYTES,
        )
        self.credential_broker = credential_broker or CredentialBroker(
            get_token_cache(),
            http_client,
            token_endpoint=self.settings.OAUTH_TOKEN_ENDPOINT,
            scope=self.settings.OAUTH_SCOPE,
            timeout_ms=self.settings.TIMEOUT_OAUTH_MS,
        )
        self.normalizer = normalizer or SafetyViolationNormalizer(self.settings.SAFETY_STRICTNESS)
        self.safe_search = safe_search or SafeSearchClient(
            self.normalizer,
            http_client,
            api_key=self.settings.GOOGLE_VISION_API_KEY,
            endpoint=self.settings.GOOGLE_VISION_ENDPOINT,
            timeout_ms=self.settings.TIMEOUT_PROVIDER_MS,
        )
        self.resolver = resolver or AspectRatioResolver(self.fetcher)
        self.max_attempts = max_attempts or self.settings.PROVIDER_MAX_ATTEMPTS
        self._sleep = sleep
        self._uniform = uniform
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    def _policy(self, fast: bool, max_attempts: Optional[int] = None) -> RetryPolicy:
        return RetryPolicy.for_mode(
            fast,
            max_attempts=max_attempts or self.max_attempts,
            config=self.settings,
            uniform=self._uniform,
        )

    def catalog(self) -> AspectRatioCatalog:
        return AspectRatioCatalog(
            ratios=list(self.settings.ASPECT_RATIOS),
            default=self.settings.DEFAULT_ASPECT_RATIO,
        )

    async def _send(self, call: ProviderCall) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": call.headers, "timeout": call.timeout_ms / 1000}
        if call.json is not None:
            kwargs["json"] = call.json
        if call.files is not None:
            kwargs["files"] = call.files
        if self.http_client is not None:
            return await self.http_client.request(call.method, call.url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(call.method, call.url, **kwargs)

    @staticmethod
    def _parse_body(name: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise NonRetryableError(f"Failed to parse {name} response", status_code=502) from None
        if not isinstance(body, dict):
            raise NonRetryableError(f"Unexpected {name} response shape", status_code=502)
        return body

    async def _invoke(
        self,
        label: str,
        name: str,
        call: ProviderCall,
        diagnostics: ProviderDiagnostics,
        policy: RetryPolicy,
        validate: Optional[Callable[[Dict[str, Any]], Any]] = None
    ) -> Any:
        """
        INVOKE / RETRY_WAIT loop.

        Every attempt is recorded in diagnostics.attempt_history. `validate`
        runs inside the loop so a RetryableError from it costs an attempt.
        Raises the last error once the policy gives up.
        """
        diagnostics.endpoint = call.url
        diagnostics.extra["request"] = call.diagnostic_payload()

        attempt = 0
        while True:
            diagnostics.state = INVOKE
            started = self._clock()
            record = AttemptRecord(attempt=attempt + 1)
            try:
                response = await self._send(call)
                record.status_code = response.status_code
                diagnostics.status_code = response.status_code
                if response.status_code < 200 or response.status_code >= 300:
                    raise UpstreamHTTPError(name, response.status_code, response.text)
                body = self._parse_body(name, response)
                result = validate(body) if validate is not None else body
            except (ProviderError, httpx.HTTPError) as e:
                record.error = str(e) or type(e).__name__
                record.duration_ms = self._elapsed_ms(started)
                record.retryable = policy.classify(e)
                decision = policy.decide(e, attempt)
                record.delay_ms = decision.delay_ms
                diagnostics.attempt_history.append(record)
                diagnostics.attempts = len(diagnostics.attempt_history)

                if not decision.should_retry:
                    logger.error(
                        f"[Orchestrator] {label} failed after "
                        f"{attempt + 1} attempt(s): {record.error}"
                    )
                    raise

                diagnostics.state = RETRY_WAIT
                logger.warning(
                    f"[Retry {attempt + 1}/{policy.max_attempts}] {label}: "
                    f"{record.error}. Retrying in {decision.delay_ms}ms..."
                )
                await self._sleep(decision.delay_ms / 1000)
                attempt += 1
                continue

            record.duration_ms = self._elapsed_ms(started)
            diagnostics.attempt_history.append(record)
            diagnostics.attempts = len(diagnostics.attempt_history)
            return result

    def _done(
        self,
        diagnostics: ProviderDiagnostics,
        result_ref: ImageRef,
        safety: Optional[SafetyVerdict] = None,
        message: str = "Processing successful"
    ) -> GenerationResult:
        diagnostics.state = DONE
        return GenerationResult(
            success=True,
            result_ref=result_ref,
            safety=safety,
            provider_diagnostics=diagnostics,
            message=message,
        )

    def _blocked(self, diagnostics: ProviderDiagnostics, verdict: SafetyVerdict) -> GenerationResult:
        diagnostics.state = FAILED
        return GenerationResult(
            success=False,
            safety=verdict,
            provider_diagnostics=diagnostics,
            error=ErrorInfo(code=verdict.code, message=verdict.reason or "Content blocked"),
            message=verdict.reason or "Content blocked",
        )

    @staticmethod
    def error_info(error: BaseException) -> ErrorInfo:
        """Classified, log-safe error for a failed call."""
        code = getattr(error, "status_code", None) or 500
        if isinstance(error, UpstreamHTTPError):
            message = extract_upstream_error_message(_json_or_none(error.body)) or str(error)
        elif isinstance(error, httpx.TimeoutException):
            code = 504
            message = "Upstream request timed out"
        elif isinstance(error, httpx.HTTPError):
            code = 502
            message = f"Upstream request failed: {type(error).__name__}"
        else:
            message = str(error) or "Processing failed"
        return ErrorInfo(code=code, message=message)

    def _failed(self, diagnostics: ProviderDiagnostics, error: BaseException) -> GenerationResult:
        diagnostics.state = FAILED
        info = self.error_info(error)
        if isinstance(error, ProviderError) and error.details:
            diagnostics.extra["error_details"] = sanitize_payload(error.details)
        return GenerationResult(
            success=False,
            provider_diagnostics=diagnostics,
            error=info,
            message=info.message,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Run one generation request to a terminal state.

        Only cancellation propagates; every other failure is returned as a
        success=False result.
        """
        diagnostics = ProviderDiagnostics(state=SELECT_PROVIDER)
        start = self._clock()
        try:
            descriptor = resolve_provider(request.provider, self.settings.DEFAULT_PROVIDER)
            diagnostics.provider = descriptor.id.value
            self._check_inputs(descriptor, request)

            if descriptor.payload == PayloadKind.MULTIPART_URLS:
                result = await self._run_rapidapi(descriptor, request, diagnostics)
            elif descriptor.payload == PayloadKind.JSON_INLINE_IMAGES:
                result = await self._run_vertex(descriptor, request, diagnostics)
            elif descriptor.payload == PayloadKind.JSON_IMAGE_URL:
                result = await self._run_wavespeed(descriptor, request, diagnostics)
            else:
                raise NonRetryableError(f"Provider {descriptor.id.value} is not wired", status_code=500)
        except (ProviderError, httpx.HTTPError) as e:
            result = self._failed(diagnostics, e)
        except Exception as e:
            logger.exception(f"[Orchestrator] Unexpected error in {diagnostics.state}: {e}")
            result = self._failed(diagnostics, e)

        result.provider_diagnostics.duration_ms = self._elapsed_ms(start)
        logger.info(
            f"[Orchestrator] {diagnostics.provider or request.provider} -> {diagnostics.state} "
            f"({diagnostics.attempts} attempt(s), {result.provider_diagnostics.duration_ms}ms)"
        )
        return result

    async def generate_prompt(
        self,
        image: ImageRef,
        fast: bool = False,
        custom_instruction: Optional[str] = None,
        filter_style: bool = False
    ) -> PromptResult:
        """
        Describe an image as a {prompt, style, lighting, composition, camera,
        background} object. Unparseable model output is retried up to
        PROMPT_MAX_ATTEMPTS times.
        """
        model = self.settings.VERTEX_PROMPT_MODEL
        diagnostics = ProviderDiagnostics(provider="vertex_prompt", model=model, state=BUILD_REQUEST)
        start = self._clock()
        policy = self._policy(fast, max_attempts=self.settings.PROMPT_MAX_ATTEMPTS)

        def read_prompt(body: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], SafetyVerdict]:
            verdict = self.normalizer.from_generation_response(body, expect_image=False)
            if not verdict.is_safe:
                return None, verdict
            prompt, error = parse_prompt_json(extract_candidate_text(body))
            if prompt is None:
                raise RetryableError(error)
            return prompt, verdict

        try:
            diagnostics.state = ACQUIRE_CREDENTIAL
            token = await self.credential_broker.get_access_token(
                self.settings.GOOGLE_SERVICE_ACCOUNT_EMAIL,
                self.settings.GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY,
            )
            diagnostics.state = BUILD_REQUEST
            data = await self.fetcher.fetch(image)
            instruction = custom_instruction or (PROMPT_GENERATION_FILTER if filter_style else PROMPT_GENERATION_DEFAULT)
            call = build_prompt_call(
                (data, image.mime_type or guess_mime_type(data)),
                instruction,
                PROMPT_RESPONSE_SCHEMA,
                model,
                self.settings.GOOGLE_VERTEX_PROJECT_ID,
                vertex_location(model, self.settings.GOOGLE_VERTEX_LOCATION),
                token,
                self.settings.TIMEOUT_PROVIDER_MS,
            )
            prompt, verdict = await self._invoke(
                "vertex_prompt", "Vertex AI", call, diagnostics, policy, validate=read_prompt
            )
        except (ProviderError, httpx.HTTPError) as e:
            diagnostics.state = FAILED
            diagnostics.duration_ms = self._elapsed_ms(start)
            return PromptResult(success=False, error=self.error_info(e), provider_diagnostics=diagnostics)
        except Exception as e:
            logger.exception(f"[Orchestrator] Unexpected error generating prompt: {e}")
            diagnostics.state = FAILED
            diagnostics.duration_ms = self._elapsed_ms(start)
            return PromptResult(success=False, error=self.error_info(e), provider_diagnostics=diagnostics)

        diagnostics.duration_ms = self._elapsed_ms(start)
        if prompt is None:
            diagnostics.state = FAILED
            return PromptResult(
                success=False,
                error=ErrorInfo(code=verdict.code, message=verdict.reason or "Content blocked"),
                provider_diagnostics=diagnostics,
            )

        diagnostics.state = DONE
        logger.info(f"[Orchestrator] Prompt generated in {diagnostics.attempts} attempt(s)")
        return PromptResult(success=True, prompt=prompt, provider_diagnostics=diagnostics)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_inputs(descriptor: ProviderDescriptor, request: GenerationRequest) -> None:
        if descriptor.needs_source and request.source_image is None:
            raise NonRetryableError(f"{descriptor.id.value} requires a source image", status_code=400)
        if descriptor.needs_target and request.target_image is None:
            raise NonRetryableError(f"{descriptor.id.value} requires a target image", status_code=400)

    async def _acquire_credential(self, descriptor: ProviderDescriptor, diagnostics: ProviderDiagnostics) -> str:
        """Bearer token for service-account providers, the configured API key otherwise."""
        if descriptor.auth == AuthKind.SERVICE_ACCOUNT:
            diagnostics.state = ACQUIRE_CREDENTIAL
            return await self.credential_broker.get_access_token(
                self.settings.GOOGLE_SERVICE_ACCOUNT_EMAIL,
                self.settings.GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY,
            )
        if descriptor.auth == AuthKind.RAPIDAPI_KEY:
            return self.settings.RAPIDAPI_KEY
        if descriptor.auth == AuthKind.API_KEY_BEARER:
            return self.settings.WAVESPEED_API_KEY
        raise NonRetryableError(f"No credential source for {descriptor.id.value}", status_code=500)

    @staticmethod
    def _extra_params(
        request: GenerationRequest,
        diagnostics: ProviderDiagnostics,
        allowed: frozenset
    ) -> Dict[str, Any]:
        accepted, ignored = split_extra_params(request.extra_params, allowed)
        if accepted:
            diagnostics.extra["params"] = accepted
        if ignored:
            diagnostics.extra["ignored_params"] = ignored
            logger.warning(f"[Orchestrator] Ignoring unsupported extra_params for {diagnostics.provider}: {ignored}")
        return accepted

    async def _finish_url_result(
        self,
        descriptor: ProviderDescriptor,
        diagnostics: ProviderDiagnostics,
        result_url: str,
        message: str = "Processing successful"
    ) -> GenerationResult:
        if descriptor.safe_search_result:
            return await self._check_result_safety(diagnostics, result_url, message)
        return self._done(diagnostics, ImageRef(url=result_url), message=message)

    async def _check_result_safety(
        self,
        diagnostics: ProviderDiagnostics,
        result_url: str,
        message: str
    ) -> GenerationResult:
        """NORMALIZE_SAFETY for providers without inline safety signals."""
        diagnostics.state = NORMALIZE_SAFETY
        result_ref = ImageRef(url=result_url)

        if self.settings.DISABLE_SAFE_SEARCH:
            return self._done(diagnostics, result_ref, message=message)

        verdict = await self.safe_search.check(result_url)
        if verdict.error:
            diagnostics.state = FAILED
            text = f"Safe search validation failed: {verdict.error}"
            return GenerationResult(
                success=False,
                safety=verdict,
                provider_diagnostics=diagnostics,
                error=ErrorInfo(code=500, message=text),
                message=text,
            )

        # An unsafe image is still a produced image; callers decide what to do with it
        return self._done(diagnostics, result_ref, safety=verdict, message=verdict.reason or message)

    async def _run_rapidapi(
        self,
        descriptor: ProviderDescriptor,
        request: GenerationRequest,
        diagnostics: ProviderDiagnostics
    ) -> GenerationResult:
        api_key = await self._acquire_credential(descriptor, diagnostics)
        diagnostics.state = BUILD_REQUEST
        call = build_rapidapi_call(
            request.source_image,
            request.target_image,
            getattr(self.settings, descriptor.endpoint_setting),
            self.settings.RAPIDAPI_HOST,
            api_key,
            self.settings.TIMEOUT_PROVIDER_MS,
        )

        body = await self._invoke(descriptor.id.value, descriptor.name, call, diagnostics, self._policy(request.fast_mode))
        diagnostics.extra["response"] = sanitize_payload(body)
        if body.get("processing_time") is not None:
            diagnostics.extra["processing_time"] = body["processing_time"]

        result_url, message = parse_rapidapi_response(body)
        if result_url is None:
            raise NonRetryableError(message, status_code=502)

        return await self._finish_url_result(descriptor, diagnostics, result_url, message)

    async def _vertex_images(self, descriptor: ProviderDescriptor, request: GenerationRequest) -> List[Tuple[bytes, str]]:
        if descriptor.id == ProviderId.VERTEX_FACESWAP:
            refs = [request.source_image]
        elif descriptor.id == ProviderId.VERTEX_MERGE:
            # [Image 1] subject, [Image 2] scene
            refs = [request.source_image, request.target_image]
        else:
            refs = []

        tasks = [asyncio.ensure_future(self.fetcher.fetch(ref)) for ref in refs]
        try:
            datas = await asyncio.gather(*tasks)
        except BaseException:
            # gather() leaves siblings running when one fetch fails
            for task in tasks:
                task.cancel()
            raise
        return [(data, ref.mime_type or guess_mime_type(data)) for ref, data in zip(refs, datas)]

    def _vertex_prompt(self, descriptor: ProviderDescriptor, request: GenerationRequest) -> str:
        prompt = augment_prompt(request.prompt, request.additional_prompt, request.character_gender)
        if descriptor.id == ProviderId.VERTEX_FACESWAP:
            return build_faceswap_prompt(prompt)
        if descriptor.id == ProviderId.VERTEX_MERGE:
            return build_merge_prompt(prompt)
        if not prompt:
            raise NonRetryableError("vertex_background requires a prompt", status_code=400)
        return build_background_prompt(prompt)

    def _safety_from_error_body(self, body: str) -> Optional[SafetyVerdict]:
        """Vertex sometimes reports blocks on a 4xx with a normal response envelope."""
        parsed = _json_or_none(body)
        if not isinstance(parsed, dict):
            return None
        if not any(key in parsed for key in ("candidates", "promptFeedback", "prompt_feedback")):
            return None
        verdict = self.normalizer.from_generation_response(parsed, expect_image=False)
        return None if verdict.is_safe else verdict

    async def _run_vertex(
        self,
        descriptor: ProviderDescriptor,
        request: GenerationRequest,
        diagnostics: ProviderDiagnostics
    ) -> GenerationResult:
        diagnostics.state = BUILD_REQUEST
        model = vertex_model_id(request.model or self.settings.VERTEX_DEFAULT_MODEL)
        location = vertex_location(model, self.settings.GOOGLE_VERTEX_LOCATION)
        prompt_text = self._vertex_prompt(descriptor, request)

        aspect_ratio = self.catalog().default
        if descriptor.accepts_aspect_ratio:
            reference = request.target_image or request.source_image
            aspect_ratio = await self.resolver.resolve(request.aspect_ratio_hint, reference, self.catalog())
        diagnostics.model = model
        diagnostics.aspect_ratio = aspect_ratio

        if self.settings.DISABLE_VERTEX_IMAGE_GEN:
            diagnostics.extra["disabled"] = True
            return self._done(
                diagnostics,
                ImageRef(url=mock_result_url()),
                message="Vertex AI image generation disabled (performance testing)",
            )

        overrides = self._extra_params(request, diagnostics, VERTEX_GENERATION_PARAMS | VERTEX_IMAGE_PARAMS)
        token = await self._acquire_credential(descriptor, diagnostics)

        diagnostics.state = BUILD_REQUEST
        images = await self._vertex_images(descriptor, request)
        call = build_vertex_call(
            descriptor.id,
            images,
            prompt_text,
            aspect_ratio,
            model,
            self.settings.GOOGLE_VERTEX_PROJECT_ID,
            location,
            token,
            self.settings.TIMEOUT_PROVIDER_MS,
            overrides=overrides,
        )

        try:
            body = await self._invoke(descriptor.id.value, descriptor.name, call, diagnostics, self._policy(request.fast_mode))
        except UpstreamHTTPError as e:
            verdict = self._safety_from_error_body(e.body) if descriptor.inline_safety else None
            if verdict is None:
                raise
            return self._blocked(diagnostics, verdict)

        diagnostics.extra["response"] = sanitize_payload(body)
        verdict = None
        if descriptor.inline_safety:
            diagnostics.state = NORMALIZE_SAFETY
            verdict = self.normalizer.from_generation_response(body, expect_image=True)
            if not verdict.is_safe:
                return self._blocked(diagnostics, verdict)

        image = extract_inline_image(body)
        if image is None:
            raise NonRetryableError("No image data in response", status_code=500)

        data, mime_type = image
        diagnostics.extra["mime_type"] = mime_type
        return self._done(diagnostics, ImageRef(data=data, mime_type=mime_type), safety=verdict)

    async def _run_wavespeed(
        self,
        descriptor: ProviderDescriptor,
        request: GenerationRequest,
        diagnostics: ProviderDiagnostics
    ) -> GenerationResult:
        diagnostics.state = BUILD_REQUEST
        if self.settings.DISABLE_4K_UPSCALER:
            diagnostics.extra["disabled"] = True
            return self._done(
                diagnostics,
                ImageRef(url=mock_result_url()),
                message="4K upscaler disabled (performance testing)",
            )

        params = self._extra_params(request, diagnostics, WAVESPEED_PARAMS)
        api_key = await self._acquire_credential(descriptor, diagnostics)
        diagnostics.state = BUILD_REQUEST
        policy = self._policy(request.fast_mode)
        call = build_wavespeed_call(
            request.target_image,
            getattr(self.settings, descriptor.endpoint_setting),
            api_key,
            self.settings.TIMEOUT_PROVIDER_MS,
            target_resolution=params.get("target_resolution", self.settings.WAVESPEED_TARGET_RESOLUTION),
            output_format=params.get("output_format", self.settings.WAVESPEED_OUTPUT_FORMAT),
        )
        body = await self._invoke(descriptor.id.value, descriptor.name, call, diagnostics, policy)

        # Some deployments answer synchronously
        if wavespeed_status(body) in WAVESPEED_DONE and extract_wavespeed_result_url(body):
            return await self._finish_url_result(descriptor, diagnostics, extract_wavespeed_result_url(body))

        if not descriptor.polls_result:
            diagnostics.extra["response"] = sanitize_payload(body)
            raise NonRetryableError(f"{descriptor.name} returned no result URL", status_code=502)

        request_id = extract_wavespeed_request_id(body)
        if not request_id:
            diagnostics.extra["response"] = sanitize_payload(body)
            raise NonRetryableError("WaveSpeed did not return a request id", status_code=502)
        diagnostics.extra["request_id"] = request_id

        result_url = await self._poll_wavespeed(descriptor, request_id, api_key, diagnostics, policy)
        return await self._finish_url_result(descriptor, diagnostics, result_url)

    async def _poll_wavespeed(
        self,
        descriptor: ProviderDescriptor,
        request_id: str,
        api_key: str,
        diagnostics: ProviderDiagnostics,
        policy: RetryPolicy
    ) -> str:
        """Poll the prediction until it completes; transient poll errors keep polling."""
        max_polls = self.settings.WAVESPEED_POLL_MAX_ATTEMPTS
        call = build_wavespeed_poll_call(
            request_id,
            self.settings.WAVESPEED_RESULT_ENDPOINT,
            api_key,
            self.settings.TIMEOUT_PROVIDER_MS,
        )

        for poll in range(max_polls):
            diagnostics.state = RETRY_WAIT
            await self._sleep(wavespeed_poll_delay(poll) / 1000)
            diagnostics.state = INVOKE
            diagnostics.extra["polls"] = poll + 1

            try:
                response = await self._send(call)
            except httpx.HTTPError as e:
                if not policy.classify(e):
                    raise
                logger.warning(f"[WaveSpeed] Poll {poll + 1}/{max_polls} failed: {type(e).__name__}")
                continue

            if response.status_code < 200 or response.status_code >= 300:
                error = UpstreamHTTPError(descriptor.name, response.status_code, response.text)
                if not policy.classify(error):
                    raise error
                logger.warning(f"[WaveSpeed] Poll {poll + 1}/{max_polls} returned {response.status_code}")
                continue

            body = self._parse_body(descriptor.name, response)
            status = wavespeed_status(body)
            if status in WAVESPEED_DONE:
                result_url = extract_wavespeed_result_url(body)
                if not result_url:
                    raise NonRetryableError("WaveSpeed completed without an output URL", status_code=502)
                logger.info(f"[WaveSpeed] {request_id} completed after {poll + 1} poll(s)")
                return result_url
            if status in WAVESPEED_FAILED:
                data = body.get("data") if isinstance(body.get("data"), dict) else {}
                reason = body.get("error") or data.get("error") or "unknown error"
                raise NonRetryableError(f"WaveSpeed upscale failed: {reason}", status_code=502)

            logger.debug(f"[WaveSpeed] {request_id} status={status or 'unknown'}")

        raise ProviderError(
            f"WaveSpeed upscale did not finish after {max_polls} polls",
            retryable=False,
            status_code=504,
        )


def _json_or_none(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


__all__ = ["ProviderOrchestrator", "wavespeed_poll_delay"]
