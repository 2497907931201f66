# Services package - provider orchestration and image intelligence
from faceswap_api.services.aspect_ratio import AspectRatioResolver
from faceswap_api.services.credentials import CredentialBroker
from faceswap_api.services.fetcher import ImageFetcher
from faceswap_api.services.image_inspector import inspect_image
from faceswap_api.services.orchestrator import ProviderOrchestrator
from faceswap_api.services.retry import RetryPolicy
from faceswap_api.services.safety import SafetyViolationNormalizer
from faceswap_api.services.vision import SafeSearchClient

__all__ = [
    "AspectRatioResolver",
    "CredentialBroker",
    "ImageFetcher",
    "inspect_image",
    "ProviderOrchestrator",
    "RetryPolicy",
    "SafetyViolationNormalizer",
    "SafeSearchClient",
]
