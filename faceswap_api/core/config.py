"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "FaceSwap API"
    DEBUG: bool = False
    ENABLE_DEBUG_RESPONSE: bool = False  # Include provider diagnostics in API responses

    # Provider used when a request does not name one
    DEFAULT_PROVIDER: str = "rapidapi_faceswap"

    # RapidAPI face swap
    RAPIDAPI_KEY: str = ""
    RAPIDAPI_HOST: str = "faceswap-image-transformation-api.p.rapidapi.com"
    RAPIDAPI_ENDPOINT: str = "https://faceswap-image-transformation-api.p.rapidapi.com/faceswap"

    # Vertex AI (Gemini image models, service account auth)
    GOOGLE_VERTEX_PROJECT_ID: str = ""
    GOOGLE_VERTEX_LOCATION: str = "us-central1"
    GOOGLE_SERVICE_ACCOUNT_EMAIL: str = ""
    GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY: str = ""
    VERTEX_DEFAULT_MODEL: str = "2.5"  # "2.5" -> gemini-2.5-flash-image, "3" -> gemini-3-pro-image-preview
    VERTEX_PROMPT_MODEL: str = "gemini-2.5-flash"

    # Google Vision SafeSearch
    GOOGLE_VISION_API_KEY: str = ""
    GOOGLE_VISION_ENDPOINT: str = "https://vision.googleapis.com/v1/images:annotate"
    DISABLE_SAFE_SEARCH: bool = False
    SAFETY_STRICTNESS: str = "lenient"  # lenient | strict | disabled

    # WaveSpeed upscaler
    WAVESPEED_API_KEY: str = ""
    WAVESPEED_UPSCALER_ENDPOINT: str = "https://api.wavespeed.ai/api/v3/wavespeed-ai/image-upscaler"
    WAVESPEED_RESULT_ENDPOINT: str = "https://api.wavespeed.ai/api/v3/predictions/{request_id}/result"
    WAVESPEED_POLL_MAX_ATTEMPTS: int = 20
    WAVESPEED_TARGET_RESOLUTION: str = "4k"
    WAVESPEED_OUTPUT_FORMAT: str = "jpeg"

    # OAuth2 (JWT-bearer grant for the service account)
    OAUTH_TOKEN_ENDPOINT: str = "https://oauth2.googleapis.com/token"
    OAUTH_SCOPE: str = "https://www.googleapis.com/auth/cloud-platform"

    # Token cache - empty REDIS_URL keeps tokens in process memory
    REDIS_URL: str = ""

    # Timeouts (milliseconds)
    TIMEOUT_PROVIDER_MS: int = 60000
    TIMEOUT_OAUTH_MS: int = 60000
    TIMEOUT_IMAGE_FETCH_MS: int = 60000
    IMAGE_HEADER_RANGE_BYTES: int = 65536

    # Retry settings
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROMPT_MAX_ATTEMPTS: int = 15
    RETRY_NORMAL_BASE_MS: int = 2000
    RETRY_NORMAL_MAX_MS: int = 30000
    RETRY_FAST_BASE_MS: int = 500
    RETRY_FAST_MAX_MS: int = 5000

    # Aspect ratios accepted by the generative providers
    ASPECT_RATIOS: List[str] = ["1:1", "3:2", "2:3", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
    DEFAULT_ASPECT_RATIO: str = "3:4"

    # Performance testing switches - return mock results without calling upstream
    DISABLE_VERTEX_IMAGE_GEN: bool = False
    DISABLE_4K_UPSCALER: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    @field_validator(
        'RAPIDAPI_KEY', 'GOOGLE_VISION_API_KEY', 'WAVESPEED_API_KEY',
        'GOOGLE_SERVICE_ACCOUNT_EMAIL', 'GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY',
        mode='before'
    )
    @classmethod
    def strip_secrets(cls, v):
        """Strip whitespace and newlines from secrets loaded from the environment."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('SAFETY_STRICTNESS', mode='before')
    @classmethod
    def normalize_strictness(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or "lenient"
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
