"""
Credential Broker
Mints and caches OAuth2 access tokens for a Google service account using the
JWT-bearer grant (RFC 7523). Used for Vertex AI calls.

Tokens live 60 minutes upstream; we cache them for 55 so a cached token never
expires mid-request. Concurrent cache misses may each mint a token - minting
is idempotent, so no lock is taken.
"""

import base64
import json
import logging
import time
from typing import Callable, Optional

import httpx
from google.auth import crypt

from faceswap_api.core.config import settings
from faceswap_api.core.redis import TokenCache
from faceswap_api.schemas.generation import CachedToken
from faceswap_api.services.retry import CredentialError

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
TOKEN_CACHE_SECONDS = 3300
CACHE_KEY_PREFIX = "oauth_token:"


def base64url(data: bytes) -> str:
    """Unpadded base64url, as used in JWT segments."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def normalize_private_key(private_key_pem: str) -> str:
    """Env files often carry the PEM with literal \\n sequences."""
    return private_key_pem.replace("\\n", "\n").strip()


class CredentialBroker:
    """Produces cached bearer tokens for service-account identities."""

    def __init__(
        self,
        cache: TokenCache,
        http_client: Optional[httpx.AsyncClient] = None,
        token_endpoint: Optional[str] = None,
        scope: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ):
        self.cache = cache
        self.http_client = http_client
        self.token_endpoint = token_endpoint or settings.OAUTH_TOKEN_ENDPOINT
        self.scope = scope or settings.OAUTH_SCOPE
        self.timeout_ms = timeout_ms or settings.TIMEOUT_OAUTH_MS
        self._clock = clock

    @staticmethod
    def cache_key(account: str) -> str:
        return f"{CACHE_KEY_PREFIX}{account}"

    def build_assertion(self, account: str, private_key_pem: str, now: int) -> str:
        """
        Build the signed `header.claims.signature` JWT.

        Raises:
            CredentialError: private key cannot be loaded or used to sign
        """
        header = {"alg": "RS256", "typ": "JWT"}
        claims = {
            "iss": account,
            "sub": account,
            "aud": self.token_endpoint,
            "iat": now,
            "exp": now + TOKEN_LIFETIME_SECONDS,
            "scope": self.scope,
        }

        signing_input = ".".join([
            base64url(json.dumps(header, separators=(",", ":")).encode("utf-8")),
            base64url(json.dumps(claims, separators=(",", ":")).encode("utf-8")),
        ])

        try:
            signer = crypt.RSASigner.from_string(normalize_private_key(private_key_pem))
            signature = signer.sign(signing_input.encode("ascii"))
        except (ValueError, TypeError, IndexError) as e:
            # Never echo the key material itself
            raise CredentialError(
                f"Failed to load service account private key ({type(e).__name__}). "
                "Make sure the key is an RSA key in PEM (PKCS8) format."
            ) from e

        return f"{signing_input}.{base64url(signature)}"

    async def _read_cache(self, key: str, now: int) -> Optional[str]:
        try:
            raw = await self.cache.get(key)
        except Exception as e:
            logger.warning(f"[Credentials] Token cache read failed, minting a new token: {e}")
            return None

        if not raw:
            return None
        try:
            cached = CachedToken.model_validate_json(raw)
        except ValueError:
            logger.warning(f"[Credentials] Ignoring unreadable cache entry for {key}")
            return None
        return cached.token if cached.expires_at > now else None

    async def _write_cache(self, key: str, token: str, now: int) -> None:
        entry = CachedToken(token=token, expires_at=now + TOKEN_CACHE_SECONDS)
        try:
            await self.cache.put(key, entry.model_dump_json(), ttl_seconds=TOKEN_CACHE_SECONDS)
        except Exception as e:
            logger.warning(f"[Credentials] Token cache write failed: {e}")

    async def _exchange(self, assertion: str) -> str:
        """POST the assertion to the token endpoint and return access_token."""
        form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        timeout = self.timeout_ms / 1000

        if self.http_client is not None:
            response = await self.http_client.post(self.token_endpoint, data=form, timeout=timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.token_endpoint, data=form, timeout=timeout)

        if response.status_code < 200 or response.status_code >= 300:
            raise CredentialError(
                f"Failed to get access token: {response.status_code} {response.text[:500]}",
                status_code=response.status_code,
                details={"endpoint": self.token_endpoint},
            )

        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError) as e:
            raise CredentialError("Token endpoint response did not contain access_token") from e
        return token

    async def get_access_token(self, account: str, private_key_pem: str) -> str:
        """
        Return a bearer token for `account`, from cache when still fresh.

        Raises:
            CredentialError: signing failed or the token endpoint rejected the assertion
        """
        if not account or not private_key_pem:
            raise CredentialError("Google service account credentials are required for Vertex AI")

        key = self.cache_key(account)
        now = int(self._clock())

        cached = await self._read_cache(key, now)
        if cached:
            logger.debug(f"[Credentials] Cache hit for {account}")
            return cached

        logger.info(f"[Credentials] Minting access token for {account}")
        assertion = self.build_assertion(account, private_key_pem, now)
        token = await self._exchange(assertion)
        await self._write_cache(key, token, now)
        return token


__all__ = [
    "JWT_BEARER_GRANT",
    "TOKEN_CACHE_SECONDS",
    "base64url",
    "CredentialBroker",
]
