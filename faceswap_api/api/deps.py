"""
API Dependencies
Common dependencies for FastAPI routes.
"""

from functools import lru_cache

from faceswap_api.services.orchestrator import ProviderOrchestrator


@lru_cache()
def get_orchestrator() -> ProviderOrchestrator:
    """Get the process-wide orchestrator (stateless apart from its collaborators)."""
    return ProviderOrchestrator()
