"""
Gemini model manager for subscription extraction.

Supports two backends:
  1. Vertex AI SDK (production) - uses GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - uses GOOGLE_API_KEY

Credentials are resolved on first call, so a missing project/API key is a
configuration error raised at first use rather than at import.
"""

from __future__ import annotations

import os
from functools import lru_cache

from subzero.errors import ConfigurationError
from subzero.infrastructure.settings import GEMINI_LOCATION, GEMINI_MODEL
from subzero.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(ConfigurationError):
    """Raised when no Gemini backend can be initialized."""


@lru_cache(maxsize=1)
def _init_backend() -> str:
    """
    Initialize the first available Gemini backend.

    Vertex AI is preferred when GOOGLE_CLOUD_PROJECT is set; otherwise
    google-generativeai with GOOGLE_API_KEY.

    Raises:
        GeminiInitializationError: No SDK installed or no credentials configured
    """
    project = os.getenv("GOOGLE_CLOUD_PROJECT")
    location = os.getenv("GEMINI_LOCATION") or GEMINI_LOCATION

    if project:
        try:
            import vertexai

            vertexai.init(project=project, location=location)
            logger.info(
                "Initialized Gemini (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                GEMINI_MODEL,
            )
            return "vertexai"
        except ImportError:
            logger.info("Vertex AI SDK not installed, trying google-generativeai")

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError(
            "Neither GOOGLE_CLOUD_PROJECT (Vertex AI) nor GOOGLE_API_KEY is configured."
        )

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    genai.configure(api_key=api_key)
    logger.info("Initialized Gemini (google-generativeai): model=%s", GEMINI_MODEL)
    return "genai"


def get_gemini_model(system_instruction: str | None = None) -> object:
    """
    Create a GenerativeModel on the active backend.

    System instructions are per-model-instance in the Gemini API, so a fresh
    model object is built per call; backend init itself is cached.
    """
    backend = _init_backend()

    if backend == "vertexai":
        from vertexai.generative_models import GenerativeModel

        return GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)

    import google.generativeai as genai

    return genai.GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)


def clear_model_cache() -> None:
    """Forget the initialized backend (tests, reconfiguration)."""
    _init_backend.cache_clear()
