"""Configuration constants, provider defaults, and .env loading.

WHY: Centralizes all configurable values so they are easy to find,
update, and override. Segmentation limits, provider models, batch
defaults, and timeouts are plain data, not buried in logic, so they
can be tuned without touching the algorithms that use them.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level dicts, sets, and numbers, each overridable through an
environment variable. load_api_key() provides a clear error when the
key for a provider is missing.

RULES:
- API keys are loaded from .env via python-dotenv, never hardcoded
- Every provider has an entry in API_KEY_ENV_VARS and DEFAULT_MODELS
- Segmentation limits are integers in characters or milliseconds
- All defaults can be overridden via environment variables
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to default."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            "Environment variable {} must be an integer, got {!r}".format(name, raw)
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(
            "Environment variable {} must be a number, got {!r}".format(name, raw)
        )


# ---------------------------------------------------------------------------
# Segmentation limits
# ---------------------------------------------------------------------------

MAX_CUE_CHARS = _env_int("MAX_CUE_CHARS", 84)
"""Character ceiling for a cue written in a space-delimited script."""

MAX_CUE_CHARS_CJK = _env_int("MAX_CUE_CHARS_CJK", 42)
"""Character ceiling for a cue containing CJK script characters."""

MAX_CUE_DURATION_MS = _env_int("MAX_CUE_DURATION_MS", 8000)
PAUSE_THRESHOLD_MS = _env_int("PAUSE_THRESHOLD_MS", 800)

MERGE_GAP_UTTERANCE_MS = _env_int("MERGE_GAP_UTTERANCE_MS", 150)
"""Largest gap bridged when merging cues that came from provider utterances."""

MERGE_GAP_TOKEN_MS = _env_int("MERGE_GAP_TOKEN_MS", 800)
"""Largest gap bridged when merging token-built cues (diarization-error recovery)."""

# ---------------------------------------------------------------------------
# Transform providers
# ---------------------------------------------------------------------------

API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
}

DEFAULT_MODELS: dict[str, str] = {
    "openai": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
    "anthropic": os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest"),
    "google": os.getenv("GOOGLE_MODEL", "gemini-2.0-flash"),
    "openrouter": os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini"),
}

DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "openai")
DEFAULT_BATCH_COUNT = _env_int("DEFAULT_BATCH_COUNT", 1)
DEFAULT_TARGET_LANGUAGE = os.getenv("DEFAULT_TARGET_LANGUAGE", "en")

TRANSFORM_TIMEOUT_S = _env_float("TRANSFORM_TIMEOUT_S", 600.0)
"""Hard per-request timeout for transform provider calls (10 minutes)."""

TRANSFORM_TEMPERATURE = _env_float("TRANSFORM_TEMPERATURE", 0.3)
ANTHROPIC_MAX_TOKENS = _env_int("ANTHROPIC_MAX_TOKENS", 8192)

# ---------------------------------------------------------------------------
# Timed-token source (Deepgram)
# ---------------------------------------------------------------------------

DEEPGRAM_BASE_URL = os.getenv("DEEPGRAM_BASE_URL", "https://api.deepgram.com/v1")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-3")
DEEPGRAM_TIMEOUT_S = _env_float("DEEPGRAM_TIMEOUT_S", 600.0)

DEEPGRAM_SUPPORTED_FORMATS: set[str] = {
    ".aac", ".flac", ".m4a", ".mp3", ".mp4", ".ogg",
    ".opus", ".wav", ".webm", ".mkv", ".mov",
}
"""Audio/video file extensions accepted for transcription (lowercase, with dot)."""

SUBTITLE_EXTENSIONS: set[str] = {".srt", ".vtt", ".ass", ".ssa"}


def load_api_key(provider: str) -> str:
    """Load the API key for a provider from the environment.

    WHY: Every external call needs a key. Loading it from the environment
    (via .env) keeps it out of source code and out of CLI history.

    HOW: Looks up the provider's environment variable name in
    API_KEY_ENV_VARS and reads it from os.environ.

    RULES:
    - Raises ValueError for an unknown provider name
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        raise ValueError(
            "Unknown provider '{}'. Known providers: {}".format(
                provider, ", ".join(sorted(API_KEY_ENV_VARS))
            )
        )
    key = os.getenv(env_var, "").strip()
    if not key:
        raise ValueError(
            "{} API key not configured. Add {} to the .env file in the app folder.".format(
                provider, env_var
            )
        )
    return key
