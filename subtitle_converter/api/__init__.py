"""External service clients: transform providers and the Deepgram ASR API.

WHY: The converter calls out to hosted language models (to translate or
correct cue text) and to Deepgram (to get timed words). This package
keeps every HTTP detail behind async client classes with typed errors.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. providers.py holds
one class per language-model provider, deepgram.py the ASR client,
models.py the request/response dataclasses, errors.py the error model.

RULES:
- All HTTP calls go through these clients (no direct httpx usage elsewhere)
- API keys come from config.load_api_key(), never from arguments on the CLI
- Every suspending call accepts a CancellationToken
"""

from subtitle_converter.api.deepgram import DeepgramAPIError, DeepgramClient, DeepgramConfig
from subtitle_converter.api.errors import (
    ErrorCategory,
    TransformContentError,
    TransformError,
    classify_http_error,
)
from subtitle_converter.api.models import (
    DeepgramResponse,
    ProviderResponse,
    TransformCueInput,
    TransformRequest,
    Usage,
    parse_transform_response,
)
from subtitle_converter.api.providers import (
    PROVIDERS,
    BaseTransformProvider,
    ProviderKind,
    create_provider,
)

__all__ = [
    "PROVIDERS",
    "BaseTransformProvider",
    "DeepgramAPIError",
    "DeepgramClient",
    "DeepgramConfig",
    "DeepgramResponse",
    "ErrorCategory",
    "ProviderKind",
    "ProviderResponse",
    "TransformContentError",
    "TransformCueInput",
    "TransformError",
    "TransformRequest",
    "Usage",
    "classify_http_error",
    "create_provider",
    "parse_transform_response",
]
