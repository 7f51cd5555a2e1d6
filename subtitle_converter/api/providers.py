"""Async HTTP clients for the external text transform providers.

WHY: Cue text is translated or corrected by a hosted language model.
OpenAI, Anthropic, Google and OpenRouter each have their own endpoint,
auth header, request body, finish reasons and usage fields. The
orchestrator should see one call signature and one error model no
matter which provider runs.

HOW: BaseTransformProvider owns the httpx.AsyncClient (used as an
async context manager) and the shared call path: build the body, POST
it under a hard timeout and a cancellation token, map failures onto
TransformError, then hand the decoded JSON to the subclass's
_parse_response(). Subclasses only describe their wire format.
PROVIDERS maps ProviderKind to the classes; create_provider()
instantiates one with its key and default model from config.

RULES:
- Always use the async context manager (async with provider: ...)
- Every call has a hard wall-clock timeout (TRANSFORM_TIMEOUT_S) on top
  of httpx's per-phase timeouts; a timeout is a retryable
  TransformError, not a content error
- Cancellation raises TransformCancelledError, never TransformError
- JSON response mode is requested wherever the provider supports it
- API keys are sent in headers, never in URLs
"""

from __future__ import annotations

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from subtitle_converter.api.errors import (
    TransformContentError,
    classify_http_error,
    network_error,
    preview,
    timeout_error,
)
from subtitle_converter.api.models import ProviderResponse, TransformRequest, Usage
from subtitle_converter.config import (
    ANTHROPIC_MAX_TOKENS,
    DEFAULT_MODELS,
    TRANSFORM_TEMPERATURE,
    TRANSFORM_TIMEOUT_S,
    load_api_key,
)
from subtitle_converter.core.cancellation import CancellationToken, run_cancellable

logger = logging.getLogger(__name__)


class ProviderKind(str, enum.Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OPENROUTER = "openrouter"


class BaseTransformProvider(ABC):
    """Abstract base for transform providers.

    To add a provider:
    1. Subclass BaseTransformProvider
    2. Set label, base_url and truncation_reasons
    3. Implement _headers(), _endpoint(), _build_body(), _parse_response()
    4. Register it in PROVIDERS and add its key to config.API_KEY_ENV_VARS
    """

    kind: ProviderKind
    label: str = "Provider"
    base_url: str = ""
    truncation_reasons: frozenset[str] = frozenset()

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = TRANSFORM_TIMEOUT_S,
        temperature: float = TRANSFORM_TEMPERATURE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._base_url = (base_url or self.base_url).rstrip("/")
        self._timeout = timeout
        self._temperature = temperature
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BaseTransformProvider:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers(),
            timeout=httpx.Timeout(self._timeout, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "{} provider must be used as an async context manager: "
                "async with create_provider(...) as provider: ...".format(self.label)
            )
        return self._client

    # ------------------------------------------------------------------
    # Wire format (per provider)
    # ------------------------------------------------------------------

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Auth and version headers sent with every request."""

    @abstractmethod
    def _endpoint(self) -> str:
        """Path relative to base_url."""

    @abstractmethod
    def _build_body(self, request: TransformRequest) -> dict[str, Any]:
        """JSON request body for one batch."""

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        """Pull text, finish reason and usage out of the decoded response."""

    def is_truncated(self, finish_reason: str | None) -> bool:
        return finish_reason in self.truncation_reasons

    # ------------------------------------------------------------------
    # Shared call path
    # ------------------------------------------------------------------

    async def call(
        self,
        request: TransformRequest,
        cancel_token: CancellationToken | None = None,
    ) -> ProviderResponse:
        """Send one batch to the provider and return its raw response.

        Args:
            request: System instructions plus the batch's cue skeletons.
            cancel_token: Shared run token; cancelling it aborts the request.

        Returns:
            ProviderResponse with the message text, normalized usage and
            truncation flag. The text is not parsed here.

        Raises:
            TransformError: Timeout, network failure, or non-2xx status.
            TransformContentError: The response body is not JSON.
            TransformCancelledError: The token was cancelled.
        """
        client = self._ensure_client()
        body = self._build_body(request)
        logger.debug(
            "%s request: model=%s cues=%d", self.label, self.model, len(request.cues)
        )

        try:
            resp = await run_cancellable(
                asyncio.wait_for(client.post(self._endpoint(), json=body), self._timeout),
                cancel_token,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.warning("%s request timed out after %.0fs", self.label, self._timeout)
            raise timeout_error(self.label, self._timeout)
        except httpx.TransportError as exc:
            logger.warning("%s request failed: %s", self.label, exc)
            raise network_error(self.label, exc)

        if resp.status_code < 200 or resp.status_code >= 300:
            error = classify_http_error(
                resp.status_code,
                resp.text,
                resp.headers.get("Retry-After"),
                provider=self.label,
            )
            logger.error(
                "%s error %d (%s): %s",
                self.label, resp.status_code, error.category.value, preview(resp.text),
            )
            raise error

        try:
            data = resp.json()
        except ValueError:
            raise TransformContentError(
                "malformed", "{} returned a non-JSON body".format(self.label), preview(resp.text)
            )

        response = self._parse_response(data)
        if response.truncated:
            logger.warning(
                "%s response truncated (finish_reason=%s)", self.label, response.finish_reason
            )
        return response


class _ChatCompletionsProvider(BaseTransformProvider):
    """Shared wire format of OpenAI-compatible chat/completions endpoints."""

    truncation_reasons = frozenset({"length"})
    json_mode = True

    def _headers(self) -> dict[str, str]:
        return {"Authorization": "Bearer {}".format(self._api_key)}

    def _endpoint(self) -> str:
        return "/chat/completions"

    def _build_body(self, request: TransformRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_instructions},
                {"role": "user", "content": request.user_payload()},
            ],
            "temperature": self._temperature,
        }
        if self.json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        choice = (data.get("choices") or [{}])[0] or {}
        finish_reason = choice.get("finish_reason")
        return ProviderResponse(
            text=(choice.get("message") or {}).get("content") or "",
            usage=Usage.from_openai(data.get("usage")),
            finish_reason=finish_reason,
            truncated=self.is_truncated(finish_reason),
            model=data.get("model") or self.model,
        )


class OpenAIProvider(_ChatCompletionsProvider):
    kind = ProviderKind.OPENAI
    label = "OpenAI"
    base_url = "https://api.openai.com/v1"


class OpenRouterProvider(_ChatCompletionsProvider):
    """OpenRouter proxies many models; not all of them accept JSON mode."""

    kind = ProviderKind.OPENROUTER
    label = "OpenRouter"
    base_url = "https://openrouter.ai/api/v1"
    json_mode = False

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Title"] = "subtitle-converter"
        return headers


class AnthropicProvider(BaseTransformProvider):
    kind = ProviderKind.ANTHROPIC
    label = "Anthropic"
    base_url = "https://api.anthropic.com/v1"
    truncation_reasons = frozenset({"max_tokens"})
    api_version = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": self.api_version}

    def _endpoint(self) -> str:
        return "/messages"

    def _build_body(self, request: TransformRequest) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "system": request.system_instructions,
            "messages": [{"role": "user", "content": request.user_payload()}],
            "temperature": self._temperature,
        }

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        # Content is a list of blocks; only text blocks carry the answer
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )
        finish_reason = data.get("stop_reason")
        return ProviderResponse(
            text=text,
            usage=Usage.from_anthropic(data.get("usage")),
            finish_reason=finish_reason,
            truncated=self.is_truncated(finish_reason),
            model=data.get("model") or self.model,
        )


class GoogleProvider(BaseTransformProvider):
    kind = ProviderKind.GOOGLE
    label = "Google AI"
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    truncation_reasons = frozenset({"MAX_TOKENS"})

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def _endpoint(self) -> str:
        return "/models/{}:generateContent".format(self.model)

    def _build_body(self, request: TransformRequest) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": request.system_instructions}]},
            "contents": [{"role": "user", "parts": [{"text": request.user_payload()}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "responseMimeType": "application/json",
            },
        }

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        candidate = (data.get("candidates") or [{}])[0] or {}
        parts = (candidate.get("content") or {}).get("parts") or []
        finish_reason = candidate.get("finishReason")
        return ProviderResponse(
            text="".join(part.get("text", "") for part in parts),
            usage=Usage.from_google(data.get("usageMetadata")),
            finish_reason=finish_reason,
            truncated=self.is_truncated(finish_reason),
            model=data.get("modelVersion") or self.model,
        )


PROVIDERS: dict[ProviderKind, type[BaseTransformProvider]] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.GOOGLE: GoogleProvider,
    ProviderKind.OPENROUTER: OpenRouterProvider,
}


def create_provider(
    kind: ProviderKind | str,
    api_key: str | None = None,
    model: str | None = None,
    **kwargs: Any,
) -> BaseTransformProvider:
    """Instantiate a provider with its key and default model from config.

    Raises:
        ValueError: Unknown provider name, or no API key configured.
    """
    try:
        kind = ProviderKind(kind)
    except ValueError:
        raise ValueError(
            "Unknown provider '{}'. Choose from: {}".format(
                kind, ", ".join(k.value for k in ProviderKind)
            )
        )
    provider_cls = PROVIDERS[kind]
    return provider_cls(
        api_key=api_key or load_api_key(kind.value),
        model=model or DEFAULT_MODELS[kind.value],
        **kwargs,
    )
