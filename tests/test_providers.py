"""Tests for the transform provider clients, error mapping and response parsing.

WHY: Each provider has its own wire format. A wrong header or field
name only shows up as a 400 or an empty translation in production, so
the request shape and the response mapping are pinned here.

HOW: httpx.MockTransport answers in-process; every test inspects the
request the provider built and the ProviderResponse it returned.
Nothing touches the network.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from subtitle_converter.api.errors import (
    ErrorCategory,
    TransformContentError,
    TransformError,
    classify_http_error,
    parse_retry_after,
)
from subtitle_converter.api.models import (
    TransformCueInput,
    TransformRequest,
    Usage,
    parse_transform_response,
)
from subtitle_converter.api.providers import (
    AnthropicProvider,
    GoogleProvider,
    OpenAIProvider,
    OpenRouterProvider,
    create_provider,
)
from subtitle_converter.config import DEFAULT_MODELS
from subtitle_converter.core.cancellation import CancellationToken, TransformCancelledError

REQUEST = TransformRequest(
    system_instructions="Translate to German.",
    cues=(
        TransformCueInput(id="SRT_1", text="Hello ⟦HTML_0⟧world⟦HTML_1⟧", speaker="Anna"),
        TransformCueInput(id="SRT_2", text="Bye"),
    ),
)

ANSWER = '{"cues": [{"id": "SRT_1", "transformedText": "Hallo"}, {"id": "SRT_2", "transformedText": "Tschüss"}]}'


def _call(provider_cls, handler, request=REQUEST, cancel_token=None, **kwargs):
    """Run one provider call against a MockTransport; return (response, captured requests)."""
    captured = []

    def _handler(http_request):
        captured.append(http_request)
        return handler(http_request)

    async def scenario():
        provider = provider_cls(
            api_key="sk-test",
            model="test-model",
            transport=httpx.MockTransport(_handler),
            **kwargs,
        )
        async with provider:
            return await provider.call(request, cancel_token)

    return asyncio.run(scenario()), captured


class TestOpenAI:
    def test_request_shape_and_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "model": "test-model",
                "choices": [{"message": {"content": ANSWER}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20},
            })

        response, captured = _call(OpenAIProvider, handler)
        sent = captured[0]
        body = json.loads(sent.content)

        assert sent.url.path == "/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert body["model"] == "test-model"
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0] == {"role": "system", "content": "Translate to German."}
        payload = json.loads(body["messages"][1]["content"])
        assert payload["cues"][0] == {
            "id": "SRT_1", "text": "Hello ⟦HTML_0⟧world⟦HTML_1⟧", "speaker": "Anna",
        }
        assert payload["cues"][1] == {"id": "SRT_2", "text": "Bye"}

        assert response.text == ANSWER
        assert response.usage == Usage(12, 8, 20)
        assert not response.truncated

    def test_length_finish_is_truncation(self):
        def handler(request):
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "{"}, "finish_reason": "length"}],
            })

        response, _ = _call(OpenAIProvider, handler)
        assert response.truncated
        assert response.finish_reason == "length"


class TestOpenRouter:
    def test_no_json_mode_and_title_header(self):
        def handler(request):
            return httpx.Response(200, json={
                "choices": [{"message": {"content": ANSWER}, "finish_reason": "stop"}],
            })

        _, captured = _call(OpenRouterProvider, handler)
        body = json.loads(captured[0].content)
        assert "response_format" not in body
        assert captured[0].headers["X-Title"] == "subtitle-converter"
        assert captured[0].url.host == "openrouter.ai"


class TestAnthropic:
    def test_request_shape_and_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "model": "test-model",
                "content": [{"type": "text", "text": ANSWER}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 30, "output_tokens": 9},
            })

        response, captured = _call(AnthropicProvider, handler)
        sent = captured[0]
        body = json.loads(sent.content)

        assert sent.url.path == "/v1/messages"
        assert sent.headers["x-api-key"] == "sk-test"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        assert body["system"] == "Translate to German."
        assert body["max_tokens"] > 0
        assert body["messages"][0]["role"] == "user"
        assert response.text == ANSWER
        assert response.usage == Usage(30, 9, 39)

    def test_max_tokens_is_truncation(self):
        def handler(request):
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "{\"cues\": ["}],
                "stop_reason": "max_tokens",
            })

        response, _ = _call(AnthropicProvider, handler)
        assert response.truncated


class TestGoogle:
    def test_key_in_header_not_url(self):
        def handler(request):
            return httpx.Response(200, json={
                "candidates": [{
                    "content": {"parts": [{"text": ANSWER}]},
                    "finishReason": "STOP",
                }],
                "usageMetadata": {
                    "promptTokenCount": 5, "candidatesTokenCount": 4, "totalTokenCount": 9,
                },
            })

        response, captured = _call(GoogleProvider, handler)
        sent = captured[0]
        body = json.loads(sent.content)

        assert sent.url.path.endswith("/models/test-model:generateContent")
        assert "key" not in sent.url.params
        assert sent.headers["x-goog-api-key"] == "sk-test"
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["systemInstruction"]["parts"][0]["text"] == "Translate to German."
        assert response.text == ANSWER
        assert response.usage == Usage(5, 4, 9)

    def test_max_tokens_is_truncation(self):
        def handler(request):
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "{"}]}, "finishReason": "MAX_TOKENS"}],
            })

        response, _ = _call(GoogleProvider, handler)
        assert response.truncated


class TestCallErrors:
    def test_http_error_is_classified(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "12"}, text="Too many requests")

        with pytest.raises(TransformError) as exc_info:
            _call(OpenAIProvider, handler)
        assert exc_info.value.category == ErrorCategory.RATE_LIMITED
        assert exc_info.value.retry_after_ms == 12_000
        assert exc_info.value.status_code == 429

    def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransformError) as exc_info:
            _call(AnthropicProvider, handler)
        assert exc_info.value.category == ErrorCategory.TIMEOUT
        assert exc_info.value.retryable
        assert exc_info.value.retry_after_ms == 5000

    def test_slow_response_hits_wall_clock_timeout(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        with pytest.raises(TransformError) as exc_info:
            _call(OpenAIProvider, handler, timeout=0.05)
        assert exc_info.value.category == ErrorCategory.TIMEOUT
        assert exc_info.value.retryable

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransformError) as exc_info:
            _call(OpenAIProvider, handler)
        assert exc_info.value.category == ErrorCategory.NETWORK_ERROR

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(TransformContentError) as exc_info:
            _call(OpenAIProvider, handler)
        assert exc_info.value.kind == "malformed"

    def test_cancelled_token(self):
        token = CancellationToken()
        token.cancel()

        def handler(request):
            return httpx.Response(200, json={})

        with pytest.raises(TransformCancelledError):
            _call(OpenAIProvider, handler, cancel_token=token)

    def test_call_outside_context_manager(self):
        provider = OpenAIProvider(api_key="k", model="m")
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(provider.call(REQUEST))


class TestCreateProvider:
    def test_default_model(self):
        provider = create_provider("anthropic", api_key="k")
        assert isinstance(provider, AnthropicProvider)
        assert provider.model == DEFAULT_MODELS["anthropic"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("nope", api_key="k")

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            create_provider("google")


class TestClassifyHttpError:
    @pytest.mark.parametrize("status, category, retryable", [
        (400, ErrorCategory.BAD_REQUEST, False),
        (401, ErrorCategory.AUTH, False),
        (402, ErrorCategory.QUOTA_EXCEEDED, False),
        (403, ErrorCategory.FORBIDDEN, False),
        (404, ErrorCategory.NOT_FOUND, False),
        (429, ErrorCategory.RATE_LIMITED, True),
        (503, ErrorCategory.SERVER_ERROR, True),
        (418, ErrorCategory.UNKNOWN, False),
    ])
    def test_status_mapping(self, status, category, retryable):
        error = classify_http_error(status, "body")
        assert error.category == category
        assert error.retryable == retryable

    def test_quota_body_on_429(self):
        error = classify_http_error(429, '{"error": {"code": "insufficient_quota"}}')
        assert error.category == ErrorCategory.QUOTA_EXCEEDED
        assert not error.retryable

    def test_default_retry_hints(self):
        assert classify_http_error(429).retry_after_ms == 60_000
        assert classify_http_error(500).retry_after_ms == 30_000

    def test_retry_after_parsing(self):
        assert parse_retry_after("2.5") == 2500
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0
        assert parse_retry_after("soon") is None
        assert parse_retry_after(None) is None

    def test_long_body_is_bounded(self):
        error = classify_http_error(400, "x" * 1000)
        assert len(error.message) < 400


class TestParseTransformResponse:
    def test_plain_json(self):
        cues = parse_transform_response(ANSWER, {"SRT_1", "SRT_2"})
        assert [(c.id, c.transformed_text) for c in cues] == [("SRT_1", "Hallo"), ("SRT_2", "Tschüss")]

    def test_prose_and_fences_around_json(self):
        text = "Here you go:\n```json\n" + ANSWER + "\n```\nEnjoy!"
        assert len(parse_transform_response(text)) == 2

    def test_legacy_field_names_and_numeric_ids(self):
        text = '{"cues": [{"id": 1, "translatedText": "a"}, {"id": "2", "text": "b"}]}'
        cues = parse_transform_response(text)
        assert [(c.id, c.transformed_text) for c in cues] == [("1", "a"), ("2", "b")]

    @pytest.mark.parametrize("text, kind", [
        ("", "empty_response"),
        ("   ", "empty_response"),
        ("no json here", "malformed"),
        ('{"cues": [', "malformed"),
        ('{"cues": []}', "empty_cues"),
        ('{"items": []}', "missing_fields"),
        ('{"cues": [{"id": "SRT_1"}]}', "missing_fields"),
    ])
    def test_errors(self, text, kind):
        with pytest.raises(TransformContentError) as exc_info:
            parse_transform_response(text)
        assert exc_info.value.kind == kind

    def test_unknown_id(self):
        with pytest.raises(TransformContentError) as exc_info:
            parse_transform_response(ANSWER, {"SRT_1"})
        assert exc_info.value.kind == "unknown_id"
        assert "SRT_2" in exc_info.value.message

    def test_preview_is_bounded(self):
        with pytest.raises(TransformContentError) as exc_info:
            parse_transform_response("x" * 5000)
        assert len(exc_info.value.preview) <= 300
