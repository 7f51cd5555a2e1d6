"""Tests for the Deepgram client and response models."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from subtitle_converter.api.deepgram import DeepgramAPIError, DeepgramClient, DeepgramConfig
from subtitle_converter.api.models import DeepgramResponse
from subtitle_converter.core.segmenter import segment_transcript


def _transcribe(tmp_path, handler, config=None, on_status=None):
    audio = tmp_path / "clip.wav"
    audio.write_bytes(b"RIFF0000WAVEfmt ")
    captured = []

    def _handler(request):
        captured.append(request)
        return handler(request)

    async def scenario():
        async with DeepgramClient(api_key="dg-test", transport=httpx.MockTransport(_handler)) as client:
            return await client.transcribe(audio, config, on_status=on_status)

    return asyncio.run(scenario()), captured


class TestDeepgramConfig:
    def test_defaults(self):
        params = DeepgramConfig().to_params()
        assert params["model"] == "nova-3"
        assert params["language"] == "multi"
        assert params["diarize"] == "true"
        assert params["utterances"] == "true"
        assert params["utt_split"] == "0.8"

    def test_non_english_uses_general_model(self):
        assert DeepgramConfig(language="sv").resolved_model() == "nova-3-general"
        assert DeepgramConfig(language="en").resolved_model() == "nova-3"

    def test_auto_language_sent_as_multi(self):
        assert DeepgramConfig(language="auto").to_params()["language"] == "multi"


class TestTranscribe:
    def test_request_and_parsed_response(self, tmp_path, deepgram_payload):
        statuses = []
        response, captured = _transcribe(
            tmp_path,
            lambda request: httpx.Response(200, json=deepgram_payload),
            config=DeepgramConfig(language="sv", diarize=False),
            on_status=statuses.append,
        )
        sent = captured[0]

        assert sent.method == "POST"
        assert sent.url.path == "/v1/listen"
        assert sent.headers["Authorization"] == "Token dg-test"
        assert sent.headers["Content-Type"].startswith("audio/")
        assert sent.url.params["model"] == "nova-3-general"
        assert sent.url.params["diarize"] == "false"
        assert sent.content == b"RIFF0000WAVEfmt "

        assert response.request_id == "req-1"
        assert len(response.words) == 3
        assert len(response.utterances) == 2
        assert response.detected_language == "en"
        assert statuses[-1] == "Transcription complete."

    def test_error_status(self, tmp_path):
        with pytest.raises(DeepgramAPIError) as exc_info:
            _transcribe(tmp_path, lambda request: httpx.Response(401, text="bad key"))
        assert exc_info.value.status_code == 401

    def test_timeout(self, tmp_path):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DeepgramAPIError) as exc_info:
            _transcribe(tmp_path, handler)
        assert exc_info.value.status_code == 0


class TestDeepgramResponse:
    def test_words_to_tokens(self, deepgram_payload):
        tokens = DeepgramResponse.from_dict(deepgram_payload).to_timed_tokens()
        assert [t.text for t in tokens] == ["Hello", "there.", "Hi!"]
        assert (tokens[0].start_ms, tokens[0].end_ms) == (80, 400)
        assert [t.speaker for t in tokens] == ["0", "0", "1"]

    def test_utterances(self, deepgram_payload):
        utterances = DeepgramResponse.from_dict(deepgram_payload).to_utterances()
        assert [u.text for u in utterances] == ["Hello there.", "Hi!"]
        assert utterances[0].speaker == "0"
        assert len(utterances[0].tokens) == 2

    def test_missing_sections(self):
        response = DeepgramResponse.from_dict({})
        assert response.words == []
        assert response.utterances == []

    def test_feeds_segmentation(self, deepgram_payload):
        response = DeepgramResponse.from_dict(deepgram_payload)
        captions = segment_transcript(
            tokens=response.to_timed_tokens(),
            utterances=response.to_utterances(),
        )
        assert [c.text for c in captions] == ["Hello there.", "Hi!"]
        assert [c.speaker for c in captions] == ["0", "1"]
