"""Shared test fixtures for the subtitle_converter test suite.

WHY: Format, orchestrator, and CLI tests all need the same small but
realistic subtitle documents and a provider that answers without the
network. Centralizing them here keeps every test on the same inputs.

HOW: Module-level constants hold the documents (so parametrized tests
can use them too); fixtures hand out copies. FakeProvider mimics
BaseTransformProvider.call() and lets each test decide what a batch
returns, how long it takes, and whether it fails.

RULES:
- Documents use LF line endings unless a test is about CRLF
- FakeProvider never touches the network
- Timing is integer milliseconds everywhere
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Dict, List, Optional

import pytest

from subtitle_converter.api.models import ProviderResponse, TransformRequest, Usage
from subtitle_converter.core.cancellation import CancellationToken, run_cancellable
from subtitle_converter.core.ir import TimedToken

# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

SAMPLE_SRT = (
    "1\n"
    "00:00:01,000 --> 00:00:03,500\n"
    "Hello <i>world</i>!\n"
    "\n"
    "2\n"
    "00:00:04,000 --> 00:00:06,250\n"
    "Second line\n"
    "continues here.\n"
)

SAMPLE_VTT = (
    "WEBVTT - sample\n"
    "\n"
    "NOTE written by hand\n"
    "\n"
    "intro\n"
    "00:00:01.000 --> 00:00:02.500 align:start position:10%\n"
    "<v Anna>Hi there, &amp; welcome.\n"
    "\n"
    "00:00:03.000 --> 00:00:04.000\n"
    "<b>Bold</b> move\n"
)

SAMPLE_ASS = (
    "[Script Info]\n"
    "Title: Sample\n"
    "ScriptType: v4.00+\n"
    "\n"
    "[V4+ Styles]\n"
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
    "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding\n"
    "Style: Default,Arial,48,&H00FFFFFF,&H000000FF,&H00000000,&H00000000,0,0,0,0,"
    "100,100,0,0,1,2,0,2,10,10,10,1\n"
    "\n"
    "[Events]\n"
    "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"
    "Dialogue: 0,0:00:01.00,0:00:03.50,Default,Anna,0,0,0,,{\\i1}Hello{\\i0}, world\\Nsecond row\n"
    "Comment: 0,0:00:02.00,0:00:03.00,Default,,0,0,0,,not a cue\n"
    "Dialogue: 0,0:00:04.00,0:00:06.25,Default,,0,0,0,,Plain, with commas, inside\n"
)


@pytest.fixture
def sample_srt() -> str:
    return SAMPLE_SRT


@pytest.fixture
def sample_vtt() -> str:
    return SAMPLE_VTT


@pytest.fixture
def sample_ass() -> str:
    return SAMPLE_ASS


# ---------------------------------------------------------------------------
# Timed tokens
# ---------------------------------------------------------------------------


def make_tokens(
    words: List[str],
    start_ms: int = 0,
    step_ms: int = 300,
    length_ms: int = 250,
    speaker: Optional[str] = None,
) -> List[TimedToken]:
    """Evenly spaced tokens: word i starts at start_ms + i * step_ms."""
    return [
        TimedToken(
            text=word,
            start_ms=start_ms + i * step_ms,
            end_ms=start_ms + i * step_ms + length_ms,
            confidence=0.9,
            speaker=speaker,
        )
        for i, word in enumerate(words)
    ]


# ---------------------------------------------------------------------------
# Fake transform provider
# ---------------------------------------------------------------------------


def echo_response(request: TransformRequest, transform: Callable[[str], str] = lambda s: s) -> str:
    """JSON answer that returns every cue of the request, text mapped by transform."""
    return json.dumps({
        "cues": [{"id": cue.id, "transformedText": transform(cue.text)} for cue in request.cues]
    }, ensure_ascii=False)


class FakeProvider:
    """Stand-in for BaseTransformProvider.call().

    Args:
        respond: request → ProviderResponse or raise. Defaults to echoing
            every cue unchanged with 10/5 usage.
        delays: Optional per-call delays (seconds), indexed by call order,
            to force batches to finish out of order.
    """

    label = "Fake"

    def __init__(
        self,
        respond: Optional[Callable[[TransformRequest], ProviderResponse]] = None,
        delays: Optional[List[float]] = None,
    ) -> None:
        self.respond = respond or (lambda req: ProviderResponse(
            text=echo_response(req),
            usage=Usage(10, 5, 15),
            finish_reason="stop",
        ))
        self.delays = delays or []
        self.requests: List[TransformRequest] = []

    async def call(self, request: TransformRequest, cancel_token: CancellationToken = None) -> ProviderResponse:
        call_index = len(self.requests)
        self.requests.append(request)
        delay = self.delays[call_index] if call_index < len(self.delays) else 0
        await run_cancellable(asyncio.sleep(delay), cancel_token)
        return self.respond(request)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def deepgram_payload() -> Dict:
    """A trimmed Deepgram /listen response with words and utterances."""
    words = [
        {"word": "hello", "punctuated_word": "Hello", "start": 0.08, "end": 0.4, "confidence": 0.99, "speaker": 0},
        {"word": "there", "punctuated_word": "there.", "start": 0.42, "end": 0.8, "confidence": 0.97, "speaker": 0},
        {"word": "hi", "punctuated_word": "Hi!", "start": 1.5, "end": 1.7, "confidence": 0.95, "speaker": 1},
    ]
    return {
        "metadata": {"request_id": "req-1", "duration": 2.0},
        "results": {
            "channels": [{
                "detected_language": "en",
                "alternatives": [{
                    "transcript": "hello there hi",
                    "confidence": 0.97,
                    "words": words,
                }],
            }],
            "utterances": [
                {"id": "u1", "start": 0.08, "end": 0.8, "confidence": 0.98,
                 "transcript": "Hello there.", "speaker": 0, "words": words[:2]},
                {"id": "u2", "start": 1.5, "end": 1.7, "confidence": 0.95,
                 "transcript": "Hi!", "speaker": 1, "words": words[2:]},
            ],
        },
    }
