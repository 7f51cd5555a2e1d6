"""Request and response dataclasses for transform providers and Deepgram.

WHY: Four transform providers and one ASR service each speak their own
JSON dialect. Typed dataclasses make the shapes we rely on explicit,
keep provider quirks out of the orchestrator, and catch field
mismatches early.

HOW: Transform side: TransformRequest goes out, ProviderResponse comes
back with normalized Usage; parse_transform_response() turns the
model's text into TransformedCue records, validated against
schemas/transform_response.json with jsonschema. Deepgram side:
DeepgramResponse.from_dict() parses a pre-recorded transcription
response and converts it into TimedTokens and Utterances.

RULES:
- Usage is always prompt/completion/total tokens, whatever the provider
  called them
- Response parsing tolerates prose around the JSON object and the legacy
  field names translatedText, translated_text and text
- Deepgram times are seconds (float) and are converted to integer ms
- Deepgram speaker labels are integers and are converted to strings
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from subtitle_converter.api.errors import TransformContentError, preview
from subtitle_converter.core.ir import TimedToken, TransformedCue, Utterance

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schemas" / "transform_response.json"

_TEXT_FIELDS = ("transformedText", "translatedText", "translated_text", "text")

# =============================================================================
# Transform provider models
# =============================================================================


@dataclass(frozen=True)
class TransformCueInput:
    """One cue as sent to a transform provider (skeleton text only)."""

    id: str
    text: str
    speaker: str | None = None
    style: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"id": self.id, "text": self.text}
        if self.speaker:
            data["speaker"] = self.speaker
        if self.style:
            data["style"] = self.style
        return data


@dataclass(frozen=True)
class TransformRequest:
    """A batch of cues plus the instructions for transforming them."""

    system_instructions: str
    cues: tuple[TransformCueInput, ...]

    @property
    def cue_ids(self) -> frozenset[str]:
        return frozenset(cue.id for cue in self.cues)

    def user_payload(self) -> str:
        """JSON body of the user message: {"cues": [{id, text, ...}]}."""
        return json.dumps(
            {"cues": [cue.to_dict() for cue in self.cues]},
            ensure_ascii=False,
        )


@dataclass
class Usage:
    """Token accounting normalized across providers."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def from_openai(cls, data: dict | None) -> Usage:
        """OpenAI and OpenRouter: prompt_tokens / completion_tokens / total_tokens."""
        data = data or {}
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        return cls(prompt, completion, int(data.get("total_tokens") or prompt + completion))

    @classmethod
    def from_anthropic(cls, data: dict | None) -> Usage:
        """Anthropic: input_tokens / output_tokens, no total."""
        data = data or {}
        prompt = int(data.get("input_tokens") or 0)
        completion = int(data.get("output_tokens") or 0)
        return cls(prompt, completion, prompt + completion)

    @classmethod
    def from_google(cls, data: dict | None) -> Usage:
        """Google: usageMetadata promptTokenCount / candidatesTokenCount / totalTokenCount."""
        data = data or {}
        prompt = int(data.get("promptTokenCount") or 0)
        completion = int(data.get("candidatesTokenCount") or 0)
        return cls(prompt, completion, int(data.get("totalTokenCount") or prompt + completion))


@dataclass
class ProviderResponse:
    """What a provider call returns before content parsing.

    Attributes:
        text: The model's raw message text.
        usage: Normalized token usage.
        finish_reason: The provider's finish/stop reason, as sent.
        truncated: True when the finish reason means the output hit the
            token ceiling (length, max_tokens, MAX_TOKENS).
        model: Model name that served the request.
    """

    text: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    truncated: bool = False
    model: str = ""


# =============================================================================
# Response parsing
# =============================================================================

_CACHED_SCHEMA: dict[str, Any] | None = None


def _load_schema() -> dict[str, Any]:
    with open(_SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def _get_schema() -> dict[str, Any]:
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        _CACHED_SCHEMA = _load_schema()
    return _CACHED_SCHEMA


def _extract_json_object(text: str) -> str | None:
    """Slice from the first '{' to the last '}', dropping any prose around it."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _normalize_cue(item: Any) -> Any:
    """Map legacy text field names onto transformedText; coerce numeric ids."""
    if not isinstance(item, dict):
        return item
    normalized = dict(item)
    if isinstance(normalized.get("id"), int) and not isinstance(normalized.get("id"), bool):
        normalized["id"] = str(normalized["id"])
    if "transformedText" not in normalized:
        for name in _TEXT_FIELDS[1:]:
            if name in normalized:
                normalized["transformedText"] = normalized[name]
                break
    return normalized


def parse_transform_response(
    text: str | None,
    allowed_ids: frozenset[str] | set[str] | None = None,
) -> list[TransformedCue]:
    """Parse a provider's message text into TransformedCue records.

    WHY: Models wrap JSON in prose or code fences, use older field names,
    or invent cue ids. Each of these must become a specific, previewable
    error instead of a KeyError deep in reconstruction.

    HOW: Slice the outermost JSON object, decode it, normalize the cue
    field names, validate against the shipped JSON schema, then check
    every id against the batch's source ids.

    RULES:
    - Empty text → empty_response
    - No object, or undecodable JSON → malformed
    - Schema violation → missing_fields
    - An empty cues list → empty_cues
    - An id not in allowed_ids → unknown_id (skipped when allowed_ids is None)

    Raises:
        TransformContentError: With one of the kinds above.
    """
    if text is None or not text.strip():
        raise TransformContentError("empty_response", "Provider returned an empty response")

    candidate = _extract_json_object(text)
    if candidate is None:
        raise TransformContentError(
            "malformed", "Response contains no JSON object", preview(text)
        )
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning("Undecodable transform response: %s", preview(text))
        raise TransformContentError(
            "malformed", "Response is not valid JSON: {}".format(exc.msg), preview(text)
        )

    if isinstance(data, dict) and isinstance(data.get("cues"), list):
        if not data["cues"]:
            raise TransformContentError("empty_cues", "Response contains no cues", preview(text))
        data = dict(data, cues=[_normalize_cue(item) for item in data["cues"]])

    try:
        jsonschema.validate(instance=data, schema=_get_schema())
    except jsonschema.ValidationError as exc:
        raise TransformContentError(
            "missing_fields",
            "Response does not match the expected shape: {}".format(exc.message),
            preview(text),
        )

    cues = [TransformedCue(id=item["id"], transformed_text=item["transformedText"])
            for item in data["cues"]]

    if allowed_ids is not None:
        unknown = [cue.id for cue in cues if cue.id not in allowed_ids]
        if unknown:
            raise TransformContentError(
                "unknown_id",
                "Response refers to cue ids not in the batch: {}".format(", ".join(unknown[:10])),
                preview(text),
            )
    return cues


# =============================================================================
# Deepgram models
# =============================================================================


def _seconds_to_ms(value: Any) -> int:
    return int(round(float(value or 0) * 1000))


def _speaker_label(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class DeepgramWord:
    """A single word from a Deepgram pre-recorded transcription.

    RULES:
    - word: normalized lowercase form; punctuated_word: display form
      (present when punctuate or smart_format is on)
    - start/end: seconds (float)
    - speaker: integer label when diarize is on, else None
    """

    word: str
    start: float
    end: float
    confidence: float
    punctuated_word: Optional[str] = None
    speaker: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> DeepgramWord:
        return cls(
            word=data.get("word", ""),
            start=float(data.get("start", 0.0)),
            end=float(data.get("end", 0.0)),
            confidence=float(data.get("confidence", 1.0)),
            punctuated_word=data.get("punctuated_word"),
            speaker=data.get("speaker"),
        )

    def to_timed_token(self) -> TimedToken:
        return TimedToken(
            text=self.punctuated_word or self.word,
            start_ms=_seconds_to_ms(self.start),
            end_ms=_seconds_to_ms(self.end),
            confidence=self.confidence,
            speaker=_speaker_label(self.speaker),
        )


@dataclass
class DeepgramUtterance:
    """A Deepgram utterance (enabled with utterances=true)."""

    id: str
    start: float
    end: float
    confidence: float
    transcript: str
    speaker: Optional[int] = None
    words: List[DeepgramWord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> DeepgramUtterance:
        return cls(
            id=str(data.get("id", "")),
            start=float(data.get("start", 0.0)),
            end=float(data.get("end", 0.0)),
            confidence=float(data.get("confidence", 1.0)),
            transcript=data.get("transcript", ""),
            speaker=data.get("speaker"),
            words=[DeepgramWord.from_dict(w) for w in data.get("words", [])],
        )

    def to_utterance(self) -> Utterance:
        return Utterance(
            text=self.transcript,
            start_ms=_seconds_to_ms(self.start),
            end_ms=_seconds_to_ms(self.end),
            confidence=self.confidence,
            speaker=_speaker_label(self.speaker),
            tokens=tuple(w.to_timed_token() for w in self.words),
        )


@dataclass
class DeepgramResponse:
    """Parsed response from POST /v1/listen.

    WHY: Segmentation needs either the flat word list or the utterance
    list; this keeps both plus the metadata worth logging.

    RULES:
    - Only the first channel's first alternative is used
    - detected_language is set when language detection ran
    """

    request_id: str
    duration: float
    transcript: str
    words: List[DeepgramWord]
    utterances: List[DeepgramUtterance]
    detected_language: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeepgramResponse:
        metadata = data.get("metadata") or {}
        results = data.get("results") or {}
        channels = results.get("channels") or [{}]
        channel = channels[0] or {}
        alternatives = channel.get("alternatives") or [{}]
        alternative = alternatives[0] or {}
        return cls(
            request_id=str(metadata.get("request_id", "")),
            duration=float(metadata.get("duration") or 0.0),
            transcript=alternative.get("transcript", ""),
            words=[DeepgramWord.from_dict(w) for w in alternative.get("words", [])],
            utterances=[DeepgramUtterance.from_dict(u) for u in results.get("utterances") or []],
            detected_language=channel.get("detected_language"),
        )

    def to_timed_tokens(self) -> list[TimedToken]:
        return [word.to_timed_token() for word in self.words]

    def to_utterances(self) -> list[Utterance]:
        return [utterance.to_utterance() for utterance in self.utterances]
