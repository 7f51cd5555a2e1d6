"""Intermediate representation dataclasses for cues, tokens, and captions.

WHY: Subtitle files arrive in several formats and ASR output arrives as
flat timed tokens. Everything downstream (tokenizer, validator, batch
orchestrator, reconstruction) needs one well-typed shape to work with.
The IR decouples the format adapters and the segmentation engine from
the transform pipeline.

HOW: Frozen dataclasses form two families:
  Placeholder / Cue / TransformedCue / ParsedSubtitle: a parsed subtitle
      document and the transformed text that comes back for it
  TimedToken / Utterance / Caption: ASR input and segmentation output

RULES:
- Every IR object is immutable; updates go through dataclasses.replace()
- All times are integer milliseconds
- Cue.id is generated once by the format adapter and never regenerated
- Cue.text_skeleton (not text_original) is what leaves the process
- Cue.placeholders is ordered by occurrence in text_original
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class SubtitleFormat(str, enum.Enum):
    """Subtitle formats the adapters understand.

    Inherits from str so values serialize cleanly and compare to plain
    strings ("srt" == SubtitleFormat.SRT).
    """

    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"
    SSA = "ssa"
    UNKNOWN = "unknown"


class FormatFamily(str, enum.Enum):
    """Markup dialects, used to pick the tokenizer patterns.

    RULES:
    - html: SRT and WebVTT inline tags, entities, physical line breaks
    - ass: ASS/SSA override blocks and backslash escapes
    - plain: no markup; tokenization is the identity
    """

    HTML = "html"
    ASS = "ass"
    PLAIN = "plain"


@dataclass(frozen=True)
class Placeholder:
    """One markup span replaced by an opaque token.

    Attributes:
        index: Position in the cue's placeholder list (0-based, per cue).
        token: The token text, e.g. "⟦TAG_0⟧".
        original: The exact substring the token stands in for.
    """

    index: int
    token: str
    original: str


@dataclass(frozen=True)
class Cue:
    """A single subtitle unit parsed from a document or built by segmentation.

    WHY: The transform pipeline must be able to send only the text of a
    cue to an external service and later put the result back without
    disturbing timing, markup, or the bytes around the text field.

    HOW: The format adapter fills the timing and identity fields, splits
    the line into raw_prefix / text / raw_suffix, and runs the tokenizer
    over the text to produce the skeleton and its placeholders.

    RULES:
    - id: unique within a cue set; format-specific rule, never regenerated
    - index: follows the format's convention (SRT 1-based, others 0-based)
    - end_ms >= start_ms for well-formed input (not enforced on parse)
    - raw_prefix / raw_suffix are reproduced verbatim by reconstruction
    - raw_separator: the blank-line run that followed the cue block in the
      source (SRT, WebVTT); "" means a single blank line
    - line_number: 0-based source line of the cue (ASS/SSA dialogue line)
    """

    id: str
    index: int
    start_ms: int
    end_ms: int
    text_original: str
    text_skeleton: str
    format: SubtitleFormat
    placeholders: tuple[Placeholder, ...] = ()
    raw_prefix: str = ""
    raw_suffix: str = ""
    speaker: str | None = None
    style: str | None = None
    line_number: int | None = None
    raw_separator: str = ""

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class TransformedCue:
    """Text returned by the external transform for one source cue."""

    id: str
    transformed_text: str


@dataclass(frozen=True)
class ParsedSubtitle:
    """A parsed subtitle document.

    RULES:
    - cues: in document order
    - header: text before the first cue (VTT header blocks, SRT stray
      blocks, ASS sections before [Events])
    - header_separator: the blank-line run between header and first cue
    - events_format: the ASS/SSA "Format:" line of [Events], else ""
    - bom: True when the source started with a UTF-8 byte-order mark
    """

    format: SubtitleFormat
    cues: tuple[Cue, ...]
    header: str = ""
    events_format: str = ""
    bom: bool = False
    header_separator: str = ""


@dataclass(frozen=True)
class TimedToken:
    """One word (or sub-word) from an ASR service.

    RULES:
    - text: as delivered, may carry attached or stray punctuation
    - confidence: 0.0–1.0
    - speaker: diarization label as a string, None when diarization is off
    """

    text: str
    start_ms: int
    end_ms: int
    confidence: float = 1.0
    speaker: str | None = None


@dataclass(frozen=True)
class Utterance:
    """A provider-grouped span that approximates one spoken phrase.

    tokens may be empty when the provider only returns phrase text.
    """

    text: str
    start_ms: int
    end_ms: int
    confidence: float = 1.0
    speaker: str | None = None
    tokens: tuple[TimedToken, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Caption:
    """A display-ready cue produced by the segmentation engine.

    RULES:
    - index: sequential, 0-based, reassigned after every post-pass
    - source: "utterance" when the caption is a whole provider utterance,
      "token" when the token-level rule built it
    - confidence: mean confidence of the tokens it was built from
    """

    index: int
    text: str
    start_ms: int
    end_ms: int
    speaker: str | None = None
    confidence: float = 1.0
    source: str = "token"

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms
