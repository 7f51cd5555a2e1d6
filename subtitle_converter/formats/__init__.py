"""Subtitle format registry: detection, parsing, and reconstruction hub.

WHY: The orchestrator and CLI need one entry point that takes raw
subtitle text, works out what it is, and hands back cues, and later
turns transformed cues back into a document of the same format. A
central registry makes adding a format a one-line change.

HOW: FORMATS maps SubtitleFormat to adapter *classes* (not instances).
detect_format() classifies the document; parse_subtitle() and
reconstruct_subtitle() normalize line endings and the BOM, then
delegate to the adapter.

RULES:
- detect_format() is total: it returns UNKNOWN, it never raises
- parse_subtitle() raises UnsupportedFormatError for UNKNOWN input
- Output uses LF line endings; a source BOM is re-emitted
- Every adapter listed here must be importable without side effects
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace

from subtitle_converter.core.ir import Caption, ParsedSubtitle, SubtitleFormat, TransformedCue
from subtitle_converter.formats.ass import ASSFormat, SSAFormat
from subtitle_converter.formats.base import BOM, BaseSubtitleFormat, normalize_content
from subtitle_converter.formats.srt import SRTFormat
from subtitle_converter.formats.vtt import VTTFormat

FORMATS: dict[SubtitleFormat, type[BaseSubtitleFormat]] = {
    SubtitleFormat.SRT: SRTFormat,
    SubtitleFormat.VTT: VTTFormat,
    SubtitleFormat.ASS: ASSFormat,
    SubtitleFormat.SSA: SSAFormat,
}

_SRT_TIMING = r"[ \t]*(?:\d+:)?\d{1,2}:\d{2}[,.]\d{1,3}[ \t]*-->"
_SRT_START_RE = re.compile(r"^\d+[ \t]*\n" + _SRT_TIMING, re.MULTILINE)
# A timing line opening a block, for files written without index lines.
_SRT_BARE_START_RE = re.compile(r"(?:\A|\n[ \t]*\n)" + _SRT_TIMING)
_SCRIPT_TYPE_RE = re.compile(r"^\s*ScriptType:\s*v4\.00(?P<plus>\+)?", re.IGNORECASE | re.MULTILINE)


class UnsupportedFormatError(ValueError):
    """Raised when a document is not in any supported subtitle format."""


class EmptySubtitleError(ValueError):
    """Raised when a document parses but contains no cues."""


def detect_format(content: str) -> SubtitleFormat:
    """Classify a subtitle document from its leading structure.

    RULES:
    - BOM and leading whitespace are ignored
    - "WEBVTT" first line → VTT
    - [V4+ Styles] or ScriptType v4.00+ → ASS; [V4 Styles] or ScriptType
      v4.00 → SSA; [Script Info] alone → ASS
    - An index line followed by a timing line, or a timing line at the
      start of a block → SRT
    - Anything else (including non-str input) → UNKNOWN
    """
    if not isinstance(content, str):
        return SubtitleFormat.UNKNOWN
    text, _ = normalize_content(content)
    text = text.lstrip()
    if not text:
        return SubtitleFormat.UNKNOWN

    if text.startswith("WEBVTT"):
        return SubtitleFormat.VTT

    lowered = text.lower()
    if "[v4+ styles]" in lowered:
        return SubtitleFormat.ASS
    if "[v4 styles]" in lowered:
        return SubtitleFormat.SSA
    script_type = _SCRIPT_TYPE_RE.search(text)
    if script_type is not None:
        return SubtitleFormat.ASS if script_type.group("plus") else SubtitleFormat.SSA
    if lowered.startswith("[script info]"):
        return SubtitleFormat.ASS

    if _SRT_START_RE.search(text) or _SRT_BARE_START_RE.search(text):
        return SubtitleFormat.SRT
    return SubtitleFormat.UNKNOWN


def get_adapter(fmt: SubtitleFormat | str) -> BaseSubtitleFormat:
    """Instantiate the adapter registered for fmt."""
    try:
        return FORMATS[SubtitleFormat(fmt)]()
    except (KeyError, ValueError):
        raise UnsupportedFormatError(
            "Unsupported subtitle format '{}'. Supported: {}".format(
                fmt, ", ".join(f.value for f in FORMATS)
            )
        )


def parse_subtitle(content: str) -> ParsedSubtitle:
    """Detect the format of content and parse it into cues.

    Raises:
        UnsupportedFormatError: If no supported format is detected.
    """
    fmt = detect_format(content)
    if fmt == SubtitleFormat.UNKNOWN:
        raise UnsupportedFormatError("Could not detect a supported subtitle format")
    text, bom = normalize_content(content)
    parsed = get_adapter(fmt).parse(text)
    if bom:
        parsed = replace(parsed, bom=True)
    return parsed


def _as_mapping(
    transformed: Mapping[str, str] | Iterable[TransformedCue],
) -> dict[str, str]:
    if isinstance(transformed, Mapping):
        return dict(transformed)
    return {cue.id: cue.transformed_text for cue in transformed}


def reconstruct_subtitle(
    parsed: ParsedSubtitle,
    transformed: Mapping[str, str] | Iterable[TransformedCue],
    original_content: str,
) -> str:
    """Rebuild a document with transformed cue text in place.

    Args:
        parsed: The result of parse_subtitle(original_content).
        transformed: TransformedCue records, or skeleton text keyed by id.
            Cues without an entry keep their original text.
        original_content: The raw document that was parsed.

    Returns:
        The rebuilt document, LF line endings, BOM re-emitted if present.
    """
    text, _ = normalize_content(original_content)
    rebuilt = get_adapter(parsed.format).reconstruct(parsed, _as_mapping(transformed), text)
    return BOM + rebuilt if parsed.bom else rebuilt


def compose_captions(captions: Sequence[Caption], fmt: SubtitleFormat | str = SubtitleFormat.SRT) -> str:
    """Render segmentation captions as a new SRT, VTT, or ASS document."""
    return get_adapter(fmt).compose(captions)


def subtitle_extension(fmt: SubtitleFormat | str) -> str:
    """Return the file extension (with dot) for a subtitle format."""
    return get_adapter(fmt).extension


__all__ = [
    "FORMATS",
    "BaseSubtitleFormat",
    "EmptySubtitleError",
    "UnsupportedFormatError",
    "compose_captions",
    "detect_format",
    "get_adapter",
    "parse_subtitle",
    "reconstruct_subtitle",
    "subtitle_extension",
]
