"""Abstract base subtitle format and shared adapter helpers.

WHY: Every subtitle format is parsed into the same Cue IR and rebuilt
from it, but each has its own block structure, timing syntax, and
markup dialect. This base class enforces a consistent interface so the
orchestrator and CLI can work with any format generically.

HOW: BaseSubtitleFormat is an ABC with a ``name``, a markup ``family``,
and three operations: ``parse()`` (document → ParsedSubtitle),
``reconstruct()`` (ParsedSubtitle + transformed texts → document), and
``compose()`` (segmentation Captions → new document). Helpers for id
generation and text resolution live here so every adapter follows the
same rules.

RULES:
- Adapters receive content already normalized (LF line endings, no BOM)
- parse() never drops a timed cue; blocks it cannot read are carried
  verbatim so reconstruction reproduces them
- reconstruct() falls back to text_original for any cue without a
  transformed entry
- Cue ids are generated once here and never regenerated
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

from subtitle_converter.core.ir import (
    Caption,
    Cue,
    FormatFamily,
    ParsedSubtitle,
    SubtitleFormat,
)
from subtitle_converter.core.placeholders import restore, tokenize

BOM = "﻿"


def normalize_content(content: str) -> tuple[str, bool]:
    """Strip a leading BOM and normalize CRLF/CR line endings to LF.

    Returns:
        (normalized_text, had_bom)
    """
    bom = content.startswith(BOM)
    if bom:
        content = content[len(BOM):]
    return content.replace("\r\n", "\n").replace("\r", "\n"), bom


BLOCK_SEPARATOR = "\n\n"

_BLOCK_SEPARATOR_RE = re.compile(r"(\n[ \t]*\n(?:[ \t]*\n)*)")


def split_blocks(content: str) -> list[tuple[str, str]]:
    """Split a blank-line separated document (SRT, WebVTT) into blocks.

    Returns:
        (block, separator) pairs in document order. separator is the
        exact blank-line run that followed the block, "" for the last.
    """
    stripped = content.strip("\n")
    if not stripped.strip():
        return []
    parts = _BLOCK_SEPARATOR_RE.split(stripped) + [""]
    return list(zip(parts[0::2], parts[1::2]))


def join_blocks(blocks: Sequence[str], separators: Sequence[str] = ()) -> str:
    """Inverse of split_blocks(): blocks joined by their separators, final LF.

    separators[i] follows blocks[i]; a missing or empty entry becomes a
    single blank line.
    """
    if not blocks:
        return ""
    pieces = [blocks[0]]
    for i, block in enumerate(blocks[1:]):
        separator = separators[i] if i < len(separators) else ""
        pieces.append(separator or BLOCK_SEPARATOR)
        pieces.append(block)
    return "".join(pieces) + "\n"


def collapse_blank_lines(text: str) -> str:
    """Remove blank lines a transform put inside a cue's text.

    A blank line would end the block early in SRT and WebVTT.
    """
    return re.sub(r"\n[ \t]*(?=\n)", "", text).strip("\n")


def unique_id(candidate: str, ordinal: int, seen: set[str]) -> str:
    """Return candidate, or candidate_<ordinal> if it was already used."""
    cue_id = candidate
    if cue_id in seen:
        cue_id = "{}_{}".format(candidate, ordinal)
    seen.add(cue_id)
    return cue_id


def resolve_text(cue: Cue, transformed: Mapping[str, str]) -> str:
    """Return the output text for a cue.

    The transformed skeleton with placeholders restored when the cue's id
    has an entry, else the original text unchanged.
    """
    if cue.id not in transformed:
        return cue.text_original
    return restore(transformed[cue.id], cue.placeholders)


class BaseSubtitleFormat(ABC):
    """Abstract base for all subtitle format adapters.

    To add a new subtitle format:
    1. Create a new file in formats/
    2. Subclass BaseSubtitleFormat
    3. Implement name, parse(), reconstruct() and compose()
    4. Register in FORMATS dict in formats/__init__.py
    """

    format: SubtitleFormat = SubtitleFormat.UNKNOWN
    family: FormatFamily = FormatFamily.PLAIN
    extension: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable format name, e.g. 'SubRip'."""

    @abstractmethod
    def parse(self, content: str) -> ParsedSubtitle:
        """Parse a normalized document into cues.

        Args:
            content: Document text with LF line endings and no BOM.

        Returns:
            ParsedSubtitle with cues in document order.
        """

    @abstractmethod
    def reconstruct(
        self,
        parsed: ParsedSubtitle,
        transformed: Mapping[str, str],
        original_content: str,
    ) -> str:
        """Rebuild the document with transformed text in place.

        Args:
            parsed: The result of parse() on original_content.
            transformed: Transformed skeleton text keyed by cue id.
            original_content: The normalized document parse() saw.

        Returns:
            The rebuilt document (LF line endings, no BOM).
        """

    @abstractmethod
    def compose(self, captions: Sequence[Caption]) -> str:
        """Render segmentation captions as a new document of this format."""

    def tokenize(self, text: str) -> tuple[str, tuple]:
        return tokenize(text, self.family)
