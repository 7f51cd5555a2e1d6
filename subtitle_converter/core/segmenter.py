"""Segmentation engine: timed ASR tokens to display-ready captions.

WHY: ASR services return flat word arrays (sometimes grouped into coarse
utterances) with stray punctuation tokens, punctuation glued to the
wrong word, diarization flips mid-sentence, and spaces between CJK
glyphs. Subtitles need short, readable cues that break at natural
boundaries. This module is the bridge between the two.

HOW: Five stages, each building a new list:
  1. repair_tokens: reattach punctuation-only tokens and leading
     punctuation runs to the previous token
  2. emission: utterances become cues directly when they fit the
     limits; otherwise the greedy-with-lookback token rule builds cues
  3. fix_leading_punctuation: move a cue's leading punctuation onto
     the previous cue
  4. merge_false_splits: fixed-point merge of adjacent cues separated
     by a near-zero gap where the first does not end a sentence
  5. cleanup: remove spaces between CJK glyphs, reindex sequentially

RULES:
- Character limit is dynamic: max_chars_cjk when the text contains CJK
  script characters, max_chars otherwise
- Duration ceiling is fixed (max_duration_ms)
- Emission close rules: speaker change, sentence-final punctuation,
  pause above pause_threshold_ms, last token
- On a limit overflow with more than one token accumulated, split after
  the nearest token ending in clause-break punctuation, not at the limit
- A merge is applied only if the merged cue still respects both limits
- The engine is total: it never raises on malformed input, it skips
  tokens that are empty after cleanup
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from subtitle_converter.config import (
    MAX_CUE_CHARS,
    MAX_CUE_CHARS_CJK,
    MAX_CUE_DURATION_MS,
    MERGE_GAP_TOKEN_MS,
    MERGE_GAP_UTTERANCE_MS,
    PAUSE_THRESHOLD_MS,
)
from subtitle_converter.core.ir import Caption, TimedToken, Utterance

# CJK scripts: Han (incl. extension A and compatibility), kana, Hangul.
_CJK_CHARS = "㐀-䶿一-鿿豈-﫿぀-ヿㇰ-ㇿ가-힯"
# CJK and full-width punctuation, treated like CJK glyphs for spacing only.
_CJK_PUNCT_CHARS = "　-〿＀-･"

_CJK_RE = re.compile("[{}]".format(_CJK_CHARS))
_CJK_SPACE_RE = re.compile(
    "(?<=[{0}{1}]) +(?=[{0}{1}])".format(_CJK_CHARS, _CJK_PUNCT_CHARS)
)
_SPACE_RUN_RE = re.compile(r"\s+")

# One pseudo-token per CJK glyph, or a whitespace-free run of anything else.
_UNIT_RE = re.compile("[{0}]|[^\\s{0}]+".format(_CJK_CHARS))

SENTENCE_END_PUNCTUATION = frozenset(
    ".!?…"            # Latin
    "。！？｡．"        # CJK / full-width
    "؟۔"              # Arabic, Urdu
    "।॥"              # Devanagari
    "።"               # Ethiopic
    "‼⁇⁈⁉"
)

CLAUSE_BREAK_PUNCTUATION = frozenset(
    ",;:"
    "、，；：､"
    "،؛"
)

# Marks that close something and belong to the text before them.
_CLOSING_MARKS = frozenset("”’»›)]}）］｝」』】〕〉》")
# Straight quotes may open or close; only looked through at a sentence end.
_QUOTE_MARKS = frozenset("\"'")

TRAILING_PUNCTUATION = SENTENCE_END_PUNCTUATION | CLAUSE_BREAK_PUNCTUATION | _CLOSING_MARKS

SOURCE_UTTERANCE = "utterance"
SOURCE_TOKEN = "token"


@dataclass
class SegmentationConfig:
    """Tunable limits for the segmentation engine.

    Defaults come from config.py, which reads environment overrides.
    """

    max_chars: int = MAX_CUE_CHARS
    max_chars_cjk: int = MAX_CUE_CHARS_CJK
    max_duration_ms: int = MAX_CUE_DURATION_MS
    pause_threshold_ms: int = PAUSE_THRESHOLD_MS
    merge_gap_utterance_ms: int = MERGE_GAP_UTTERANCE_MS
    merge_gap_token_ms: int = MERGE_GAP_TOKEN_MS


# =============================================================================
# Text utilities
# =============================================================================


def contains_cjk(text: str) -> bool:
    """True if text contains at least one CJK script character."""
    return bool(_CJK_RE.search(text))


def char_limit(text: str, config: SegmentationConfig) -> int:
    """Return the character ceiling that applies to text."""
    return config.max_chars_cjk if contains_cjk(text) else config.max_chars


def cleanup_cjk_spacing(text: str) -> str:
    """Remove spaces ASR engines insert between CJK glyphs.

    Spaces next to non-CJK runs (numbers, Latin words) are kept.
    """
    return _CJK_SPACE_RE.sub("", text)


def compose_text(parts: Iterable[str]) -> str:
    """Join token texts with single spaces, then drop inter-CJK spaces."""
    joined = _SPACE_RUN_RE.sub(" ", " ".join(p for p in parts if p)).strip()
    return cleanup_cjk_spacing(joined)


def ends_sentence(text: str) -> bool:
    """True if text ends in sentence-final punctuation.

    Closing quotes and brackets after the mark are looked through, so
    'He said "stop."' ends a sentence.
    """
    stripped = text.rstrip()
    while stripped and (stripped[-1] in _CLOSING_MARKS or stripped[-1] in _QUOTE_MARKS):
        stripped = stripped[:-1].rstrip()
    return bool(stripped) and stripped[-1] in SENTENCE_END_PUNCTUATION


def ends_clause(text: str) -> bool:
    """True if text ends in clause-break or sentence-final punctuation."""
    stripped = text.rstrip()
    return bool(stripped) and (
        stripped[-1] in CLAUSE_BREAK_PUNCTUATION or ends_sentence(stripped)
    )


def is_punctuation_only(text: str) -> bool:
    stripped = text.strip()
    return bool(stripped) and all(ch in TRAILING_PUNCTUATION or ch.isspace() for ch in stripped)


def leading_punctuation(text: str) -> str:
    """Return the run of trailing-type punctuation that text starts with."""
    end = 0
    while end < len(text) and text[end] in TRAILING_PUNCTUATION:
        end += 1
    return text[:end]


# =============================================================================
# Stage 1: token repair
# =============================================================================


def repair_tokens(tokens: Iterable[TimedToken]) -> list[TimedToken]:
    """Fix punctuation tokenization artifacts in an ASR token stream.

    WHY: ASR engines sometimes deliver punctuation as its own token, or
    glue the full stop of one sentence to the first word of the next
    ("。まだ"). Both break sentence detection and leave cues starting
    with punctuation.

    HOW: Walk the tokens once, building a new list:
      - punctuation-only token → appended to the previous token's text,
        extending its end time
      - token starting with a punctuation run → the run is appended to the
        previous token (timing untouched), the remainder continues

    RULES:
    - Empty or whitespace-only tokens are skipped
    - With no previous token, punctuation stays where it is
    - Speaker labels are normalized to str or None
    """
    repaired: list[TimedToken] = []
    for token in tokens:
        text = token.text.strip()
        if not text:
            continue
        speaker = str(token.speaker) if token.speaker is not None else None

        if repaired and is_punctuation_only(text):
            prev = repaired[-1]
            repaired[-1] = replace(
                prev,
                text=prev.text + text.replace(" ", ""),
                end_ms=max(prev.end_ms, token.end_ms),
            )
            continue

        lead = leading_punctuation(text)
        if lead and repaired:
            prev = repaired[-1]
            repaired[-1] = replace(prev, text=prev.text + lead)
            text = text[len(lead):].strip()
            if not text:
                continue

        repaired.append(replace(token, text=text, speaker=speaker))
    return repaired


def _interpolate_units(
    text: str,
    start_ms: int,
    end_ms: int,
    confidence: float,
    speaker: str | None,
) -> list[TimedToken]:
    """Split text into CJK glyphs and whitespace-free runs with spread timing.

    Timing is spread across start_ms..end_ms in proportion to each
    unit's character offset in text.
    """
    units = list(_UNIT_RE.finditer(text))
    if not units:
        return []
    total = len(text)
    span = max(0, end_ms - start_ms)
    tokens = []
    for match in units:
        tokens.append(TimedToken(
            text=match.group(0),
            start_ms=start_ms + span * match.start() // total,
            end_ms=start_ms + span * match.end() // total,
            confidence=confidence,
            speaker=speaker,
        ))
    return tokens


def _pseudo_tokens(utterance: Utterance) -> list[TimedToken]:
    """Interpolate word-level tokens from an utterance that has none."""
    return _interpolate_units(
        utterance.text.strip(),
        utterance.start_ms,
        utterance.end_ms,
        utterance.confidence,
        utterance.speaker,
    )


def split_oversized(
    tokens: Iterable[TimedToken],
    config: SegmentationConfig,
) -> list[TimedToken]:
    """Break tokens longer than their character limit into smaller units.

    A run of CJK glyphs delivered as one token cannot otherwise be cut
    by the emission rule. Such a token becomes one token per glyph (or
    whitespace-free run), with interpolated timing, and the pieces are
    repaired so punctuation stays attached.

    RULES:
    - Tokens within the limit pass through unchanged
    - A single unit still over the limit (a long Latin run) stays whole
    """
    result: list[TimedToken] = []
    for token in tokens:
        if len(token.text) <= char_limit(token.text, config):
            result.append(token)
            continue
        pieces = _interpolate_units(
            token.text, token.start_ms, token.end_ms, token.confidence, token.speaker
        )
        result.extend(repair_tokens(pieces) if len(pieces) > 1 else [token])
    return result


# =============================================================================
# Stage 2: emission
# =============================================================================


def _caption_from_tokens(tokens: Sequence[TimedToken], source: str) -> Caption:
    return Caption(
        index=0,
        text=compose_text(t.text for t in tokens),
        start_ms=tokens[0].start_ms,
        end_ms=max(t.end_ms for t in tokens),
        speaker=tokens[0].speaker,
        confidence=sum(t.confidence for t in tokens) / len(tokens),
        source=source,
    )


def _clause_split_point(tokens: Sequence[TimedToken]) -> int | None:
    """Index of the nearest token (from the end) ending in a clause break."""
    for i in range(len(tokens) - 1, -1, -1):
        if ends_clause(tokens[i].text):
            return i
    return None


def _overflows(
    current: Sequence[TimedToken],
    token: TimedToken,
    config: SegmentationConfig,
) -> bool:
    candidate = compose_text([t.text for t in current] + [token.text])
    too_long = len(candidate) > char_limit(candidate, config)
    too_slow = max(token.end_ms, current[-1].end_ms) - current[0].start_ms > config.max_duration_ms
    return too_long or too_slow


def segment_tokens(
    tokens: Sequence[TimedToken],
    config: SegmentationConfig | None = None,
    source: str = SOURCE_TOKEN,
) -> list[Caption]:
    """Group repaired tokens into captions with the greedy-with-lookback rule.

    WHY: Cutting blindly at the character or duration limit produces
    breaks mid-phrase. Looking back for the last clause break keeps
    phrases together while still honouring the limits.

    HOW: Accumulate tokens. Before adding a token, close the current cue
    on a speaker change, or on a limit overflow, splitting after the
    nearest clause-break token and carrying the rest forward when more
    than one token is held. After adding, close on sentence-final
    punctuation, a long pause, a speaker change, or the last token.

    RULES:
    - A token longer than the limit is first split into glyphs or
      whitespace-free runs (split_oversized); a single run still over the
      limit becomes its own caption
    - Captions carry index 0; segment_transcript() reindexes
    """
    if config is None:
        config = SegmentationConfig()

    tokens = split_oversized(tokens, config)
    captions: list[Caption] = []
    current: list[TimedToken] = []

    def _flush(held: list[TimedToken]) -> None:
        if held:
            caption = _caption_from_tokens(held, source)
            if caption.text:
                captions.append(caption)

    i = 0
    while i < len(tokens):
        token = tokens[i]

        if current:
            if token.speaker != current[0].speaker:
                _flush(current)
                current = []
            elif _overflows(current, token, config):
                split = _clause_split_point(current) if len(current) > 1 else None
                if split is not None and split < len(current) - 1:
                    _flush(current[:split + 1])
                    current = current[split + 1:]
                    # Re-check the same token against the carried remainder
                    continue
                _flush(current)
                current = []

        current.append(token)

        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if (
            nxt is None
            or ends_sentence(token.text)
            or nxt.start_ms - token.end_ms > config.pause_threshold_ms
            or nxt.speaker != token.speaker
        ):
            _flush(current)
            current = []
        i += 1

    _flush(current)
    return captions


def segment_utterances(
    utterances: Sequence[Utterance],
    config: SegmentationConfig | None = None,
) -> list[Caption]:
    """Turn provider utterances into captions.

    HOW: An utterance that fits both limits becomes one caption as-is.
    One that does not is re-segmented with the token rule over its own
    tokens, or over pseudo-tokens interpolated from its text.

    RULES:
    - Utterances empty after whitespace cleanup are skipped
    - Whole-utterance captions are tagged source="utterance"
    """
    if config is None:
        config = SegmentationConfig()

    captions: list[Caption] = []
    for utterance in utterances:
        text = compose_text([utterance.text])
        if not text:
            continue
        duration = utterance.end_ms - utterance.start_ms
        if len(text) <= char_limit(text, config) and duration <= config.max_duration_ms:
            captions.append(Caption(
                index=0,
                text=text,
                start_ms=utterance.start_ms,
                end_ms=utterance.end_ms,
                speaker=str(utterance.speaker) if utterance.speaker is not None else None,
                confidence=utterance.confidence,
                source=SOURCE_UTTERANCE,
            ))
            continue

        tokens = list(utterance.tokens) or _pseudo_tokens(utterance)
        captions.extend(segment_tokens(repair_tokens(tokens), config, SOURCE_TOKEN))
    return captions


# =============================================================================
# Stages 3–5: post-passes
# =============================================================================


def fix_leading_punctuation(captions: Sequence[Caption]) -> list[Caption]:
    """Move each caption's leading punctuation run onto the previous caption.

    RULES:
    - The first caption has nowhere to send its punctuation; it keeps it
    - The moved run is appended even when it takes the previous caption
      past its character limit, by at most the length of the run
    - Captions that become empty are dropped
    """
    fixed: list[Caption] = []
    for caption in captions:
        lead = leading_punctuation(caption.text)
        if lead and fixed:
            prev = fixed[-1]
            fixed[-1] = replace(prev, text=prev.text + lead)
            rest = caption.text[len(lead):].strip()
            if not rest:
                continue
            caption = replace(caption, text=rest)
        fixed.append(caption)
    return fixed


def _merge_gap(a: Caption, b: Caption, config: SegmentationConfig) -> int:
    if a.source == SOURCE_TOKEN and b.source == SOURCE_TOKEN:
        return config.merge_gap_token_ms
    return config.merge_gap_utterance_ms


def _merged(a: Caption, b: Caption) -> Caption:
    a_weight = max(1, len(a.text))
    b_weight = max(1, len(b.text))
    return replace(
        a,
        text=compose_text([a.text, b.text]),
        end_ms=max(a.end_ms, b.end_ms),
        confidence=(a.confidence * a_weight + b.confidence * b_weight) / (a_weight + b_weight),
        source=SOURCE_TOKEN if a.source == b.source == SOURCE_TOKEN else SOURCE_UTTERANCE,
    )


def can_merge(a: Caption, b: Caption, config: SegmentationConfig) -> bool:
    """True if b looks like a false split of a and the merge fits the limits."""
    if b.start_ms - a.end_ms > _merge_gap(a, b, config):
        return False
    if ends_sentence(a.text):
        return False
    merged = _merged(a, b)
    if len(merged.text) > char_limit(merged.text, config):
        return False
    return merged.end_ms - merged.start_ms <= config.max_duration_ms


def merge_false_splits(
    captions: Sequence[Caption],
    config: SegmentationConfig | None = None,
) -> list[Caption]:
    """Merge adjacent captions split by a near-zero gap until nothing changes.

    WHY: Utterance boundaries and diarization flips often cut a sentence
    in two with almost no silence between the halves.

    HOW: Each pass scans left to right and builds a new list, folding a
    caption into the previous one when can_merge() allows it. Passes
    repeat until one makes no change. Every changing pass lowers the
    caption count, so the loop ends after at most len(captions) passes,
    and running it again on its own output is a no-op.

    RULES:
    - Speaker labels do not block a merge (diarization-error recovery);
      the merged caption keeps the earlier speaker
    - Gap threshold: merge_gap_token_ms when both captions are
      token-built, merge_gap_utterance_ms otherwise
    """
    if config is None:
        config = SegmentationConfig()

    current = list(captions)
    while True:
        merged: list[Caption] = []
        changed = False
        for caption in current:
            if merged and can_merge(merged[-1], caption, config):
                merged[-1] = _merged(merged[-1], caption)
                changed = True
            else:
                merged.append(caption)
        if not changed:
            return merged
        current = merged


def _reindex(captions: Iterable[Caption]) -> list[Caption]:
    result = []
    for caption in captions:
        text = cleanup_cjk_spacing(caption.text).strip()
        if not text:
            continue
        result.append(replace(caption, index=len(result), text=text))
    return result


def segment_transcript(
    tokens: Sequence[TimedToken] | None = None,
    utterances: Sequence[Utterance] | None = None,
    config: SegmentationConfig | None = None,
) -> list[Caption]:
    """Run the full segmentation pipeline.

    Utterances win when both are given; tokens are used otherwise.

    Args:
        tokens: Flat word-level tokens in time order.
        utterances: Provider utterances in time order.
        config: Limits; defaults to SegmentationConfig().

    Returns:
        Captions with sequential indices, in time order.
    """
    if config is None:
        config = SegmentationConfig()

    if utterances:
        captions = segment_utterances(utterances, config)
    elif tokens:
        captions = segment_tokens(repair_tokens(tokens), config)
    else:
        return []

    captions = fix_leading_punctuation(captions)
    captions = merge_false_splits(captions, config)
    return _reindex(captions)
