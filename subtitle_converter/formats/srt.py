"""SubRip (SRT) adapter.

WHY: SRT is the most common interchange format for subtitles and the
default output of the segmentation pipeline.

HOW: The document is split into blank-line separated blocks. A cue
block is an index line, a timing line, and one or more text lines.
Everything up to and including the timing line is kept verbatim in
raw_prefix, so reconstruction reproduces odd spacing, coordinates after
the timestamps, or a missing index line exactly.

RULES:
- Cue id is SRT_<index>, with an _<ordinal> suffix on duplicate indices
- A block whose timing line cannot be read is not a cue; it rides in
  the previous cue's raw_suffix (or the header before the first cue)
- Text lines may carry <i>/<b>/<font> tags and entities (html family)
- The blank-line run after each block (extra blank lines, whitespace-only
  lines) is kept in raw_separator and written back unchanged
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import replace

from subtitle_converter.core.ir import (
    Caption,
    Cue,
    FormatFamily,
    ParsedSubtitle,
    SubtitleFormat,
)
from subtitle_converter.formats.base import (
    BaseSubtitleFormat,
    collapse_blank_lines,
    join_blocks,
    resolve_text,
    split_blocks,
    unique_id,
)
from subtitle_converter.formats.timecodes import format_srt_timestamp, parse_timestamp

TIMING_LINE_RE = re.compile(r"^\s*(?P<start>[\d:.,]+)\s*-->\s*(?P<end>[\d:.,]+)(?P<rest>.*)$")


def parse_timing_line(line: str) -> tuple[int, int, str] | None:
    """Read "start --> end [rest]" into (start_ms, end_ms, rest), or None."""
    match = TIMING_LINE_RE.match(line)
    if match is None:
        return None
    try:
        start = parse_timestamp(match.group("start"))
        end = parse_timestamp(match.group("end"))
    except ValueError:
        return None
    return start, end, match.group("rest")


class SRTFormat(BaseSubtitleFormat):
    """SubRip adapter: blank-line blocks of index, timing, text."""

    format = SubtitleFormat.SRT
    family = FormatFamily.HTML
    extension = ".srt"

    @property
    def name(self) -> str:
        return "SubRip"

    def parse(self, content: str) -> ParsedSubtitle:
        cues: list[Cue] = []
        header_pieces: list[str] = []
        seen: set[str] = set()

        for block, separator in split_blocks(content):
            lines = block.split("\n")
            timing_at = None
            if len(lines) > 1 and lines[0].strip().isdigit() and parse_timing_line(lines[1]):
                timing_at = 1
            elif parse_timing_line(lines[0]):
                timing_at = 0
            if timing_at is None:
                if cues:
                    last = cues[-1]
                    cues[-1] = replace(
                        last,
                        raw_suffix=last.raw_suffix + last.raw_separator + block,
                        raw_separator=separator,
                    )
                else:
                    header_pieces += [block, separator]
                continue

            start, end, _ = parse_timing_line(lines[timing_at])
            ordinal = len(cues)
            index = int(lines[0].strip()) if timing_at == 1 else ordinal + 1
            text = "\n".join(lines[timing_at + 1:])
            skeleton, placeholders = self.tokenize(text)
            cues.append(Cue(
                id=unique_id("SRT_{}".format(index), ordinal, seen),
                index=index,
                start_ms=start,
                end_ms=end,
                text_original=text,
                text_skeleton=skeleton,
                format=SubtitleFormat.SRT,
                placeholders=placeholders,
                raw_prefix="\n".join(lines[:timing_at + 1]) + "\n",
                raw_separator=separator,
            ))

        return ParsedSubtitle(
            format=SubtitleFormat.SRT,
            cues=tuple(cues),
            header="".join(header_pieces[:-1]),
            header_separator=header_pieces[-1] if header_pieces else "",
        )

    def reconstruct(
        self,
        parsed: ParsedSubtitle,
        transformed: Mapping[str, str],
        original_content: str,
    ) -> str:
        blocks: list[str] = []
        separators: list[str] = []
        if parsed.header:
            blocks.append(parsed.header)
            separators.append(parsed.header_separator)
        for cue in parsed.cues:
            text = resolve_text(cue, transformed)
            if cue.id in transformed:
                text = collapse_blank_lines(text)
            prefix = cue.raw_prefix or "{}\n{} --> {}\n".format(
                cue.index,
                format_srt_timestamp(cue.start_ms),
                format_srt_timestamp(cue.end_ms),
            )
            body = prefix + text if text else prefix.rstrip("\n")
            blocks.append(body + cue.raw_suffix)
            separators.append(cue.raw_separator)
        return join_blocks(blocks, separators)

    def compose(self, captions: Sequence[Caption]) -> str:
        blocks = []
        for number, caption in enumerate(captions, start=1):
            blocks.append("{}\n{} --> {}\n{}".format(
                number,
                format_srt_timestamp(caption.start_ms),
                format_srt_timestamp(caption.end_ms),
                caption.text,
            ))
        return join_blocks(blocks)

