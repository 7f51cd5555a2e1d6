"""WebVTT adapter.

WHY: WebVTT is the web-native caption format. Compared with SRT it adds
a mandatory header, optional cue identifiers, cue settings after the
timing, voice tags, and NOTE/STYLE/REGION blocks, all of which must
survive a transform untouched.

HOW: Same blank-line block walk as SRT. The WEBVTT block and every
non-cue block before the first cue form the header. A cue block is an
optional identifier line, a timing line, and text lines; everything up
to the timing line is kept verbatim in raw_prefix.

RULES:
- Cue id is the identifier line when present, else VTT_<ordinal>
- Cue settings after the end timestamp are exposed as Cue.style
- A leading <v Name> voice tag fills Cue.speaker (the tag itself stays
  in the text as a placeholder)
- NOTE blocks between cues ride in the previous cue's raw_suffix
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
from subtitle_converter.formats.srt import parse_timing_line
from subtitle_converter.formats.timecodes import format_vtt_timestamp

_VOICE_RE = re.compile(r"^<v(?:\.[^\s>]+)*\s+(?P<name>[^>]+)>")


class VTTFormat(BaseSubtitleFormat):
    """WebVTT adapter: header block, then identifier/timing/text blocks."""

    format = SubtitleFormat.VTT
    family = FormatFamily.HTML
    extension = ".vtt"

    @property
    def name(self) -> str:
        return "WebVTT"

    def parse(self, content: str) -> ParsedSubtitle:
        cues: list[Cue] = []
        header_pieces: list[str] = []
        seen: set[str] = set()

        for block, separator in split_blocks(content):
            lines = block.split("\n")
            timing_at = None
            if "-->" in lines[0] and parse_timing_line(lines[0]):
                timing_at = 0
            elif len(lines) > 1 and "-->" not in lines[0] and parse_timing_line(lines[1]):
                timing_at = 1

            if timing_at is None or (not cues and lines[0].startswith("WEBVTT")):
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

            start, end, settings = parse_timing_line(lines[timing_at])
            ordinal = len(cues)
            identifier = lines[0].strip() if timing_at == 1 else ""
            text = "\n".join(lines[timing_at + 1:])
            skeleton, placeholders = self.tokenize(text)
            voice = _VOICE_RE.match(text)
            cues.append(Cue(
                id=unique_id(identifier or "VTT_{}".format(ordinal), ordinal, seen),
                index=ordinal,
                start_ms=start,
                end_ms=end,
                text_original=text,
                text_skeleton=skeleton,
                format=SubtitleFormat.VTT,
                placeholders=placeholders,
                raw_prefix="\n".join(lines[:timing_at + 1]) + "\n",
                speaker=voice.group("name").strip() if voice else None,
                style=settings.strip() or None,
                raw_separator=separator,
            ))

        return ParsedSubtitle(
            format=SubtitleFormat.VTT,
            cues=tuple(cues),
            header="".join(header_pieces[:-1]) or "WEBVTT",
            header_separator=header_pieces[-1] if header_pieces else "",
        )

    def reconstruct(
        self,
        parsed: ParsedSubtitle,
        transformed: Mapping[str, str],
        original_content: str,
    ) -> str:
        blocks = [parsed.header or "WEBVTT"]
        separators = [parsed.header_separator]
        for cue in parsed.cues:
            text = resolve_text(cue, transformed)
            if cue.id in transformed:
                text = collapse_blank_lines(text)
            prefix = cue.raw_prefix
            if not prefix:
                prefix = "{} --> {}{}\n".format(
                    format_vtt_timestamp(cue.start_ms),
                    format_vtt_timestamp(cue.end_ms),
                    " " + cue.style if cue.style else "",
                )
            body = prefix + text if text else prefix.rstrip("\n")
            blocks.append(body + cue.raw_suffix)
            separators.append(cue.raw_separator)
        return join_blocks(blocks, separators)

    def compose(self, captions: Sequence[Caption]) -> str:
        blocks = ["WEBVTT"]
        for caption in captions:
            text = caption.text
            if caption.speaker:
                text = "<v {}>{}".format(caption.speaker, text)
            blocks.append("{} --> {}\n{}".format(
                format_vtt_timestamp(caption.start_ms),
                format_vtt_timestamp(caption.end_ms),
                text,
            ))
        return join_blocks(blocks)
