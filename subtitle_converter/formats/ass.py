"""Advanced SubStation Alpha (ASS) and SubStation Alpha (SSA) adapter.

WHY: ASS/SSA files carry styles, karaoke timing, positioning overrides
and script metadata that a transform must never touch. Rebuilding such a
file from cue fields would lose all of it, so reconstruction patches the
text field of each Dialogue line in place instead.

HOW: The [Events] section's "Format:" line declares the field order.
Each "Dialogue:" line is split on only the first N-1 commas, so the last
(Text) field keeps any commas it contains. The exact line text before
the text field becomes raw_prefix, anything after it raw_suffix, and the
cue remembers its source line number.

RULES:
- Cue id is ASS_<ordinal>_L<line>; index is the 0-based dialogue ordinal
- "Comment:" lines and every non-dialogue line are not cues and are
  reproduced byte-identical
- Without a Format line the standard v4+ (ASS) or v4 (SSA) order applies
- Physical line breaks in transformed text become \\N on output
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from subtitle_converter.core.ir import (
    Caption,
    Cue,
    FormatFamily,
    ParsedSubtitle,
    SubtitleFormat,
)
from subtitle_converter.formats.base import BaseSubtitleFormat, resolve_text
from subtitle_converter.formats.timecodes import format_ass_timestamp, parse_timestamp

DEFAULT_ASS_FIELDS = (
    "Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"
)
DEFAULT_SSA_FIELDS = (
    "Marked, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"
)

_DIALOGUE = "Dialogue:"


def _split_fields(format_line: str) -> list[str]:
    return [field.strip().lower() for field in format_line.split(",")]


def _section_name(line: str) -> str | None:
    stripped = line.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
        return stripped[1:-1].strip().lower()
    return None


class ASSFormat(BaseSubtitleFormat):
    """ASS (v4+) adapter with in-place Dialogue text patching."""

    format = SubtitleFormat.ASS
    family = FormatFamily.ASS
    extension = ".ass"
    default_fields = DEFAULT_ASS_FIELDS

    @property
    def name(self) -> str:
        return "Advanced SubStation Alpha"

    def parse(self, content: str) -> ParsedSubtitle:
        lines = content.split("\n")
        cues: list[Cue] = []
        section = None
        events_format = ""
        fields = _split_fields(self.default_fields)
        first_cue_line = None

        for line_no, line in enumerate(lines):
            name = _section_name(line)
            if name is not None:
                section = name
                continue
            if section != "events":
                continue

            if line.lower().startswith("format:"):
                events_format = line
                fields = _split_fields(line.split(":", 1)[1])
                continue
            if not line.startswith(_DIALOGUE):
                continue

            cue = self._parse_dialogue(line, line_no, len(cues), fields)
            if cue is None:
                continue
            if first_cue_line is None:
                first_cue_line = line_no
            cues.append(cue)

        header_end = first_cue_line if first_cue_line is not None else len(lines)
        return ParsedSubtitle(
            format=self.format,
            cues=tuple(cues),
            header="\n".join(lines[:header_end]),
            events_format=events_format,
        )

    def _parse_dialogue(
        self,
        line: str,
        line_no: int,
        ordinal: int,
        fields: list[str],
    ) -> Cue | None:
        """Split one Dialogue line into a Cue, or None if it is malformed."""
        if "text" not in fields:
            return None
        body = line[len(_DIALOGUE):]
        values = body.split(",", len(fields) - 1)
        if len(values) != len(fields):
            return None
        record = dict(zip(fields, values))
        try:
            start = parse_timestamp(record.get("start", ""))
            end = parse_timestamp(record.get("end", ""))
        except ValueError:
            return None

        text_at = fields.index("text")
        offset = len(_DIALOGUE) + sum(len(v) + 1 for v in values[:text_at])
        text = values[text_at]
        skeleton, placeholders = self.tokenize(text)
        speaker = record.get("name", "").strip()
        style = record.get("style", "").strip()
        return Cue(
            id="ASS_{}_L{}".format(ordinal, line_no),
            index=ordinal,
            start_ms=start,
            end_ms=end,
            text_original=text,
            text_skeleton=skeleton,
            format=self.format,
            placeholders=placeholders,
            raw_prefix=line[:offset],
            raw_suffix=line[offset + len(text):],
            speaker=speaker or None,
            style=style or None,
            line_number=line_no,
        )

    def reconstruct(
        self,
        parsed: ParsedSubtitle,
        transformed: Mapping[str, str],
        original_content: str,
    ) -> str:
        lines = original_content.split("\n")
        for cue in parsed.cues:
            if cue.line_number is None or cue.line_number >= len(lines):
                continue
            text = resolve_text(cue, transformed)
            if cue.id in transformed:
                text = text.replace("\n", "\\N")
            lines[cue.line_number] = cue.raw_prefix + text + cue.raw_suffix
        return "\n".join(lines)

    def compose(self, captions: Sequence[Caption]) -> str:
        out = [
            "[Script Info]",
            "ScriptType: v4.00+",
            "PlayResX: 1920",
            "PlayResY: 1080",
            "",
            "[V4+ Styles]",
            "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
            "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, "
            "ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, "
            "Alignment, MarginL, MarginR, MarginV, Encoding",
            "Style: Default,Arial,48,&H00FFFFFF,&H000000FF,&H00000000,&H00000000,"
            "0,0,0,0,100,100,0,0,1,2,0,2,10,10,10,1",
            "",
            "[Events]",
            "Format: " + DEFAULT_ASS_FIELDS,
        ]
        for caption in captions:
            out.append("Dialogue: 0,{},{},Default,{},0,0,0,,{}".format(
                format_ass_timestamp(caption.start_ms),
                format_ass_timestamp(caption.end_ms),
                (caption.speaker or "").replace(",", " "),
                caption.text.replace("\n", "\\N"),
            ))
        return "\n".join(out) + "\n"


class SSAFormat(ASSFormat):
    """SSA (v4) adapter; same line model as ASS with the v4 field order."""

    format = SubtitleFormat.SSA
    extension = ".ssa"
    default_fields = DEFAULT_SSA_FIELDS

    @property
    def name(self) -> str:
        return "SubStation Alpha"
