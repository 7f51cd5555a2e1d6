"""Placeholder tokenization for subtitle markup.

WHY: An external translation or correction service only sees text. If
styling tags, override blocks, entities, or line breaks reach it raw,
they get translated, reordered, or dropped. Replacing every markup span
with an opaque token keeps the markup out of reach and lets us check
afterwards that nothing was lost.

HOW: One combined regex per markup family is matched left to right. Each
match is replaced by ⟦KIND_n⟧ where n counts up from 0 within the text
being tokenized. restore() swaps every token back for its original span,
wherever the token ended up in the transformed text.

RULES:
- Token delimiters are U+27E6 / U+27E7 (not found in natural subtitle text)
- Numbering is per call (per cue) and restarts at 0
- restore(*tokenize(x)) == x for every input
- A token missing from the text is left unresolved, never raised here;
  the validator reports it
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from subtitle_converter.core.ir import FormatFamily, Placeholder

PLACEHOLDER_OPEN = "⟦"
PLACEHOLDER_CLOSE = "⟧"

PLACEHOLDER_RE = re.compile(
    "{}[A-Z]+_\\d+{}".format(re.escape(PLACEHOLDER_OPEN), re.escape(PLACEHOLDER_CLOSE))
)

# Alternatives are tried in order at each position; the group name is the token kind.
_ASS_MARKUP_RE = re.compile(
    r"(?P<TAG>\{[^}]*\})"
    r"|(?P<BR>\\N)"
    r"|(?P<SBR>\\n)"
    r"|(?P<HSP>\\h)"
)

_HTML_MARKUP_RE = re.compile(
    r"(?P<HTML></?[^<>\n]+>)"
    r"|(?P<ENT>&(?:[A-Za-z]+|#\d+|#x[0-9A-Fa-f]+);)"
    r"|(?P<NL>\n)"
)

_FAMILY_PATTERNS = {
    FormatFamily.ASS: _ASS_MARKUP_RE,
    FormatFamily.HTML: _HTML_MARKUP_RE,
}


def make_token(kind: str, index: int) -> str:
    """Build a placeholder token, e.g. make_token("TAG", 0) -> "⟦TAG_0⟧"."""
    return "{}{}_{}{}".format(PLACEHOLDER_OPEN, kind, index, PLACEHOLDER_CLOSE)


def tokenize(text: str, family: FormatFamily) -> tuple[str, tuple[Placeholder, ...]]:
    """Replace every markup span in text with a numbered placeholder token.

    Args:
        text: The cue text exactly as it appears in the source document.
        family: Markup dialect of the source format.

    Returns:
        (skeleton, placeholders): the text with tokens substituted, and
        the ordered placeholder records needed to undo the substitution.
    """
    pattern = _FAMILY_PATTERNS.get(family)
    if pattern is None or not text:
        return text, ()

    placeholders: list[Placeholder] = []

    def _substitute(match: re.Match) -> str:
        index = len(placeholders)
        token = make_token(match.lastgroup or "TAG", index)
        placeholders.append(Placeholder(index=index, token=token, original=match.group(0)))
        return token

    skeleton = pattern.sub(_substitute, text)
    return skeleton, tuple(placeholders)


def restore(text: str, placeholders: Iterable[Placeholder]) -> str:
    """Swap placeholder tokens in text back for their original spans.

    Order-independent: a transform may move tokens around inside the
    text. Each token is replaced once; tokens absent from the text are
    left unresolved.
    """
    result = text
    for placeholder in placeholders:
        result = result.replace(placeholder.token, placeholder.original, 1)
    return result


def extract_tokens(text: str) -> list[str]:
    """Return every placeholder-shaped token in text, in order of appearance."""
    return PLACEHOLDER_RE.findall(text)


def unresolved_tokens(text: str, placeholders: Iterable[Placeholder]) -> list[str]:
    """Return the tokens from placeholders that do not occur in text."""
    return [p.token for p in placeholders if p.token not in text]
