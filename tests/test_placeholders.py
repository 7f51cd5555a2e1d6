"""Tests for placeholder tokenization and restoration.

WHY: Placeholders are the only thing standing between subtitle markup
and an external transform. If tokenize() misses a span, or restore()
cannot put one back, styling is silently lost.

HOW: Tokenize representative ASS and HTML-family texts, check the
skeleton and placeholder records, and restore them, including after
tokens have been moved around.

RULES:
- restore(*tokenize(x)) == x for every case here
- Numbering restarts at 0 per call
"""

from __future__ import annotations

import pytest

from subtitle_converter.core.ir import FormatFamily
from subtitle_converter.core.placeholders import (
    extract_tokens,
    make_token,
    restore,
    tokenize,
    unresolved_tokens,
)


class TestTokenizeASS:
    def test_override_blocks_and_breaks(self):
        skeleton, placeholders = tokenize(r"{\i1}Hello{\i0}\Nworld\h!", FormatFamily.ASS)
        assert skeleton == "⟦TAG_0⟧Hello⟦TAG_1⟧⟦BR_2⟧world⟦HSP_3⟧!"
        assert [p.original for p in placeholders] == [r"{\i1}", r"{\i0}", r"\N", r"\h"]
        assert [p.index for p in placeholders] == [0, 1, 2, 3]

    def test_soft_break(self):
        skeleton, _ = tokenize(r"one\ntwo", FormatFamily.ASS)
        assert skeleton == "one⟦SBR_0⟧two"

    def test_no_markup_is_identity(self):
        assert tokenize("Just words.", FormatFamily.ASS) == ("Just words.", ())


class TestTokenizeHTML:
    def test_tags_entities_and_newlines(self):
        text = "<i>Tom &amp; Jerry</i>\n<font color=\"red\">run</font>"
        skeleton, placeholders = tokenize(text, FormatFamily.HTML)
        assert skeleton == "⟦HTML_0⟧Tom ⟦ENT_1⟧ Jerry⟦HTML_2⟧⟦NL_3⟧⟦HTML_4⟧run⟦HTML_5⟧"
        assert placeholders[4].original == "<font color=\"red\">"

    def test_numeric_entities(self):
        skeleton, placeholders = tokenize("a&#169;b&#x2014;c", FormatFamily.HTML)
        assert skeleton == "a⟦ENT_0⟧b⟦ENT_1⟧c"
        assert len(placeholders) == 2

    def test_lone_ampersand_and_angle_are_text(self):
        assert tokenize("fish & chips < 5", FormatFamily.HTML)[1] == ()

    def test_plain_family_is_identity(self):
        assert tokenize("<i>x</i>", FormatFamily.PLAIN) == ("<i>x</i>", ())


class TestRestore:
    @pytest.mark.parametrize("text, family", [
        (r"{\an8}{\i1}Top{\i0}\Nline", FormatFamily.ASS),
        ("<b>bold</b> &lt;3\nnext", FormatFamily.HTML),
        ("", FormatFamily.HTML),
        ("no markup at all", FormatFamily.ASS),
    ])
    def test_restore_inverts_tokenize(self, text, family):
        skeleton, placeholders = tokenize(text, family)
        assert restore(skeleton, placeholders) == text

    def test_restore_after_reordering(self):
        skeleton, placeholders = tokenize("<i>red</i> car", FormatFamily.HTML)
        # A translation may move the tag pair to another word
        moved = "voiture ⟦HTML_0⟧rouge⟦HTML_1⟧"
        assert restore(moved, placeholders) == "voiture <i>rouge</i>"

    def test_missing_token_stays_unresolved(self):
        _, placeholders = tokenize("<i>x</i>", FormatFamily.HTML)
        result = restore("⟦HTML_0⟧x", placeholders)
        assert result == "<i>x"
        assert unresolved_tokens("⟦HTML_0⟧x", placeholders) == ["⟦HTML_1⟧"]


class TestExtract:
    def test_extract_in_order(self):
        assert extract_tokens("a⟦BR_1⟧b⟦TAG_0⟧") == ["⟦BR_1⟧", "⟦TAG_0⟧"]

    def test_make_token(self):
        assert make_token("NL", 7) == "⟦NL_7⟧"
