"""Tests for the segmentation engine.

WHY: Captions built from ASR output are what viewers read. A cue that
breaks mid-phrase, runs past the character or duration ceilings, or
starts with a stray full stop is a visible defect.

HOW: Build small token and utterance streams with make_tokens(), run
them through the individual stages and through segment_transcript(),
and check text, timing and limits of the resulting captions.

RULES:
- Every caption respects the character ceiling for its script and the
  duration ceiling, unless a single token alone exceeds them
- Leading punctuation always ends up on the previous caption
- merge_false_splits() applied twice equals applied once
"""

from __future__ import annotations

from conftest import make_tokens

from subtitle_converter.core.ir import Caption, TimedToken, Utterance
from subtitle_converter.core.segmenter import (
    SOURCE_TOKEN,
    SOURCE_UTTERANCE,
    SegmentationConfig,
    cleanup_cjk_spacing,
    contains_cjk,
    ends_clause,
    ends_sentence,
    fix_leading_punctuation,
    merge_false_splits,
    repair_tokens,
    segment_tokens,
    segment_transcript,
    segment_utterances,
)


def _texts(captions):
    return [c.text for c in captions]


class TestTextHelpers:
    def test_ends_sentence_looks_through_closing_quotes(self):
        assert ends_sentence('He said "stop."')
        assert ends_sentence("終わり。」")
        assert not ends_sentence("and then")

    def test_ends_clause(self):
        assert ends_clause("first,")
        assert ends_clause("最初、")
        assert ends_clause("done.")
        assert not ends_clause("word")

    def test_contains_cjk(self):
        assert contains_cjk("iPhone を買った")
        assert not contains_cjk("plain latin")

    def test_cleanup_cjk_spacing_keeps_latin_spaces(self):
        assert cleanup_cjk_spacing("今日 は 晴れ") == "今日は晴れ"
        assert cleanup_cjk_spacing("iPhone 15 を 買った") == "iPhone 15 を買った"


class TestRepairTokens:
    def test_punctuation_only_token_joins_previous(self):
        repaired = repair_tokens(make_tokens(["Hello", ",", "world", "."]))
        assert [t.text for t in repaired] == ["Hello,", "world."]
        # End time extends to cover the punctuation token
        assert repaired[0].end_ms == 550

    def test_leading_punctuation_moves_to_previous(self):
        tokens = [
            TimedToken("そうです", 0, 500),
            TimedToken("。まだ", 600, 900),
        ]
        repaired = repair_tokens(tokens)
        assert [t.text for t in repaired] == ["そうです。", "まだ"]
        assert repaired[0].end_ms == 500

    def test_blank_tokens_skipped_and_speaker_normalized(self):
        tokens = [
            TimedToken("  ", 0, 10),
            TimedToken("hi", 20, 30, speaker=0),
        ]
        repaired = repair_tokens(tokens)
        assert len(repaired) == 1
        assert repaired[0].speaker == "0"

    def test_opening_quote_stays_with_its_word(self):
        repaired = repair_tokens(make_tokens(["said", '"Go', 'now."']))
        assert [t.text for t in repaired] == ["said", '"Go', 'now."']


class TestSegmentTokens:
    def test_sentence_end_closes_cue(self):
        captions = segment_tokens(repair_tokens(make_tokens(["Yes", ".Then", "go", "."])))
        assert _texts(captions) == ["Yes.", "Then go."]

    def test_pause_closes_cue(self):
        tokens = make_tokens(["first", "part"]) + make_tokens(["second", "part."], start_ms=1550)
        assert _texts(segment_tokens(tokens)) == ["first part", "second part."]

    def test_speaker_change_closes_cue(self):
        tokens = make_tokens(["so", "we", "agreed"], speaker="0")
        tokens += make_tokens(["right", "then."], start_ms=5000, speaker="1")
        captions = segment_tokens(tokens)
        assert _texts(captions) == ["so we agreed", "right then."]
        assert [c.speaker for c in captions] == ["0", "1"]

    def test_overflow_splits_at_last_clause_break(self):
        config = SegmentationConfig(max_chars=30)
        tokens = make_tokens(["one", "two", "three,", "four", "five", "six", "seven"])
        captions = segment_tokens(tokens, config)
        assert _texts(captions) == ["one two three,", "four five six seven"]

    def test_single_oversized_token_is_its_own_caption(self):
        config = SegmentationConfig(max_chars=5)
        captions = segment_tokens(make_tokens(["tiny", "enormousword", "end."]), config)
        assert _texts(captions) == ["tiny", "enormousword", "end."]

    def test_captions_carry_token_source_and_mean_confidence(self):
        captions = segment_tokens(make_tokens(["a", "b."]))
        assert captions[0].source == SOURCE_TOKEN
        assert captions[0].confidence == 0.9

    def test_oversized_cjk_token_is_split_into_glyphs(self):
        captions = segment_transcript(tokens=[TimedToken("字" * 50, 0, 3000)])
        assert [len(c.text) for c in captions] == [42, 8]
        assert (captions[0].start_ms, captions[0].end_ms) == (0, 2520)
        assert (captions[1].start_ms, captions[1].end_ms) == (2520, 3000)

    def test_split_glyphs_keep_trailing_punctuation(self):
        captions = segment_transcript(tokens=[TimedToken("字" * 50 + "。", 0, 5100)])
        assert [len(c.text) for c in captions] == [42, 9]
        assert captions[-1].text.endswith("字。")


class TestLimits:
    def test_long_run_without_punctuation_respects_duration(self):
        # 20 words spread over 9 s, no punctuation anywhere
        tokens = make_tokens(["uh"] * 20, step_ms=450, length_ms=400)
        captions = segment_transcript(tokens=tokens)
        assert len(captions) >= 2
        assert all(c.duration_ms <= 8000 for c in captions)
        assert sum(len(c.text.split()) for c in captions) == 20

    def test_long_latin_run_respects_char_limit(self):
        tokens = make_tokens(["word"] * 40, step_ms=100, length_ms=90)
        captions = segment_transcript(tokens=tokens)
        assert len(captions) >= 2
        assert all(len(c.text) <= 84 for c in captions)

    def test_cjk_uses_lower_limit_and_breaks_at_clause(self):
        text = "字" * 20 + "，" + "文" * 29
        tokens = make_tokens(list(text), step_ms=100, length_ms=90)
        captions = segment_transcript(tokens=tokens)
        assert _texts(captions) == ["字" * 20 + "，", "文" * 29]
        assert all(len(c.text) <= 42 for c in captions)

    def test_many_sentences_all_within_limits(self):
        words = []
        for i in range(120):
            word = "token{}".format(i)
            if i % 11 == 10:
                word += "."
            elif i % 5 == 4:
                word += ","
            words.append(word)
        captions = segment_transcript(tokens=make_tokens(words, step_ms=350, length_ms=300))
        assert all(len(c.text) <= 84 for c in captions)
        assert all(c.duration_ms <= 8000 for c in captions)
        assert " ".join(_texts(captions)).split() == words


class TestLeadingPunctuation:
    def test_cjk_full_stop_moves_back(self):
        tokens = [
            TimedToken("そうです", 0, 500),
            TimedToken("。まだ", 600, 900),
            TimedToken("です。", 950, 1300),
        ]
        captions = segment_transcript(tokens=tokens)
        assert _texts(captions) == ["そうです。", "まだです。"]

    def test_post_pass_on_captions(self):
        captions = [
            Caption(0, "そうです", 0, 500),
            Caption(1, "。まだ", 600, 900),
        ]
        assert _texts(fix_leading_punctuation(captions)) == ["そうです。", "まだ"]

    def test_punctuation_only_caption_dropped(self):
        captions = [Caption(0, "Hi", 0, 100), Caption(1, "!", 200, 300)]
        assert _texts(fix_leading_punctuation(captions)) == ["Hi!"]

    def test_first_caption_keeps_its_punctuation(self):
        captions = [Caption(0, "...well", 0, 100)]
        assert _texts(fix_leading_punctuation(captions)) == ["...well"]

    def test_moved_run_may_exceed_previous_limit(self):
        captions = [Caption(0, "a" * 84, 0, 1000), Caption(1, "!!! next", 1100, 1500)]
        fixed = fix_leading_punctuation(captions)
        assert [len(c.text) for c in fixed] == [87, 4]
        assert fixed[0].text.endswith("a!!!")


class TestMergeFalseSplits:
    def test_utterance_gap_threshold(self):
        close = [
            Caption(0, "we went", 0, 1000, source=SOURCE_UTTERANCE),
            Caption(1, "home.", 1100, 1500, source=SOURCE_UTTERANCE),
        ]
        assert _texts(merge_false_splits(close)) == ["we went home."]

        apart = [
            Caption(0, "we went", 0, 1000, source=SOURCE_UTTERANCE),
            Caption(1, "home.", 1300, 1500, source=SOURCE_UTTERANCE),
        ]
        assert _texts(merge_false_splits(apart)) == ["we went", "home."]

    def test_token_gap_threshold_is_wider(self):
        captions = [
            Caption(0, "we went", 0, 1000, source=SOURCE_TOKEN),
            Caption(1, "home.", 1500, 1900, source=SOURCE_TOKEN),
        ]
        merged = merge_false_splits(captions)
        assert _texts(merged) == ["we went home."]
        assert (merged[0].start_ms, merged[0].end_ms) == (0, 1900)

    def test_sentence_end_blocks_merge(self):
        captions = [Caption(0, "Done.", 0, 500), Caption(1, "next", 510, 900)]
        assert len(merge_false_splits(captions)) == 2

    def test_merge_must_fit_limits(self):
        config = SegmentationConfig(max_chars=10)
        captions = [Caption(0, "abcdef", 0, 500), Caption(1, "ghijkl", 510, 900)]
        assert len(merge_false_splits(captions, config)) == 2

    def test_speaker_flip_is_merged_and_keeps_first_speaker(self):
        tokens = make_tokens(["we", "went"], speaker="0")
        tokens += make_tokens(["home", "today."], start_ms=600, speaker="1")
        captions = segment_transcript(tokens=tokens)
        assert _texts(captions) == ["we went home today."]
        assert captions[0].speaker == "0"

    def test_repeated_merge_is_stable(self):
        captions = [
            Caption(0, "a", 0, 100),
            Caption(1, "b", 150, 250),
            Caption(2, "c.", 300, 400),
            Caption(3, "d", 2000, 2100),
        ]
        once = merge_false_splits(captions)
        assert _texts(once) == ["a b c.", "d"]
        assert merge_false_splits(once) == once


class TestSegmentUtterances:
    def test_fitting_utterances_become_captions(self):
        utterances = [
            Utterance("Hello there.", 80, 800, 0.98, speaker="0"),
            Utterance("Hi!", 1500, 1700, 0.95, speaker="1"),
        ]
        captions = segment_utterances(utterances)
        assert _texts(captions) == ["Hello there.", "Hi!"]
        assert all(c.source == SOURCE_UTTERANCE for c in captions)

    def test_long_utterance_without_tokens_uses_interpolated_tokens(self):
        utterance = Utterance(" ".join(["segment"] * 20), 0, 6000, speaker="2")
        captions = segment_transcript(utterances=[utterance])
        assert len(captions) == 2
        assert all(len(c.text) <= 84 for c in captions)
        assert all(c.speaker == "2" for c in captions)
        assert captions[0].start_ms == 0
        assert captions[-1].end_ms == 6000

    def test_blank_utterance_skipped(self):
        assert segment_utterances([Utterance("   ", 0, 100)]) == []


class TestSegmentTranscript:
    def test_utterances_preferred_over_tokens(self):
        captions = segment_transcript(
            tokens=make_tokens(["ignored"]),
            utterances=[Utterance("Hello.", 0, 500)],
        )
        assert _texts(captions) == ["Hello."]

    def test_indices_are_sequential(self):
        tokens = make_tokens(["One.", "Two.", "Three."], step_ms=2000)
        captions = segment_transcript(tokens=tokens)
        assert [c.index for c in captions] == [0, 1, 2]

    def test_empty_input(self):
        assert segment_transcript() == []
        assert segment_transcript(tokens=[TimedToken("   ", 0, 10)]) == []
