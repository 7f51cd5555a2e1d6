"""Default instruction sets for the transform providers.

WHY: The orchestrator treats the transform as a black box, but the box
still needs to be told what to do, what shape to answer in, and that
placeholder tokens are untouchable. Callers may pass their own
instructions; these are the defaults the CLI uses.

RULES:
- Every instruction set demands a JSON object {"cues": [{"id",
  "transformedText"}]} and nothing else
- Every instruction set names the placeholder syntax and forbids
  changing, translating, dropping, or duplicating tokens
"""

from __future__ import annotations

_OUTPUT_CONTRACT = """\
You will receive a JSON object {"cues": [{"id": ..., "text": ...}, ...]}.
Some cues also carry "speaker" or "style" for context; do not copy them.

Rules:
1. Return ONLY a valid JSON object, with no markdown fences and no text outside it.
2. Return exactly one entry per input cue, with the same "id", in the same order.
3. Placeholders such as ⟦TAG_0⟧, ⟦BR_1⟧, ⟦HTML_2⟧, ⟦NL_3⟧ stand for formatting.
   Keep every placeholder exactly as written: never translate, renumber,
   remove, or duplicate one. You may move a placeholder if word order requires it.
4. Do not merge or split cues.

Response format:
{"cues": [{"id": "<original id>", "transformedText": "<text with placeholders preserved>"}]}"""

TRANSLATION_INSTRUCTIONS = """\
You are an expert subtitle translator. Translate each cue from {source} into {target}.
Keep the register, emotional tone, and each speaker's style. Prefer natural,
concise phrasing that reads comfortably at subtitle speed.
"""

CORRECTION_INSTRUCTIONS = """\
You are an expert subtitle editor. Each cue is a speech-recognition transcript
in {language}. Fix spelling, punctuation, capitalization, and obvious
misrecognitions. Do not rephrase, summarize, or translate; if a cue is already
correct, return it unchanged.
"""

MODES = ("translate", "correct")


def translation_instructions(target_language: str, source_language: str | None = None) -> str:
    """Build translation instructions; source "auto"/None means detect it."""
    source = source_language if source_language and source_language != "auto" else "the source language"
    return TRANSLATION_INSTRUCTIONS.format(source=source, target=target_language) + "\n" + _OUTPUT_CONTRACT


def correction_instructions(language: str | None = None) -> str:
    return (
        CORRECTION_INSTRUCTIONS.format(
            language=language if language and language != "auto" else "its original language"
        )
        + "\n" + _OUTPUT_CONTRACT
    )


def build_instructions(
    mode: str,
    target_language: str | None = None,
    source_language: str | None = None,
) -> str:
    """Return the default instruction set for a CLI mode.

    Raises:
        ValueError: Unknown mode, or translate without a target language.
    """
    if mode == "translate":
        if not target_language:
            raise ValueError("Translation needs a target language")
        return translation_instructions(target_language, source_language)
    if mode == "correct":
        return correction_instructions(source_language)
    raise ValueError("Unknown mode '{}'. Choose from: {}".format(mode, ", ".join(MODES)))
