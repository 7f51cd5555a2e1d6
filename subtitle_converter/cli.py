"""Command-line interface for the Subtitle Converter.

WHY: Users need a simple way to run the three pipelines from the
terminal: transform an existing subtitle file through a language model,
turn a saved ASR transcript into subtitles, or transcribe audio straight
to subtitles.

HOW: argparse with one subcommand per pipeline. Async work runs via
asyncio.run(). Status messages go to stderr; output files are saved
next to the input (or to --output-dir) with conflict-free names.

RULES:
- transform: subtitle file → provider batches → same-format subtitle file
- segment: transcript JSON (Deepgram response, token list, or
  {"utterances": [...]}) → SRT/VTT/ASS
- transcribe: audio/video → Deepgram → segmentation → SRT/VTT/ASS
- Output naming: {stem}{suffix}, numeric suffix for conflicts (-2, -3, ...)
- Status output goes to stderr (not stdout)
- Exit codes: 0 success, 1 error, 130 cancelled
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional, Tuple

from subtitle_converter.api.deepgram import DeepgramAPIError, DeepgramClient, DeepgramConfig
from subtitle_converter.api.models import DeepgramResponse
from subtitle_converter.api.providers import ProviderKind, create_provider
from subtitle_converter.config import (
    DEEPGRAM_SUPPORTED_FORMATS,
    DEFAULT_BATCH_COUNT,
    DEFAULT_PROVIDER,
    DEFAULT_TARGET_LANGUAGE,
    SUBTITLE_EXTENSIONS,
)
from subtitle_converter.core.cancellation import TransformCancelledError
from subtitle_converter.core.ir import Caption, TimedToken, Utterance
from subtitle_converter.core.orchestrator import ProgressInfo, RunStatus, transform_subtitle
from subtitle_converter.core.prompts import MODES, build_instructions
from subtitle_converter.core.segmenter import segment_transcript
from subtitle_converter.formats import compose_captions, detect_format, subtitle_extension

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

OUTPUT_FORMATS = ("srt", "vtt", "ass")


class CLIError(Exception):
    """A user-facing error that ends the command with exit code 1."""


def _status(msg: str) -> None:
    """Print a status message to stderr, flushed."""
    print(msg, file=sys.stderr, flush=True)


def _resolve_output_path(stem: str, suffix: str, output_dir: Path) -> Path:
    """Resolve the output file path, adding a numeric suffix on conflict.

    RULES:
    - First attempt: {stem}{suffix} (e.g. interview-fr.srt)
    - Conflict: counter inserted before the extension (interview-fr-2.srt)
    - Counter starts at 2 and increments
    """
    base_path = output_dir / "{}{}".format(stem, suffix)
    if not base_path.exists():
        return base_path

    dot_idx = suffix.rfind(".")
    if dot_idx >= 0:
        suffix_name, suffix_ext = suffix[:dot_idx], suffix[dot_idx:]
    else:
        suffix_name, suffix_ext = suffix, ""

    counter = 2
    while True:
        candidate = output_dir / "{}{}-{}{}".format(stem, suffix_name, counter, suffix_ext)
        if not candidate.exists():
            return candidate
        counter += 1


def _save_output(content: str, stem: str, suffix: str, output_dir: Path) -> Path:
    path = _resolve_output_path(stem, suffix, output_dir)
    path.write_text(content, encoding="utf-8")
    return path


def _resolve_input(path_str: str, allowed: set) -> Path:
    input_path = Path(path_str).resolve()
    if not input_path.is_file():
        raise CLIError("File not found: {}".format(input_path))
    if allowed and input_path.suffix.lower() not in allowed:
        raise CLIError("Unsupported file type '{}'. Supported formats: {}".format(
            input_path.suffix.lower(), ", ".join(sorted(allowed))
        ))
    return input_path


def _resolve_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    output_dir = Path(args.output_dir).resolve() if args.output_dir else input_path.parent
    if not output_dir.is_dir():
        raise CLIError("Output directory does not exist: {}".format(output_dir))
    return output_dir


# ---------------------------------------------------------------------------
# Transcript JSON loading
# ---------------------------------------------------------------------------


def _token_from_dict(data: dict) -> TimedToken:
    """Build a TimedToken from a token dict in ms or seconds."""
    text = data.get("text") or data.get("punctuated_word") or data.get("word") or ""
    if "start_ms" in data:
        start, end = int(data["start_ms"]), int(data.get("end_ms", data["start_ms"]))
    else:
        start = int(round(float(data.get("start", 0.0)) * 1000))
        end = int(round(float(data.get("end", 0.0)) * 1000))
    speaker = data.get("speaker")
    return TimedToken(
        text=text,
        start_ms=start,
        end_ms=end,
        confidence=float(data.get("confidence", 1.0)),
        speaker=None if speaker is None else str(speaker),
    )


def _utterance_from_dict(data: dict) -> Utterance:
    timing = _token_from_dict(dict(data, text=""))
    speaker = data.get("speaker")
    return Utterance(
        text=data.get("text") or data.get("transcript") or "",
        start_ms=timing.start_ms,
        end_ms=timing.end_ms,
        confidence=float(data.get("confidence", 1.0)),
        speaker=None if speaker is None else str(speaker),
        tokens=tuple(_token_from_dict(t) for t in data.get("tokens") or data.get("words") or []),
    )


def load_transcript_json(data: Any) -> Tuple[List[TimedToken], List[Utterance]]:
    """Read tokens and utterances from a saved transcript.

    Accepts a Deepgram /listen response, a bare list of token dicts, or a
    dict with "tokens" and/or "utterances" lists. Token times are
    start_ms/end_ms, or start/end in seconds.

    Raises:
        CLIError: If the structure is not recognized.
    """
    if isinstance(data, list):
        return [_token_from_dict(t) for t in data], []
    if not isinstance(data, dict):
        raise CLIError("Transcript JSON must be an object or a list of tokens")
    if "results" in data:
        response = DeepgramResponse.from_dict(data)
        return response.to_timed_tokens(), response.to_utterances()
    if "tokens" in data or "utterances" in data:
        tokens = [_token_from_dict(t) for t in data.get("tokens") or []]
        utterances = [_utterance_from_dict(u) for u in data.get("utterances") or []]
        return tokens, utterances
    raise CLIError(
        "Unrecognized transcript JSON: expected a Deepgram response, a token list, "
        "or an object with 'tokens' or 'utterances'"
    )


def _write_captions(
    captions: List[Caption],
    fmt: str,
    stem: str,
    output_dir: Path,
) -> Path:
    if not captions:
        raise CLIError("Segmentation produced no captions")
    path = _save_output(compose_captions(captions, fmt), stem, subtitle_extension(fmt), output_dir)
    _status("  {} captions".format(len(captions)))
    _status("Saved: {}".format(path))
    return path


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_progress(info: ProgressInfo) -> None:
    if info.status == RunStatus.DISPATCHING and info.total_batches:
        _status("  {:3d}% ({}/{} batches)".format(
            info.progress, info.completed_batches, info.total_batches
        ))
    else:
        _status("  {:3d}%".format(info.progress))


async def _run_transform(args: argparse.Namespace) -> int:
    """Transform a subtitle file and save the result next to it."""
    input_path = _resolve_input(args.input_file, SUBTITLE_EXTENSIONS)
    output_dir = _resolve_output_dir(args, input_path)

    content = input_path.read_text(encoding="utf-8")
    fmt = detect_format(content)
    instructions = build_instructions(args.mode, args.target_language, args.source_language)

    _status("Transforming {} ({}) via {}...".format(input_path.name, fmt.value, args.provider))
    async with create_provider(args.provider, model=args.model) as provider:
        result = await transform_subtitle(
            content,
            provider,
            instructions,
            batch_count=args.batches,
            on_progress=_print_progress,
        )

    _status("  Tokens: {} prompt, {} completion".format(
        result.usage.prompt_tokens, result.usage.completion_tokens
    ))
    if result.status == RunStatus.CANCELLED:
        _status("Cancelled.")
        return EXIT_CANCELLED
    if not result.succeeded:
        hint = ""
        if result.retryable and result.retry_after_ms:
            hint = " (retry in {:.0f}s)".format(result.retry_after_ms / 1000)
        raise CLIError("{}{}".format(result.error, hint))
    if result.warning:
        _status("Warning: {}".format(result.warning))

    tag = args.target_language if args.mode == "translate" else "corrected"
    suffix = "-{}{}".format(tag, input_path.suffix.lower())
    path = _save_output(result.output, input_path.stem, suffix, output_dir)
    _status("Saved: {}".format(path))
    return EXIT_OK


async def _run_segment(args: argparse.Namespace) -> int:
    """Segment a saved transcript JSON file into subtitles (offline)."""
    input_path = _resolve_input(args.input_file, {".json"})
    output_dir = _resolve_output_dir(args, input_path)

    try:
        data = json.loads(input_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CLIError("Invalid JSON in {}: {}".format(input_path.name, e))
    tokens, utterances = load_transcript_json(data)
    _status("Segmenting {} tokens, {} utterances...".format(len(tokens), len(utterances)))
    captions = segment_transcript(tokens=tokens, utterances=utterances)
    _write_captions(captions, args.format, input_path.stem, output_dir)
    return EXIT_OK


async def _run_transcribe(args: argparse.Namespace) -> int:
    """Transcribe audio with Deepgram and segment the result into subtitles."""
    input_path = _resolve_input(args.input_file, DEEPGRAM_SUPPORTED_FORMATS)
    output_dir = _resolve_output_dir(args, input_path)

    config = DeepgramConfig(language=args.language, diarize=args.diarize)
    async with DeepgramClient() as client:
        response = await client.transcribe(input_path, config, on_status=_status)

    if args.save_json:
        raw = json.dumps({
            "tokens": [asdict(t) for t in response.to_timed_tokens()],
        }, ensure_ascii=False, indent=2)
        _status("Saved: {}".format(_save_output(raw, input_path.stem, "-tokens.json", output_dir)))

    captions = segment_transcript(
        tokens=response.to_timed_tokens(),
        utterances=response.to_utterances(),
    )
    _write_captions(captions, args.format, input_path.stem, output_dir)
    return EXIT_OK


_COMMANDS = {
    "transform": _run_transform,
    "segment": _run_segment,
    "transcribe": _run_transcribe,
}


async def _run_command(args: argparse.Namespace) -> int:
    try:
        return await _COMMANDS[args.command](args)
    except TransformCancelledError:
        _status("Cancelled.")
        return EXIT_CANCELLED
    except (CLIError, ValueError, DeepgramAPIError) as e:
        # ValueError covers config errors (missing API key, bad mode)
        print("Error: {}".format(e), file=sys.stderr)
        return EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    Separate from main() so tests can inspect the parser without running
    a pipeline.
    """
    parser = argparse.ArgumentParser(
        prog="subtitle_converter",
        description="Transform subtitle files with a language model, or build "
                    "subtitles from timed ASR transcripts.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transform = subparsers.add_parser(
        "transform",
        help="Translate or correct a subtitle file, keeping timing and markup.",
    )
    transform.add_argument("input_file", help="Path to an SRT, VTT, ASS or SSA file.")
    transform.add_argument(
        "--provider",
        choices=[k.value for k in ProviderKind],
        default=DEFAULT_PROVIDER,
        help="Transform provider (default: %(default)s).",
    )
    transform.add_argument("--model", default=None, help="Model name (default: provider default).")
    transform.add_argument(
        "--mode",
        choices=MODES,
        default="translate",
        help="translate or correct (default: %(default)s).",
    )
    transform.add_argument(
        "--source-language",
        default="auto",
        help="Source language, or 'auto' (default: %(default)s).",
    )
    transform.add_argument(
        "--target-language",
        default=DEFAULT_TARGET_LANGUAGE,
        help="Target language for translation (default: %(default)s).",
    )
    transform.add_argument(
        "--batches",
        type=int,
        default=DEFAULT_BATCH_COUNT,
        help="Number of concurrent batches (default: %(default)s).",
    )
    transform.add_argument("--output-dir", default=None, help="Directory for output files.")

    segment = subparsers.add_parser(
        "segment",
        help="Turn a saved transcript JSON file into subtitles (no network).",
    )
    segment.add_argument("input_file", help="Path to a transcript JSON file.")
    segment.add_argument("--format", choices=OUTPUT_FORMATS, default="srt")
    segment.add_argument("--output-dir", default=None, help="Directory for output files.")

    transcribe = subparsers.add_parser(
        "transcribe",
        help="Transcribe audio/video with Deepgram and write subtitles.",
    )
    transcribe.add_argument("input_file", help="Path to an audio or video file.")
    transcribe.add_argument(
        "--language",
        default="multi",
        help="Language code, or 'multi'/'auto' for detection (default: %(default)s).",
    )
    transcribe.add_argument(
        "--diarize",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Enable speaker diarization (default: %(default)s).",
    )
    transcribe.add_argument("--format", choices=OUTPUT_FORMATS, default="srt")
    transcribe.add_argument(
        "--save-json",
        action="store_true",
        help="Also save the timed tokens as JSON (re-segment later with 'segment').",
    )
    transcribe.add_argument("--output-dir", default=None, help="Directory for output files.")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    - Always exits via sys.exit with the command's exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        code = asyncio.run(_run_command(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        code = EXIT_CANCELLED
    sys.exit(code)


if __name__ == "__main__":
    main()
