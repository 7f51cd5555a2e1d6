"""Batch transformation orchestrator: subtitle file in, transformed file out.

WHY: Sending a long subtitle file to a language model in one request is
slow and risks hitting the output token ceiling; sending it in pieces
risks pieces coming back out of order, partially, or not at all. The
orchestrator splits the cues into batches, runs them concurrently, and
only ever applies a complete, validated result.

HOW: One run walks the state machine
  idle → batching → dispatching → {succeeded | failed | cancelled}
  1. parse_subtitle() the document (format errors end the run)
  2. split the cues into contiguous batches of {id, skeleton text}
  3. dispatch every batch with asyncio.gather, sharing one
     CancellationToken; each call's usage is added once it resolves
  4. accept a batch only if the call succeeded, was not truncated, and
     parse_transform_response() accepted its JSON and ids
  5. recombine by batch index, validate, reconstruct

RULES:
- Output order depends on batch index, never on completion order
- Any failed batch fails the run; nothing from the run is applied
- Cancellation wins over failure and is reported as cancelled
- Usage collected before a failure or cancellation is still reported
- Validation findings are a non-fatal warning; missing cues fall back
  to their original text
- Progress never decreases: 5 start, 10 parsed, 15 batched, 15–85
  across batches, 90 validated, 100 done
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import List, Optional, TypeVar

from subtitle_converter.api.errors import TransformContentError, TransformError
from subtitle_converter.api.models import (
    TransformCueInput,
    TransformRequest,
    Usage,
    parse_transform_response,
)
from subtitle_converter.api.providers import BaseTransformProvider
from subtitle_converter.config import DEFAULT_BATCH_COUNT
from subtitle_converter.core.cancellation import CancellationToken, TransformCancelledError
from subtitle_converter.core.ir import Cue, SubtitleFormat, TransformedCue
from subtitle_converter.core.validator import ValidationResult, validate_transformation
from subtitle_converter.formats import (
    EmptySubtitleError,
    UnsupportedFormatError,
    parse_subtitle,
    reconstruct_subtitle,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROGRESS_START = 5
PROGRESS_PARSED = 10
PROGRESS_BATCHED = 15
PROGRESS_BATCHES_DONE = 85
PROGRESS_VALIDATED = 90
PROGRESS_DONE = 100


class RunStatus(str, enum.Enum):
    """States of a transformation run.

    RULES:
    - idle: created, not started
    - batching: document parsed, cues being split into batches
    - dispatching: batch calls in flight
    - succeeded / failed / cancelled: terminal
    """

    IDLE = "idle"
    BATCHING = "batching"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressInfo:
    progress: int
    completed_batches: int
    total_batches: int
    status: RunStatus = RunStatus.IDLE


@dataclass
class RunResult:
    """Outcome of one orchestrator run.

    Attributes:
        status: Terminal RunStatus.
        output: The rebuilt document (succeeded only).
        usage: Token usage summed over every call that resolved.
        format: Detected subtitle format, when parsing got that far.
        cue_count: Number of source cues.
        batch_count: Number of batches dispatched.
        transformed: Recombined transformed cues (succeeded only).
        validation: Validator result (succeeded only).
        warning: Non-fatal message, e.g. the validation finding count.
        error: Failure message (failed or cancelled).
        error_category: ErrorCategory value, content error kind, or
            unsupported_format / empty_subtitle.
        retryable: Whether retrying the run may help.
        retry_after_ms: Suggested wait before retrying.
    """

    status: RunStatus
    output: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    format: Optional[SubtitleFormat] = None
    cue_count: int = 0
    batch_count: int = 0
    transformed: List[TransformedCue] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    retryable: bool = False
    retry_after_ms: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED


def split_into_batches(items: Sequence[T], batch_count: int) -> list[list[T]]:
    """Split items into max(1, batch_count) contiguous, non-empty batches.

    Fewer batches are returned only when there are fewer items than
    batches. Sizes differ by at most one, larger batches first.
    """
    if not items:
        return []
    count = min(max(1, batch_count), len(items))
    size, extra = divmod(len(items), count)
    batches = []
    start = 0
    for i in range(count):
        end = start + size + (1 if i < extra else 0)
        batches.append(list(items[start:end]))
        start = end
    return batches


def build_request(system_instructions: str, cues: Sequence[Cue]) -> TransformRequest:
    """Map a batch of cues onto a provider request of skeleton texts."""
    return TransformRequest(
        system_instructions=system_instructions,
        cues=tuple(
            TransformCueInput(id=cue.id, text=cue.text_skeleton, speaker=cue.speaker, style=cue.style)
            for cue in cues
        ),
    )


class BatchOrchestrator:
    """Runs one subtitle document through a transform provider in batches.

    WHY: Keeps the run state (status, progress, usage) in one place so
    the pipeline functions it calls stay pure.

    RULES:
    - One instance per run; run() may be awaited once
    - on_progress is called synchronously from the event loop
    """

    def __init__(
        self,
        provider: BaseTransformProvider,
        system_instructions: str,
        batch_count: int = DEFAULT_BATCH_COUNT,
        on_progress: Callable[[ProgressInfo], None] | None = None,
    ) -> None:
        self.provider = provider
        self.system_instructions = system_instructions
        self.batch_count = max(1, batch_count)
        self.on_progress = on_progress
        self.status = RunStatus.IDLE
        self.usage = Usage()
        self._progress = 0
        self._completed = 0
        self._total = 0

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _report(self, progress: int) -> None:
        progress = max(self._progress, min(PROGRESS_DONE, int(progress)))
        self._progress = progress
        if self.on_progress:
            self.on_progress(ProgressInfo(
                progress=progress,
                completed_batches=self._completed,
                total_batches=self._total,
                status=self.status,
            ))

    def _batch_progress(self) -> int:
        span = PROGRESS_BATCHES_DONE - PROGRESS_BATCHED
        return PROGRESS_BATCHED + span * self._completed // max(1, self._total)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _finish(self, result: RunResult) -> RunResult:
        self.status = result.status
        result.usage = self.usage
        return result

    async def _run_batch(
        self,
        index: int,
        request: TransformRequest,
        cancel_token: CancellationToken,
    ) -> list[TransformedCue]:
        cancel_token.raise_if_cancelled()
        response = await self.provider.call(request, cancel_token)
        self.usage = self.usage + response.usage

        if response.truncated:
            raise TransformContentError(
                "truncated",
                "Batch {} response was cut off (finish_reason={}); use more batches".format(
                    index + 1, response.finish_reason
                ),
                response.text,
            )
        cues = parse_transform_response(response.text, request.cue_ids)

        self._completed += 1
        logger.debug("Batch %d/%d done (%d cues)", index + 1, self._total, len(cues))
        self._report(self._batch_progress())
        return cues

    async def run(
        self,
        content: str,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        """Transform a subtitle document.

        Args:
            content: The raw subtitle document (any supported format).
            cancel_token: Shared token; cancelling it stops every batch.

        Returns:
            RunResult. Failures and cancellation are reported in the
            result, not raised.

        Raises:
            Exception: Only for unexpected (non-transform) errors in a batch.
        """
        token = cancel_token or CancellationToken()
        self._report(PROGRESS_START)

        try:
            parsed = parse_subtitle(content)
            if not parsed.cues:
                raise EmptySubtitleError("Subtitle file contains no cues")
        except UnsupportedFormatError as exc:
            return self._finish(RunResult(
                status=RunStatus.FAILED, error=str(exc), error_category="unsupported_format",
            ))
        except EmptySubtitleError as exc:
            return self._finish(RunResult(
                status=RunStatus.FAILED, error=str(exc), error_category="empty_subtitle",
            ))
        self._report(PROGRESS_PARSED)

        self.status = RunStatus.BATCHING
        batches = split_into_batches(parsed.cues, self.batch_count)
        requests = [build_request(self.system_instructions, batch) for batch in batches]
        self._total = len(requests)
        self._report(PROGRESS_BATCHED)
        logger.info(
            "Transforming %d %s cues in %d batch(es) via %s",
            len(parsed.cues), parsed.format.value, len(requests), self.provider.label,
        )

        base = RunResult(
            status=RunStatus.DISPATCHING,
            format=parsed.format,
            cue_count=len(parsed.cues),
            batch_count=len(requests),
        )
        if token.cancelled:
            return self._cancelled(base)

        self.status = RunStatus.DISPATCHING
        outcomes = await asyncio.gather(
            *(self._run_batch(i, request, token) for i, request in enumerate(requests)),
            return_exceptions=True,
        )

        failure = self._resolve_failure(outcomes, token, base)
        if failure is not None:
            return failure

        transformed: list[TransformedCue] = []
        for batch_cues in outcomes:
            transformed.extend(batch_cues)

        validation = validate_transformation(parsed.cues, transformed)
        if not validation.valid:
            for finding in validation.findings:
                logger.warning("Validation: %s", finding.message)
        self._report(PROGRESS_VALIDATED)

        output = reconstruct_subtitle(parsed, transformed, content)
        base.status = RunStatus.SUCCEEDED
        base.output = output
        base.transformed = transformed
        base.validation = validation
        if not validation.valid:
            base.warning = "Completed with {}".format(validation.summary())
        result = self._finish(base)
        self._report(PROGRESS_DONE)
        return result

    def _cancelled(self, base: RunResult) -> RunResult:
        logger.info("Transformation cancelled")
        base.status = RunStatus.CANCELLED
        base.error = "Transformation cancelled"
        base.error_category = "cancelled"
        return self._finish(base)

    def _resolve_failure(
        self,
        outcomes: list,
        token: CancellationToken,
        base: RunResult,
    ) -> RunResult | None:
        """Turn gathered batch outcomes into a failed/cancelled result, or None."""
        errors = [(i, o) for i, o in enumerate(outcomes) if isinstance(o, BaseException)]
        if token.cancelled or any(
            isinstance(e, (TransformCancelledError, asyncio.CancelledError)) for _, e in errors
        ):
            return self._cancelled(base)
        if not errors:
            return None

        index, exc = errors[0]
        base.status = RunStatus.FAILED
        if isinstance(exc, TransformError):
            base.error = "Batch {}: {}".format(index + 1, exc.message)
            base.error_category = exc.category.value
            base.retryable = exc.retryable
            base.retry_after_ms = exc.retry_after_ms
        elif isinstance(exc, TransformContentError):
            base.error = "Batch {}: {}".format(index + 1, exc.message)
            base.error_category = exc.kind
            # A truncated batch succeeds with smaller batches
            base.retryable = exc.kind == "truncated"
        else:
            raise exc
        logger.error("Transformation failed: %s", base.error)
        return self._finish(base)


async def transform_subtitle(
    content: str,
    provider: BaseTransformProvider,
    system_instructions: str,
    batch_count: int = DEFAULT_BATCH_COUNT,
    on_progress: Callable[[ProgressInfo], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> RunResult:
    """Convenience wrapper: one BatchOrchestrator run."""
    orchestrator = BatchOrchestrator(provider, system_instructions, batch_count, on_progress)
    return await orchestrator.run(content, cancel_token)
