"""Cue validator: compare transformed cues against their sources.

WHY: An external transform can drop cues, invent ids, return a cue
twice, or lose/duplicate placeholder tokens. Each of these corrupts the
rebuilt file in a different way. The validator finds them all in one
pass and reports them as structured findings the caller can log, show,
or count.

HOW: Index the source cues by id, walk the transformed list once, and
compare the placeholder token multiset of every matched pair with
collections.Counter.

RULES:
- Findings never raise; the caller decides what a finding means
- Placeholder comparison is by multiset: order may change, count may not
- Findings are reported in transformed-list order, then missing ids in
  source order
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from subtitle_converter.core.ir import Cue, TransformedCue
from subtitle_converter.core.placeholders import extract_tokens

MISSING_ID = "missing_id"
EXTRA_ID = "extra_id"
DUPLICATE_ID = "duplicate_id"
PLACEHOLDER_MISMATCH = "placeholder_mismatch"


@dataclass(frozen=True)
class ValidationFinding:
    """One problem found in a transformed cue set.

    Attributes:
        cue_id: The cue the finding is about.
        kind: missing_id, extra_id, duplicate_id, or placeholder_mismatch.
        message: Human-readable description.
        expected: What the source cue had (tokens, for placeholder findings).
        received: What the transform returned.
    """

    cue_id: str
    kind: str
    message: str
    expected: tuple[str, ...] = ()
    received: tuple[str, ...] = ()


@dataclass
class ValidationResult:
    findings: list[ValidationFinding] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.findings

    def count(self, kind: str) -> int:
        return sum(1 for f in self.findings if f.kind == kind)

    def summary(self) -> str:
        """One-line description, e.g. "2 findings (1 missing_id, 1 extra_id)"."""
        if not self.findings:
            return "No validation findings"
        kinds = Counter(f.kind for f in self.findings)
        parts = ", ".join("{} {}".format(n, kind) for kind, n in sorted(kinds.items()))
        noun = "finding" if len(self.findings) == 1 else "findings"
        return "{} {} ({})".format(len(self.findings), noun, parts)


def _multiset_diff(expected: Counter, received: Counter) -> str:
    missing = sorted((expected - received).elements())
    extra = sorted((received - expected).elements())
    parts = []
    if missing:
        parts.append("missing {}".format(", ".join(missing)))
    if extra:
        parts.append("unexpected {}".format(", ".join(extra)))
    return "; ".join(parts)


def validate_transformation(
    source_cues: Sequence[Cue],
    transformed: Iterable[TransformedCue],
) -> ValidationResult:
    """Check a transformed cue list against the cues it was made from.

    Args:
        source_cues: The parsed cues that were sent out.
        transformed: The cues that came back, in any order.

    Returns:
        ValidationResult whose findings list is empty when everything
        matches.
    """
    result = ValidationResult()
    sources = {cue.id: cue for cue in source_cues}
    seen: set[str] = set()

    for item in transformed:
        source = sources.get(item.id)
        if source is None:
            result.findings.append(ValidationFinding(
                cue_id=item.id,
                kind=EXTRA_ID,
                message="Transformed cue {} has no source cue".format(item.id),
            ))
            continue
        if item.id in seen:
            result.findings.append(ValidationFinding(
                cue_id=item.id,
                kind=DUPLICATE_ID,
                message="Cue {} was returned more than once".format(item.id),
            ))
            continue
        seen.add(item.id)

        expected = Counter(p.token for p in source.placeholders)
        received = Counter(extract_tokens(item.transformed_text))
        if expected != received:
            result.findings.append(ValidationFinding(
                cue_id=item.id,
                kind=PLACEHOLDER_MISMATCH,
                message="Placeholder mismatch in cue {}: {}".format(
                    item.id, _multiset_diff(expected, received)
                ),
                expected=tuple(sorted(expected.elements())),
                received=tuple(sorted(received.elements())),
            ))

    for cue in source_cues:
        if cue.id not in seen:
            result.findings.append(ValidationFinding(
                cue_id=cue.id,
                kind=MISSING_ID,
                message="Cue {} is missing from the transformed output".format(cue.id),
            ))
    return result
