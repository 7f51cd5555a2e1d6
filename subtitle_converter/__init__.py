"""Subtitle Converter: timed transcripts to captions, and safe subtitle transforms.

WHY: ASR services produce flat word arrays that no player can show, and
existing subtitle files carry timing and markup that a translation or
correction service would mangle. This package builds readable captions
from timed words and runs subtitle text through an external transform
while keeping everything except the words byte-for-byte intact.

HOW: Two pipelines share one cue IR:
  segment    timed tokens (Deepgram) → segmentation engine → captions
  transform  subtitle file → format adapter (placeholders) → batched
             provider calls → validator → reconstruction

RULES:
- Format adapters and the segmentation engine are pure and synchronous
- Only provider and Deepgram calls suspend; all of them honour a
  CancellationToken
- Adding a subtitle format = one adapter module plus one FORMATS entry
"""

__version__ = "0.1.0"
