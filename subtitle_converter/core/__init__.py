"""Core IR, segmentation, validation, and batch orchestration modules.

WHY: The core package holds the parts that encode the conversion
policies: the cue IR, placeholder tokenization, the segmentation engine,
the cue validator, and the batch orchestrator.

HOW: ir.py defines the data structures, placeholders.py protects markup,
segmenter.py builds captions from timed tokens, validator.py checks
transformed cues, orchestrator.py runs batched transforms end to end,
cancellation.py provides the shared cancellation token, prompts.py the
default instruction sets.

RULES:
- IR dataclasses are the contract, change with care
- Only orchestrator.py performs I/O (through the api package)
- Nothing is imported here, so formats/ and api/ can import core
  submodules without cycles
"""
