# === NAVMAP v1 ===
# {
#   "module": "StudyShelf.ResourceAcquisition.fallback.__init__",
#   "purpose": "Ordered fallback sequencing for resources and completions.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Fallback Sequencing

Attempts an ordered list of strategies until one produces a resource:
- Deterministic strategy order (never reordered at runtime)
- Per-strategy timeouts and an optional overall budget
- Cancellation between and during attempts
- At-most-one commit of the resolved resource
- Typed errors carried to the terminal outcome

Public API:
  FallbackSequencer - Runs the strategies
  Strategy / StrategyPolicy - What to try and how long to wait
  Resolved / Exhausted / Cancelled - Terminal outcomes
  CancellationToken / CommitSlot - Cancellation and commit control
  SequencePlan - Configuration
"""

from .cancellation import CancellationToken
from .commit import CommitSlot
from .sequencer import FallbackSequencer
from .types import (
    AttemptRecord,
    Cancelled,
    Exhausted,
    Resolved,
    SequenceOutcome,
    SequencePlan,
    SequencerState,
    Strategy,
    StrategyPolicy,
)

__all__ = [
    "AttemptRecord",
    "CancellationToken",
    "Cancelled",
    "CommitSlot",
    "Exhausted",
    "FallbackSequencer",
    "Resolved",
    "SequenceOutcome",
    "SequencePlan",
    "SequencerState",
    "Strategy",
    "StrategyPolicy",
]
