"""State/store layer.

This package owns the single latest-snapshot record. Every submission that
passes authentication is funnelled through one compare-and-replace
operation here; nothing else mutates it.
"""

from gsirelay.state.decision import AcceptResult, IngestDecision
from gsirelay.state.store import StateSnapshot, StateStore

__all__ = [
    "AcceptResult",
    "IngestDecision",
    "StateSnapshot",
    "StateStore",
]
