# src/opsfinder/physics/events.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, List, Optional, TYPE_CHECKING

import numpy as np

from .hits import Hit

if TYPE_CHECKING:
    from ..analysis.angles import AngleSignature


class EventType(str, Enum):
    UNKNOWN = "unknown"
    PROMPT = "prompt"
    THREE_GAMMA = "3g"


class CandidateContractError(ValueError):
    """A candidate reached a stage whose hit-count precondition it breaks."""


# quality bands
def is_annihilation_quality(q: float) -> bool:
    return 0.0 <= q < 0.5

def is_prompt_quality(q: float) -> bool:
    return 0.5 <= q < 1.0


@dataclass(slots=True)
class EventCandidate:
    """
    Time-contiguous group of hits from one window.

    event_type is set explicitly by the stage that accepts the candidate.
    annihilation_point / annihilation_time_ps come from the geometric solver,
    lifetime_ps from lifetime pairing. Hits are shared with the window,
    never modified.
    """
    hits: List[Hit]
    event_type: EventType = EventType.UNKNOWN
    window: int = -1
    lifetime_ps: Optional[float] = None
    annihilation_point: Optional[np.ndarray] = None
    annihilation_time_ps: Optional[float] = None
    angles: Optional["AngleSignature"] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.hits)

    def with_hits(self, hits: List[Hit]) -> "EventCandidate":
        """Copy of this candidate holding a different hit list."""
        return replace(self, hits=list(hits), meta=dict(self.meta))

    def tagged(self, event_type: EventType) -> "EventCandidate":
        return replace(self, hits=list(self.hits), event_type=event_type, meta=dict(self.meta))

    def annihilation_hits(self) -> List[Hit]:
        return [h for h in self.hits if is_annihilation_quality(h.quality)]

    def prompt_hits(self) -> List[Hit]:
        return [h for h in self.hits if is_prompt_quality(h.quality)]

    def n_low_confidence(self) -> int:
        return sum(1 for h in self.hits if h.low_confidence)
