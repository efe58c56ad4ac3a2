"""Horizon, resolution-phase, and policy-window tables used by the labeler."""
from __future__ import annotations

from collections import OrderedDict
from typing import List, NamedTuple, Optional


MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

FIXED_HORIZONS_MS: "OrderedDict[str, int]" = OrderedDict(
    [
        ("15m", 15 * MINUTE_MS),
        ("1h", HOUR_MS),
        ("3h", 3 * HOUR_MS),
    ]
)
MAX_LOOKAHEAD_MS = 7 * 24 * HOUR_MS
LATE_WINDOW_HOURS = 24.0
NEAR_RESOLUTION_HOURS = 6.0


class ResolutionPhase(NamedTuple):
    key: str
    min_hours: float
    max_hours: float


RESOLUTION_PHASES: List[ResolutionPhase] = [
    ResolutionPhase("T_7d_3d", 72.0, 168.0),
    ResolutionPhase("T_3d_1d", 24.0, 72.0),
    ResolutionPhase("T_24h_6h", 6.0, 24.0),
    ResolutionPhase("T_6h_1h", 1.0, 6.0),
    ResolutionPhase("T_1h_close", 0.0, 1.0),
]
PHASE_KEYS: List[str] = [phase.key for phase in RESOLUTION_PHASES]

POLICY_WINDOW_HOURS_BY_PHASE = {
    "T_7d_3d": 24.0,
    "T_3d_1d": 12.0,
    "T_24h_6h": 6.0,
    "T_6h_1h": 1.0,
    "T_1h_close": 0.5,
}
DEFAULT_POLICY_WINDOW_HOURS = 24.0
MIN_POLICY_WINDOW_HOURS = 0.5
MAX_POLICY_WINDOW_HOURS = 24.0


def ordered_horizon_names() -> List[str]:
    """List fixed-horizon label keys in ascending horizon order."""
    return list(FIXED_HORIZONS_MS.keys())


def resolve_phase(ttr_hours: Optional[float]) -> Optional[str]:
    """Map hours-to-resolution onto its phase bucket; ``None`` outside ``[0, 168)``."""
    if ttr_hours is None:
        return None
    for phase in RESOLUTION_PHASES:
        if phase.min_hours <= ttr_hours < phase.max_hours:
            return phase.key
    return None


def policy_window_hours(phase: Optional[str], ttr_hours: Optional[float]) -> float:
    """Return the wait horizon for a phase, falling back to a quarter of the time left."""
    if phase is not None and phase in POLICY_WINDOW_HOURS_BY_PHASE:
        return POLICY_WINDOW_HOURS_BY_PHASE[phase]
    if ttr_hours is None:
        return DEFAULT_POLICY_WINDOW_HOURS
    return max(MIN_POLICY_WINDOW_HOURS, min(MAX_POLICY_WINDOW_HOURS, ttr_hours / 4.0))
