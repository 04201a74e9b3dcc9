"""
expiry.py - Time-gated unwind rules

The phase of the option leg is a pure function of the current time and the
timestamps the option protocol reports. Nothing here is stored; callers
recompute it on every operation.

    ACTIVE             now < expiry
    AWAITING_EXERCISE  expiry <= now < window_start
    EXERCISABLE        window_start <= now < window_end
    CLOSED             now >= window_end
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .core import OptionExpired, OutsideExerciseWindow


class ExpiryPhase(Enum):
    ACTIVE = "active"
    AWAITING_EXERCISE = "awaiting_exercise"
    EXERCISABLE = "exercisable"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ExpiryState:
    """Point-in-time view of the option leg's phase."""
    phase: ExpiryPhase
    expired: bool
    within_exercise_window: bool
    as_of: datetime

    def require_not_expired(self) -> None:
        """Raise OptionExpired unless the option is still live."""
        if self.expired:
            raise OptionExpired(f"option expired; phase {self.phase.value} as of {self.as_of}")

    def require_exercise_window(self) -> None:
        """Raise OutsideExerciseWindow unless exercise is open."""
        if not self.within_exercise_window:
            raise OutsideExerciseWindow(
                f"exercise not open; phase {self.phase.value} as of {self.as_of}"
            )


def compute_expiry_state(
    now: datetime,
    expiry: datetime,
    window_start: datetime,
    window_end: datetime,
) -> ExpiryState:
    """
    Derive the expiry phase at `now`.

    Args:
        now: Current ledger time
        expiry: Option expiry timestamp
        window_start: First instant exercise is allowed (>= expiry)
        window_end: First instant exercise is no longer allowed (> window_start)

    Raises:
        ValueError: If the window starts before expiry or is empty
    """
    if window_start < expiry:
        raise ValueError(f"exercise window starts at {window_start}, before expiry {expiry}")
    if window_end <= window_start:
        raise ValueError(f"exercise window [{window_start}, {window_end}) is empty")

    if now < expiry:
        phase = ExpiryPhase.ACTIVE
    elif now < window_start:
        phase = ExpiryPhase.AWAITING_EXERCISE
    elif now < window_end:
        phase = ExpiryPhase.EXERCISABLE
    else:
        phase = ExpiryPhase.CLOSED

    return ExpiryState(
        phase=phase,
        expired=phase is not ExpiryPhase.ACTIVE,
        within_exercise_window=phase is ExpiryPhase.EXERCISABLE,
        as_of=now,
    )
