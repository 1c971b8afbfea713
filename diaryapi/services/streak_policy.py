"""Streak rules for consecutive diary writing.

Pure functions only: no database or settings access. The ledger engine feeds in the
stored aggregate values and applies the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Optional, Sequence, Tuple

from diaryapi.models.points import TransactionReason
from diaryapi.schemas.points import PointSettingKey

STREAK_MILESTONES: Tuple[int, ...] = (7, 14, 30, 60, 100)

# milestone -> (bonus setting key, ledger reason)
MILESTONE_REWARDS: Dict[int, Tuple[PointSettingKey, TransactionReason]] = {
    7: (PointSettingKey.STREAK_7_BONUS, TransactionReason.STREAK_7),
    14: (PointSettingKey.STREAK_14_BONUS, TransactionReason.STREAK_14),
    30: (PointSettingKey.STREAK_30_BONUS, TransactionReason.STREAK_30),
    60: (PointSettingKey.STREAK_60_BONUS, TransactionReason.STREAK_60),
    100: (PointSettingKey.STREAK_100_BONUS, TransactionReason.STREAK_100),
}


@dataclass(frozen=True)
class StreakOutcome:
    new_streak: int
    newly_crossed: Tuple[int, ...] = field(default_factory=tuple)
    same_day: bool = False


def compute_streak(
    last_diary_date: Optional[date],
    current_streak: int,
    entry_date: date,
    milestones: Sequence[int] = STREAK_MILESTONES,
) -> StreakOutcome:
    """Return the streak after a diary write on ``entry_date``.

    - no previous write: streak starts at 1
    - same day: unchanged, never re-triggers a milestone
    - the following day: +1
    - any gap of two or more days, or a backfilled earlier date: reset to 1

    A milestone counts as newly crossed only when the new streak equals it and the
    previous streak was below it, so a user who resets and climbs back earns the
    milestone again on the next ascent.
    """
    if last_diary_date is None:
        previous, new_streak = 0, 1
    elif entry_date == last_diary_date:
        return StreakOutcome(new_streak=current_streak, same_day=True)
    elif entry_date == last_diary_date + timedelta(days=1):
        previous, new_streak = current_streak, current_streak + 1
    else:
        # reset: the new ascent starts from zero
        previous, new_streak = 0, 1

    crossed = tuple(m for m in sorted(milestones) if new_streak == m and previous < m)
    return StreakOutcome(new_streak=new_streak, newly_crossed=crossed)


def next_milestone(
    current_streak: int, milestones: Sequence[int] = STREAK_MILESTONES
) -> Optional[int]:
    """Smallest milestone strictly above ``current_streak``, or None."""
    for milestone in sorted(milestones):
        if milestone > current_streak:
            return milestone
    return None
