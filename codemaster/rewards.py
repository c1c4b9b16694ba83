"""Points, XP, level and daily bonus calculations.

Everything here is pure: no database access and no clock reads unless a
``now`` is passed in. The submission glue in ``codemaster.services`` feeds
these functions and persists what they return.
"""
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Optional

PERFECT_SOLVE_NUMERATOR = 3  # 1.5x as 3/2 keeps the floor exact
PERFECT_SOLVE_DENOMINATOR = 2
HINT_PENALTY_TENTHS = 1  # 10% per hint
MAX_HINT_PENALTY_TENTHS = 5  # capped at 50%

DAILY_BONUS_BASE_XP = 50
DAILY_BONUS_XP_PER_STREAK_DAY = 10
DAILY_BONUS_MAX_STREAK_BONUS = 200

XP_PER_LEVEL_STEP = 100


@dataclass
class SubmissionResult:
    tests_passed: int
    tests_total: int
    hints_used: int = 0
    is_perfect_solve: bool = False
    base_points: int = 0
    active_multiplier: Optional[float] = 1.0

    @property
    def all_tests_passed(self) -> bool:
        return self.tests_total > 0 and self.tests_passed == self.tests_total


@dataclass
class Bonus:
    type: str
    name: str
    xp: Optional[int] = None
    coins: Optional[int] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class RewardBreakdown:
    base_xp: int
    total_xp: int
    coins: int = 0
    bonuses: list = field(default_factory=list)
    multiplier: float = 1.0
    points_earned: int = 0

    def add_bonus(self, bonus: Bonus) -> None:
        """Attach a bonus and fold its XP and coins into the totals."""
        self.bonuses.append(bonus)
        self.total_xp += bonus.xp or 0
        self.coins += bonus.coins or 0

    def to_dict(self) -> dict:
        return {
            "base_xp": self.base_xp,
            "total_xp": self.total_xp,
            "coins": self.coins,
            "bonuses": [b.to_dict() for b in self.bonuses],
            "multiplier": self.multiplier,
            "points_earned": self.points_earned,
        }


@dataclass
class DailyBonus:
    base_xp: int
    streak_bonus: int
    total_xp: int


def _clean_multiplier(multiplier) -> float:
    """Missing, unparsable or non-finite multipliers count as 1.0; negative ones as 0."""
    if multiplier is None:
        return 1.0
    try:
        value = float(multiplier)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(value):
        return 1.0
    return max(value, 0.0)


def calculate_points(base_points: int, is_perfect_solve: bool, hints_used: int) -> int:
    """Points for a fully passing submission: perfect-solve bonus, then hint penalty."""
    points = max(int(base_points), 0)
    if is_perfect_solve:
        points = points * PERFECT_SOLVE_NUMERATOR // PERFECT_SOLVE_DENOMINATOR
    penalty = min(max(int(hints_used), 0) * HINT_PENALTY_TENTHS, MAX_HINT_PENALTY_TENTHS)
    return points * (10 - penalty) // 10


def compute_reward(submission: SubmissionResult) -> RewardBreakdown:
    base_points = max(int(submission.base_points), 0)
    multiplier = _clean_multiplier(submission.active_multiplier)

    if not submission.all_tests_passed:
        return RewardBreakdown(base_xp=base_points, total_xp=0, multiplier=multiplier, points_earned=0)

    points = calculate_points(base_points, submission.is_perfect_solve, submission.hints_used)
    xp = math.floor(points * multiplier)
    return RewardBreakdown(base_xp=base_points, total_xp=xp, multiplier=multiplier, points_earned=points)


def compute_daily_bonus(current_streak: int) -> DailyBonus:
    streak = max(int(current_streak or 0), 0)
    streak_bonus = min(streak * DAILY_BONUS_XP_PER_STREAK_DAY, DAILY_BONUS_MAX_STREAK_BONUS)
    return DailyBonus(
        base_xp=DAILY_BONUS_BASE_XP,
        streak_bonus=streak_bonus,
        total_xp=DAILY_BONUS_BASE_XP + streak_bonus,
    )


def daily_bonus_window(now: datetime) -> tuple[datetime, datetime]:
    """[00:00:00.000, 23:59:59.999) of the UTC calendar day containing ``now`` (naive UTC)."""
    start = datetime(now.year, now.month, now.day)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def active_multiplier(multiplier, expires_at: Optional[datetime], now: datetime) -> float:
    """A stored multiplier only applies until it expires; otherwise XP is unscaled."""
    if multiplier is None or expires_at is None or expires_at <= now:
        return 1.0
    return _clean_multiplier(multiplier)


def level_for_xp(xp: int) -> int:
    # Level n -> n + 1 costs 100 * n XP.
    level = 1
    remaining = max(int(xp or 0), 0)
    while remaining >= level * XP_PER_LEVEL_STEP:
        remaining -= level * XP_PER_LEVEL_STEP
        level += 1
    return level


def xp_progress(xp: int) -> dict:
    total = max(int(xp or 0), 0)
    level = level_for_xp(total)
    spent = XP_PER_LEVEL_STEP * (level - 1) * level // 2
    return {
        "level": level,
        "current_xp": total - spent,
        "xp_to_next_level": level * XP_PER_LEVEL_STEP,
        "total_xp": total,
    }
