"""
Weekly calorie adjustment.

Each check-in compares the week's average weight against a reference (the
starting weight in week 1, the previous week's average afterwards) and, when
the client was adherent and the change is off course, moves the daily calorie
target using the 7700 kcal/kg rule.
"""
import math
from typing import List, Optional

from backend.app.logging_config import ValidationError
from backend.app.schemas import AdjustmentResult, GoalContext, WeekCheckIn

KCAL_PER_KG = 7700
MAX_DAILY_ADJUSTMENT = 400
ADJUSTMENT_TOLERANCE = 0.30
DIET_BREAK_THRESHOLD_PCT = 0.15
MIN_WEIGH_INS = 3

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def clamp_adjustment(kcal: int, limit: int = MAX_DAILY_ADJUSTMENT) -> int:
    return max(-limit, min(limit, kcal))

class WeeklyAdjuster:
    def average_weigh_ins(self, weigh_ins: List[float]) -> float:
        """Mean of the week's positive readings; at least three are required."""
        valid = [float(w) for w in weigh_ins if w is not None and w > 0]
        if len(valid) < MIN_WEIGH_INS:
            raise ValidationError(
                f"Please log at least {MIN_WEIGH_INS} weights for the week", "weigh_ins"
            )
        return sum(valid) / len(valid)

    def reference_weight(self, week_number: int, starting_weight_kg: float,
                         previous_week_avg: Optional[float]) -> Optional[float]:
        if week_number == 1:
            return starting_weight_kg
        return previous_week_avg or None

    def expected_change(self, goal_type: str, weekly_rate_percentage: float,
                        reference_weight_kg: float, is_diet_break_week: bool = False) -> float:
        if is_diet_break_week or goal_type == "maintenance":
            return 0.0
        change = reference_weight_kg * (weekly_rate_percentage / 100)
        return -change if goal_type == "loss" else change

    def is_diet_break_week(self, week_number: int, diet_breaks_enabled: bool,
                           frequency_weeks: Optional[int]) -> bool:
        if not diet_breaks_enabled or not frequency_weeks or frequency_weeks <= 0:
            return False
        return week_number % frequency_weeks == 0

    def compute(self, goal: GoalContext, check_in: WeekCheckIn,
                previous_week_avg: Optional[float] = None) -> AdjustmentResult:
        """
        Run the weekly rule for one check-in.

        Diet-break weeks never change calories; a swing beyond 0.15% of the
        reference only sets `needs_review` for the coach. Non-adherent weeks
        are recorded with a reason and no change.
        """
        week = check_in.week_number
        average = self.average_weigh_ins(check_in.weigh_ins)
        current = goal.current_calories
        reference = self.reference_weight(week, goal.starting_weight_kg, previous_week_avg)

        if reference is None:
            return AdjustmentResult(
                week_number=week,
                average_weight_kg=average,
                new_daily_calories=current,
                is_diet_break_week=check_in.is_diet_break_week,
                reason="No adjustment: previous week has no average weight",
            )

        weight_change = average - reference
        change_pct = (weight_change / reference) * 100
        expected = self.expected_change(
            goal.goal_type, goal.weekly_rate_percentage, reference, check_in.is_diet_break_week
        )

        base = dict(
            week_number=week,
            average_weight_kg=average,
            reference_weight_kg=reference,
            weight_change_kg=weight_change,
            weight_change_percentage=change_pct,
            expected_change_kg=expected,
            new_daily_calories=current,
            is_diet_break_week=check_in.is_diet_break_week,
        )

        if check_in.is_diet_break_week:
            if abs(change_pct) > DIET_BREAK_THRESHOLD_PCT:
                return AdjustmentResult(
                    **base,
                    needs_review=True,
                    reason="Diet break week: weight change exceeded ±0.15% threshold",
                )
            return AdjustmentResult(**base, reason="Diet break week: weight held at maintenance")

        if not (check_in.followed_calories and check_in.tracked_accurately):
            return AdjustmentResult(**base, reason="No adjustment: poor adherence or tracking")

        direction_match = (
            (goal.goal_type == "loss" and weight_change <= 0)
            or (goal.goal_type == "gain" and weight_change >= 0)
            or goal.goal_type == "maintenance"
        )
        expected_abs = abs(expected)
        difference = abs(abs(weight_change) - expected_abs)

        if direction_match and difference <= expected_abs * ADJUSTMENT_TOLERANCE:
            return AdjustmentResult(**base, reason=f"Week {week}: on track, no change needed")

        adjustment = clamp_adjustment(
            round_half_up(((expected - weight_change) * KCAL_PER_KG) / 7)
        )

        if not direction_match:
            reason = f"Week {week}: weight moved in wrong direction"
        elif expected_abs == 0:
            reason = f"Week {week}: weight drifted {weight_change:+.2f} kg from maintenance"
        else:
            reason = f"Week {week}: weight change was {round_half_up(difference / expected_abs * 100)}% off target"

        base["new_daily_calories"] = current + adjustment
        return AdjustmentResult(
            **base,
            calorie_adjustment=adjustment,
            adjusted=adjustment != 0,
            reason=reason,
        )

weekly_adjuster = WeeklyAdjuster()

def compute_weekly_adjustment(goal: GoalContext, check_in: WeekCheckIn,
                              previous_week_avg: Optional[float] = None) -> AdjustmentResult:
    return weekly_adjuster.compute(goal, check_in, previous_week_avg)
