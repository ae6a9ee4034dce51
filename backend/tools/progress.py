"""
Weekly progress persistence: draft weigh-ins, week submission and
propagation of the new calorie target onto the active goal.
"""
import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse
from supabase import Client

from backend.app.database import retry
from backend.app.logging_config import DatabaseError, NotFoundError
from backend.app.schemas import (
    GoalContext, SaveWeighInsReq, SubmitWeekReq, SubmitWeekResp,
    WeekCheckIn, WeeklyProgress
)
from backend.app.validation import validate_notes, validate_week_number
from .adjustment import MIN_WEIGH_INS, weekly_adjuster

logger = logging.getLogger(__name__)

MEASUREMENT_FIELDS = (
    "waist_cm", "chest_cm", "arms_cm", "glutes_cm", "thigh_cm", "calfs_cm",
    "body_fat_percentage", "daily_steps_avg",
)

class ProgressService:
    def get_active_goal(self, db: Client, user_id: str) -> Dict[str, Any]:
        try:
            result = retry(lambda: (
                db.table("nutrition_goals")
                .select("*")
                .eq("user_id", user_id)
                .eq("is_active", True)
                .limit(1)
                .execute()
            ))
        except Exception as e:
            raise DatabaseError("select", str(e)) from e

        if not result.data:
            raise NotFoundError("nutrition_goal", "No active nutrition goal. Please set a goal first.")
        return result.data[0]

    def list_weeks(self, db: Client, goal_id: str) -> List[Dict[str, Any]]:
        try:
            result = retry(lambda: (
                db.table("weekly_progress")
                .select("*")
                .eq("goal_id", goal_id)
                .order("week_number")
                .execute()
            ))
        except Exception as e:
            raise DatabaseError("select", str(e)) from e
        return result.data or []

    def current_week_number(self, goal: Dict[str, Any], today: Optional[date] = None) -> int:
        start = _parse_date(goal.get("start_date"))
        if start is None:
            return 1
        days = ((today or date.today()) - start).days
        return max(1, math.ceil(days / 7))

    def week_start_date(self, goal: Dict[str, Any], week_number: int) -> Optional[date]:
        start = _parse_date(goal.get("start_date"))
        if start is None:
            return None
        return start + timedelta(weeks=week_number - 1)

    def is_diet_break_week(self, goal: Dict[str, Any], week_number: int) -> bool:
        return weekly_adjuster.is_diet_break_week(
            week_number,
            bool(goal.get("diet_breaks_enabled")),
            goal.get("diet_break_frequency_weeks"),
        )

    def calories_before_week(self, goal: Dict[str, Any], weeks: List[Dict[str, Any]],
                             week_number: int) -> int:
        """
        Calories in force when the week started. A week that was already
        submitted is rewound by its own adjustment so resubmitting it does
        not compound.
        """
        for row in weeks:
            if row["week_number"] == week_number and row.get("new_daily_calories"):
                return int(row["new_daily_calories"] - (row.get("calorie_adjustment") or 0))

        earlier = [
            row for row in weeks
            if row["week_number"] < week_number and row.get("new_daily_calories")
        ]
        if earlier:
            return int(max(earlier, key=lambda r: r["week_number"])["new_daily_calories"])
        return int(goal["daily_calories"])

    def goal_context(self, goal: Dict[str, Any], current_calories: int) -> GoalContext:
        return GoalContext(
            starting_weight_kg=goal["starting_weight_kg"],
            goal_type=goal["goal_type"],
            weekly_rate_percentage=goal.get("weekly_rate_percentage") or 0,
            current_calories=current_calories,
        )

    def save_weigh_ins(self, db: Client, user_id: str, goal: Dict[str, Any],
                       week_number: int, req: SaveWeighInsReq) -> WeeklyProgress:
        """Draft save; the average is stored once three weigh-ins exist"""
        validate_week_number(week_number)
        logs = [log for log in req.weight_logs if log.weight_kg > 0]
        average = None
        if len(logs) >= MIN_WEIGH_INS:
            average = sum(log.weight_kg for log in logs) / len(logs)

        row = {
            "user_id": user_id,
            "goal_id": goal["id"],
            "week_number": week_number,
            "week_start_date": _iso(self.week_start_date(goal, week_number)),
            "weight_logs": [log.model_dump(mode="json") for log in logs],
            "average_weight_kg": average,
            "notes": validate_notes(req.notes),
            **_measurement_columns(req.measurements),
        }

        try:
            result = (
                db.table("weekly_progress")
                .upsert(row, on_conflict="user_id,goal_id,week_number")
                .execute()
            )
        except Exception as e:
            raise DatabaseError("upsert", str(e)) from e

        if not result.data:
            raise DatabaseError("upsert", "Failed to save weigh-ins")

        logger.info(
            f"Saved {len(logs)} weigh-ins",
            extra={"user_id": user_id, "goal_id": goal["id"], "week_number": week_number}
        )
        return WeeklyProgress(**result.data[0])

    def submit_week(self, db: Client, user_id: str, goal: Dict[str, Any],
                    week_number: int, req: SubmitWeekReq) -> SubmitWeekResp:
        validate_week_number(week_number)
        weeks = self.list_weeks(db, goal["id"])
        existing = next((w for w in weeks if w["week_number"] == week_number), None)
        previous = next((w for w in weeks if w["week_number"] == week_number - 1), None)

        check_in = WeekCheckIn(
            week_number=week_number,
            weigh_ins=[log.weight_kg for log in req.weight_logs],
            followed_calories=req.followed_calories,
            tracked_accurately=req.tracked_accurately,
            is_diet_break_week=self.is_diet_break_week(goal, week_number),
        )
        context = self.goal_context(goal, self.calories_before_week(goal, weeks, week_number))
        result = weekly_adjuster.compute(
            context, check_in, previous.get("average_weight_kg") if previous else None
        )

        row = {
            "user_id": user_id,
            "goal_id": goal["id"],
            "week_number": week_number,
            "week_start_date": _iso(self.week_start_date(goal, week_number)),
            "weight_logs": [log.model_dump(mode="json") for log in req.weight_logs if log.weight_kg > 0],
            "average_weight_kg": result.average_weight_kg,
            "weight_change_kg": result.weight_change_kg,
            "weight_change_percentage": result.weight_change_percentage,
            "expected_change_kg": result.expected_change_kg,
            "followed_calories": req.followed_calories,
            "tracked_accurately": req.tracked_accurately,
            "calorie_adjustment": result.calorie_adjustment,
            "new_daily_calories": result.new_daily_calories,
            "is_diet_break_week": result.is_diet_break_week,
            "needs_review": result.needs_review,
            "adjustment_reason": result.reason or None,
            "notes": validate_notes(req.notes),
            **_measurement_columns(req.measurements),
        }

        try:
            if existing:
                saved = db.table("weekly_progress").update(row).eq("id", existing["id"]).execute()
            else:
                saved = db.table("weekly_progress").insert(row).execute()
        except Exception as e:
            raise DatabaseError("update" if existing else "insert", str(e)) from e

        if not saved.data:
            raise DatabaseError("insert", "Failed to save weekly progress")

        # Only the latest submitted week owns the goal's calories; a resubmitted
        # week that previously moved them must also move them back
        goal_updated = False
        later_submitted = [
            w["week_number"] for w in weeks
            if w["week_number"] > week_number and w.get("new_daily_calories")
        ]
        previously_adjusted = bool(existing and existing.get("calorie_adjustment"))
        if later_submitted:
            logger.info(
                "Resubmitted an earlier week; goal calories left to the latest week",
                extra={"goal_id": goal["id"], "week_number": week_number, "latest_week": max(later_submitted)}
            )
        elif result.calorie_adjustment != 0 or previously_adjusted:
            try:
                db.table("nutrition_goals").update(
                    {"daily_calories": result.new_daily_calories}
                ).eq("id", goal["id"]).execute()
            except Exception as e:
                raise DatabaseError("update", str(e)) from e
            goal_updated = True

        logger.info(
            f"Week submitted: {result.reason}",
            extra={
                "user_id": user_id,
                "goal_id": goal["id"],
                "week_number": week_number,
            }
        )

        if result.needs_review:
            logger.warning(
                "Diet break week flagged for coach review",
                extra={"user_id": user_id, "goal_id": goal["id"], "week_number": week_number}
            )

        return SubmitWeekResp(
            progress=WeeklyProgress(**saved.data[0]),
            adjustment=result,
            goal_updated=goal_updated,
        )

def _measurement_columns(measurements) -> Dict[str, Any]:
    if measurements is None:
        return {}
    values = measurements.model_dump()
    return {field: values.get(field) for field in MEASUREMENT_FIELDS}

def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return isoparse(str(value)).date()

def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None

progress_service = ProgressService()
