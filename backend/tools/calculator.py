import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse

from backend.app.logging_config import ValidationError
from backend.app.schemas import (
    CurrentMacros, MaintenanceEstimateReq, MaintenanceEstimateResp,
    NutritionCalcReq, NutritionCalcResp, PhaseSummary
)
from .adjustment import KCAL_PER_KG, round_half_up

WEEKS_PER_MONTH = 4.33
FIBER_G_PER_1000_KCAL = 14
MIN_MEANINGFUL_ADJUSTMENT = 50
MIN_MAINTENANCE_SPAN_DAYS = 14

class NutritionCalculator:
    """Goal-setting math shared by the public calculator and coached phases"""

    def bmr_mifflin_st_jeor(self, weight: float, height: float, age: int, sex: str) -> float:
        base = 10 * weight + 6.25 * height - 5 * age
        return base + 5 if sex == "male" else base - 161

    def bmr_katch_mcardle(self, weight: float, body_fat_pct: float) -> float:
        lean_mass = weight * (1 - body_fat_pct / 100)
        return 370 + 21.6 * lean_mass

    def bmr(self, weight: float, height: float, age: int, sex: str,
            body_fat_pct: Optional[float] = None) -> float:
        """Katch-McArdle when body fat is known, Mifflin-St Jeor otherwise"""
        if body_fat_pct is not None:
            return self.bmr_katch_mcardle(weight, body_fat_pct)
        return self.bmr_mifflin_st_jeor(weight, height, age, sex)

    def tdee(self, bmr: float, activity_multiplier: float) -> float:
        return bmr * activity_multiplier

    def goal_calories(self, tdee: float, weight: float, goal_type: str,
                      rate_of_change: float) -> Dict[str, float]:
        """
        Loss rates are % of body weight per week, gain rates % per month.
        Returns {"calories", "deficit_percent"}.
        """
        if goal_type == "maintenance":
            return {"calories": tdee, "deficit_percent": 0.0}

        energy = (rate_of_change / 100) * weight * KCAL_PER_KG
        if goal_type == "loss":
            calories = tdee - energy / 7
        else:
            calories = tdee + energy / (WEEKS_PER_MONTH * 7)

        return {"calories": calories, "deficit_percent": ((calories - tdee) / tdee) * 100}

    def protein_grams(self, weight: float, protein_per_kg: float,
                      body_fat_pct: Optional[float] = None, use_ffm: bool = False) -> float:
        if use_ffm and body_fat_pct is not None:
            return weight * (1 - body_fat_pct / 100) * protein_per_kg
        return weight * protein_per_kg

    def macros(self, calories: float, protein_g: float, fat_pct: float) -> Dict[str, int]:
        fat_kcal = calories * (fat_pct / 100)
        carb_kcal = calories - (protein_g * 4 + fat_kcal)
        return {
            "protein": round_half_up(protein_g),
            "fat": round_half_up(fat_kcal / 9),
            "carbs": round_half_up(carb_kcal / 4),
            "fiber": round_half_up((calories / 1000) * FIBER_G_PER_1000_KCAL),
        }

    def target_weight_from_body_fat(self, weight: float, body_fat_pct: float,
                                    target_body_fat_pct: float) -> float:
        lean_mass = weight * (1 - body_fat_pct / 100)
        return lean_mass / (1 - target_body_fat_pct / 100)

    def projected_weeks(self, current_weight: float, target_weight: float,
                        rate_of_change: float, goal_type: str,
                        break_frequency_weeks: Optional[int] = None,
                        break_duration_weeks: Optional[int] = None) -> int:
        remaining = abs(current_weight - target_weight)
        weekly_kg = (rate_of_change / 100) * current_weight
        if goal_type == "gain":
            weekly_kg = weekly_kg / WEEKS_PER_MONTH

        if weekly_kg == 0:
            return 0

        weeks = remaining / weekly_kg
        if break_frequency_weeks and break_duration_weeks and break_frequency_weeks > 0 and break_duration_weeks > 0:
            weeks += math.floor(weeks / break_frequency_weeks) * break_duration_weeks

        return round_half_up(weeks)

    def calculate(self, req: NutritionCalcReq) -> NutritionCalcResp:
        bmr = self.bmr(req.weight_kg, req.height_cm, req.age, req.sex, req.body_fat_percentage)
        tdee = self.tdee(bmr, req.activity_multiplier)
        goal = self.goal_calories(tdee, req.weight_kg, req.goal_type, req.rate_of_change)
        protein = self.protein_grams(
            req.weight_kg, req.protein_per_kg, req.body_fat_percentage, req.use_ffm
        )
        macros = self.macros(goal["calories"], protein, req.fat_percentage)

        projected = None
        if req.target_value and req.target_value > 0 and req.goal_type in ("loss", "gain"):
            target_weight = 0.0
            if req.target_goal_type == "weight":
                target_weight = req.target_value
            elif req.target_goal_type == "bodyfat" and req.body_fat_percentage:
                target_weight = self.target_weight_from_body_fat(
                    req.weight_kg, req.body_fat_percentage, req.target_value
                )
            if target_weight > 0:
                projected = self.projected_weeks(
                    req.weight_kg, target_weight, req.rate_of_change, req.goal_type,
                    req.diet_break_frequency_weeks, req.diet_break_duration_weeks
                )

        return NutritionCalcResp(
            bmr=round_half_up(bmr),
            tdee=round_half_up(tdee),
            calories=round_half_up(goal["calories"]),
            deficit_percent=round_half_up(goal["deficit_percent"] * 10) / 10,
            projected_weeks=projected,
            **macros,
        )

    def reverse_tdee(self, avg_calories: float, weight_change_kg: float, total_days: int) -> float:
        """Observed TDEE = average intake - (weight change * 7700 / days)"""
        return avg_calories - (weight_change_kg * KCAL_PER_KG) / total_days

    def maintenance_calories(self, avg_intake: float, weekly_change_kg: float) -> int:
        return round_half_up(self.reverse_tdee(avg_intake, weekly_change_kg, 7))

    def rolling_average(self, logs: List[Dict[str, Any]], target_date: date) -> Optional[float]:
        """7-day weight average ending on (and including) target_date"""
        window_start = target_date - timedelta(days=6)
        weights = [
            log["weight_kg"] for log in logs
            if window_start <= _as_date(log["log_date"]) <= target_date
        ]
        if not weights:
            return None
        return sum(weights) / len(weights)

    def capped_adjustment(self, suggested: float, max_change: int = 300) -> int:
        if abs(suggested) <= MIN_MEANINGFUL_ADJUSTMENT:
            return 0
        capped = min(abs(suggested), max_change)
        return int(capped if suggested > 0 else -capped)

    def estimate_maintenance(self, req: MaintenanceEstimateReq) -> MaintenanceEstimateResp:
        """
        Back out maintenance calories from average intake and the trend between
        the first and the latest 7-day weight averages. Needs two full weeks.
        """
        logs = [log.model_dump() for log in req.weight_logs if log.weight_kg > 0]
        if any(log["log_date"] is None for log in logs):
            raise ValidationError("Every weigh-in needs a log_date", "weight_logs")

        dates = sorted(log["log_date"] for log in logs)
        if not dates or (dates[-1] - dates[0]).days + 1 < MIN_MAINTENANCE_SPAN_DAYS:
            raise ValidationError(
                f"Log weigh-ins across at least {MIN_MAINTENANCE_SPAN_DAYS} days", "weight_logs"
            )

        first_window_end = dates[0] + timedelta(days=6)
        days = (dates[-1] - first_window_end).days
        starting = self.rolling_average(logs, first_window_end)
        current = self.rolling_average(logs, dates[-1])
        weekly_change = (current - starting) / days * 7
        maintenance = self.maintenance_calories(req.avg_daily_calories, weekly_change)

        suggested = new_target = None
        if req.current_calories:
            suggested = self.capped_adjustment(maintenance - req.current_calories, req.max_change)
            new_target = req.current_calories + suggested

        return MaintenanceEstimateResp(
            starting_average_kg=round(starting, 2),
            current_average_kg=round(current, 2),
            days=days,
            weekly_change_kg=round(weekly_change, 2),
            maintenance_calories=maintenance,
            suggested_adjustment=suggested,
            new_target_calories=new_target,
        )

    def current_macros(self, goal: Dict[str, Any], calories: int) -> CurrentMacros:
        """Protein stays anchored to starting weight; fat and carbs follow calories"""
        weight = goal["starting_weight_kg"]
        per_kg = goal.get("protein_intake_g_per_kg") or 2.0
        body_fat = goal.get("body_fat_percentage")
        if goal.get("protein_based_on_ffm") and body_fat:
            weight = weight * (1 - body_fat / 100)

        protein = round_half_up(weight * per_kg)
        fat = round_half_up((calories * ((goal.get("fat_intake_percentage") or 30) / 100)) / 9)
        carbs = round_half_up((calories - protein * 4 - fat * 9) / 4)
        return CurrentMacros(calories=calories, protein_g=protein, fat_g=fat, carbs_g=max(0, carbs))

    def phase_summary(self, goal: Dict[str, Any], weeks: List[Dict[str, Any]]) -> Optional[PhaseSummary]:
        logged = [w for w in weeks if w.get("average_weight_kg")]
        if not logged:
            return None

        logged.sort(key=lambda w: w["week_number"])
        start_weight = goal["starting_weight_kg"]
        end_weight = logged[-1]["average_weight_kg"]
        total_change = end_weight - start_weight

        target = goal.get("target_weight_kg")
        target_change = target - start_weight if target else 0.0
        percent_of_target = (total_change / target_change) * 100 if target_change else 0.0

        answered = [
            w for w in logged
            if w.get("followed_calories") is not None and w.get("tracked_accurately") is not None
        ]
        adherent = [w for w in answered if w["followed_calories"] and w["tracked_accurately"]]
        adherence = (len(adherent) / len(answered)) * 100 if answered else 0.0

        calories = [w["new_daily_calories"] for w in logged if w.get("new_daily_calories")]
        avg_calories = sum(calories) / len(calories) if calories else float(goal["daily_calories"])

        return PhaseSummary(
            start_weight=start_weight,
            end_weight=end_weight,
            total_change=total_change,
            target_change=target_change,
            percent_of_target=percent_of_target,
            average_adherence=adherence,
            diet_breaks_taken=sum(1 for w in weeks if w.get("is_diet_break_week")),
            avg_daily_calories=avg_calories,
        )

    def estimated_total_weeks(self, goal: Dict[str, Any], weeks: List[Dict[str, Any]],
                              current_week: int, current_weight: float) -> int:
        """
        Re-estimate phase length from the calorie drift since the first
        check-in. Each kcal/day of drift moves the weekly rate by 7/7700 kg.
        """
        estimate = goal.get("estimated_duration_weeks") or 0
        target = goal.get("target_weight_kg") or goal["starting_weight_kg"]
        submitted = sorted(
            (w for w in weeks if w.get("new_daily_calories")), key=lambda w: w["week_number"]
        )

        if not submitted or goal["goal_type"] == "maintenance" or target == goal["starting_weight_kg"]:
            return estimate

        first = submitted[0]
        original = first["new_daily_calories"] - (first.get("calorie_adjustment") or 0)
        adjusted = submitted[-1]["new_daily_calories"]

        drift_kg = (abs(adjusted - original) * 7) / KCAL_PER_KG
        base_rate = ((goal.get("weekly_rate_percentage") or 0) / 100) * goal["starting_weight_kg"]
        if goal["goal_type"] == "loss":
            rate = base_rate + (drift_kg if adjusted < original else -drift_kg)
        else:
            rate = base_rate + (drift_kg if adjusted > original else -drift_kg)

        if rate <= 0:
            return estimate

        remaining_weeks = math.ceil(abs(current_weight - target) / rate)
        estimate = current_week + remaining_weeks
        frequency = goal.get("diet_break_frequency_weeks")
        if goal.get("diet_breaks_enabled") and frequency:
            estimate += (remaining_weeks // frequency) * (goal.get("diet_break_duration_weeks") or 0)
        return estimate

def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return isoparse(str(value)).date()

nutrition_calculator = NutritionCalculator()
