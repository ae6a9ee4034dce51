from datetime import date

import pytest

from backend.app.logging_config import ValidationError
from backend.app.schemas import MaintenanceEstimateReq, NutritionCalcReq, WeighInLog
from backend.tools.calculator import nutrition_calculator as calc

class TestEnergy:
    def test_mifflin_st_jeor(self):
        assert calc.bmr_mifflin_st_jeor(80, 180, 30, "male") == pytest.approx(1780)
        assert calc.bmr_mifflin_st_jeor(80, 180, 30, "female") == pytest.approx(1614)

    def test_katch_mcardle_used_with_body_fat(self):
        assert calc.bmr(80, 180, 30, "male", body_fat_pct=20) == pytest.approx(1752.4)

    def test_loss_calories_use_weekly_rate(self):
        result = calc.goal_calories(2500, 80, "loss", 0.5)
        assert result["calories"] == pytest.approx(2060)
        assert result["deficit_percent"] == pytest.approx(-17.6)

    def test_gain_calories_use_monthly_rate(self):
        result = calc.goal_calories(2500, 80, "gain", 1.0)
        assert result["calories"] == pytest.approx(2500 + 6160 / (4.33 * 7))

    def test_maintenance(self):
        assert calc.goal_calories(2500, 80, "maintenance", 0.5) == {"calories": 2500, "deficit_percent": 0.0}

    def test_reverse_tdee(self):
        assert calc.reverse_tdee(2000, -0.5, 7) == pytest.approx(2550)
        assert calc.maintenance_calories(2000, 0.5) == 1450

class TestMacros:
    def test_macro_split(self):
        assert calc.macros(2000, 150, 25) == {"protein": 150, "fat": 56, "carbs": 225, "fiber": 28}

    def test_protein_from_fat_free_mass(self):
        assert calc.protein_grams(100, 2.0, body_fat_pct=30, use_ffm=True) == pytest.approx(140)
        assert calc.protein_grams(100, 2.0, body_fat_pct=30) == pytest.approx(200)

    def test_current_macros_follow_calories(self, goal):
        macros = calc.current_macros({**goal, "starting_weight_kg": 80}, 2000)
        assert macros.protein_g == 160
        assert macros.fat_g == 67
        assert macros.carbs_g == 189

class TestProjection:
    def test_projected_weeks(self):
        assert calc.projected_weeks(80, 74, 0.5, "loss") == 15

    def test_projected_weeks_with_diet_breaks(self):
        assert calc.projected_weeks(80, 74, 0.5, "loss", 8, 1) == 16

    def test_zero_rate(self):
        assert calc.projected_weeks(80, 75, 0, "loss") == 0

    def test_target_weight_from_body_fat(self):
        assert calc.target_weight_from_body_fat(100, 30, 20) == pytest.approx(87.5)

    def test_calculate_chains_everything(self):
        req = NutritionCalcReq(
            weight_kg=80, height_cm=180, age=30, sex="male", activity_multiplier=1.5,
            goal_type="loss", rate_of_change=0.5, protein_per_kg=2.0, fat_percentage=25,
            target_goal_type="weight", target_value=74,
        )
        resp = calc.calculate(req)
        assert resp.bmr == 1780
        assert resp.tdee == 2670
        assert resp.calories == 2230
        assert resp.protein == 160
        assert resp.projected_weeks == 15

class TestTracking:
    def test_rolling_average_window(self):
        logs = [
            {"log_date": "2026-01-01", "weight_kg": 90.0},
            {"log_date": "2026-01-05", "weight_kg": 80.0},
            {"log_date": date(2026, 1, 8), "weight_kg": 82.0},
        ]
        assert calc.rolling_average(logs, date(2026, 1, 8)) == pytest.approx(81.0)
        assert calc.rolling_average(logs, date(2026, 2, 1)) is None

    @pytest.mark.parametrize("suggested,expected", [(40, 0), (-50, 0), (120, 120), (350, 300), (-900, -300)])
    def test_capped_adjustment(self, suggested, expected):
        assert calc.capped_adjustment(suggested) == expected

    def test_phase_summary(self, goal):
        weeks = [
            {"week_number": 1, "average_weight_kg": 99.5, "followed_calories": True,
             "tracked_accurately": True, "new_daily_calories": 2000},
            {"week_number": 2, "average_weight_kg": 97.5, "followed_calories": False,
             "tracked_accurately": True, "new_daily_calories": 1800, "is_diet_break_week": False},
        ]
        summary = calc.phase_summary(goal, weeks)
        assert summary.end_weight == 97.5
        assert summary.total_change == pytest.approx(-2.5)
        assert summary.percent_of_target == pytest.approx(25)
        assert summary.average_adherence == pytest.approx(50)
        assert summary.avg_daily_calories == pytest.approx(1900)

    def test_phase_summary_without_logs(self, goal):
        assert calc.phase_summary(goal, []) is None

    def test_estimated_total_weeks_without_submissions(self, goal):
        assert calc.estimated_total_weeks(goal, [], 3, 99.0) == 20

    def test_estimated_total_weeks_after_cut(self, goal):
        weeks = [{"week_number": 1, "new_daily_calories": 1800, "calorie_adjustment": -200}]
        # 200 kcal/day lower adds ~0.18 kg to the 0.5 kg weekly loss: 9 kg left takes 14 weeks
        assert calc.estimated_total_weeks(goal, weeks, 2, 99.0) == 16

    def test_estimated_total_weeks_without_weekly_rate(self, goal):
        goal = {**goal, "weekly_rate_percentage": None}
        assert calc.estimated_total_weeks(goal, [{"week_number": 1, "new_daily_calories": 2000}], 2, 99.0) == 20

        weeks = [{"week_number": 1, "new_daily_calories": 1800, "calorie_adjustment": -200}]
        # Only the calorie drift is left: 9 kg at ~0.18 kg a week
        assert calc.estimated_total_weeks(goal, weeks, 2, 99.0) == 52

def two_weeks_of_logs():
    return [
        WeighInLog(log_date=date(2026, 1, 1), weight_kg=100.0),
        WeighInLog(log_date=date(2026, 1, 4), weight_kg=100.2),
        WeighInLog(log_date=date(2026, 1, 7), weight_kg=99.8),
        WeighInLog(log_date=date(2026, 1, 10), weight_kg=99.4),
        WeighInLog(log_date=date(2026, 1, 14), weight_kg=99.2),
    ]

class TestMaintenanceEstimate:
    def test_maintenance_from_weekly_trend(self):
        result = calc.estimate_maintenance(
            MaintenanceEstimateReq(weight_logs=two_weeks_of_logs(), avg_daily_calories=2000)
        )
        assert result.starting_average_kg == pytest.approx(100.0)
        assert result.current_average_kg == pytest.approx(99.3)
        assert result.days == 7
        assert result.weekly_change_kg == pytest.approx(-0.7)
        # Losing 0.7 kg a week on 2000 kcal means maintenance is 770 kcal higher
        assert result.maintenance_calories == 2770
        assert result.suggested_adjustment is None

    @pytest.mark.parametrize("current,suggested,new_target", [
        (2000, 300, 2300),   # Capped
        (2700, 70, 2770),
        (2750, 0, 2750),     # Too small to act on
    ])
    def test_capped_move_towards_maintenance(self, current, suggested, new_target):
        result = calc.estimate_maintenance(MaintenanceEstimateReq(
            weight_logs=two_weeks_of_logs(), avg_daily_calories=2000, current_calories=current
        ))
        assert result.suggested_adjustment == suggested
        assert result.new_target_calories == new_target

    def test_empty_slots_are_ignored(self):
        logs = two_weeks_of_logs() + [WeighInLog(weight_kg=0)]
        result = calc.estimate_maintenance(MaintenanceEstimateReq(weight_logs=logs, avg_daily_calories=2000))
        assert result.maintenance_calories == 2770

    def test_requires_two_weeks(self):
        with pytest.raises(ValidationError) as exc:
            calc.estimate_maintenance(MaintenanceEstimateReq(
                weight_logs=two_weeks_of_logs()[:4], avg_daily_calories=2000
            ))
        assert exc.value.field == "weight_logs"

    def test_requires_log_dates(self):
        logs = two_weeks_of_logs() + [WeighInLog(weight_kg=99.0)]
        with pytest.raises(ValidationError):
            calc.estimate_maintenance(MaintenanceEstimateReq(weight_logs=logs, avg_daily_calories=2000))
