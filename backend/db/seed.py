"""
Seed a demo client with an active cut and three submitted weeks.

    python -m backend.db.seed
"""
import uuid
from datetime import date, timedelta

from backend.app.database import SB
from backend.app.schemas import SubmitWeekReq, WeighInLog
from backend.tools import progress_service

DEMO_USER_ID = "00000000-0000-0000-0000-000000000000"

WEEKS = [
    # (weigh-ins, followed_calories, tracked_accurately)
    ([84.6, 84.4, 84.1, 84.3], True, True),
    ([84.0, 83.8, 83.9, 83.7], True, True),
    ([83.9, 84.0, 83.8], False, True),
]

def seed_database():
    """Seed the database with demo data."""
    supabase = SB.get()
    start = date.today() - timedelta(weeks=len(WEEKS))

    print("Creating demo goal...")
    supabase.table("nutrition_goals").update(
        {"is_active": False}
    ).eq("user_id", DEMO_USER_ID).execute()

    goal = {
        "id": str(uuid.uuid4()),
        "user_id": DEMO_USER_ID,
        "phase_name": "Spring cut",
        "goal_type": "loss",
        "start_date": start.isoformat(),
        "starting_weight_kg": 85.0,
        "target_weight_kg": 78.0,
        "weekly_rate_percentage": 0.5,
        "daily_calories": 2300,
        "protein_intake_g_per_kg": 2.0,
        "fat_intake_percentage": 30,
        "estimated_duration_weeks": 17,
        "diet_breaks_enabled": True,
        "diet_break_frequency_weeks": 8,
        "diet_break_duration_weeks": 1,
        "is_active": True,
    }
    supabase.table("nutrition_goals").insert(goal).execute()

    print("Submitting weekly check-ins...")
    for week_number, (weights, followed, tracked) in enumerate(WEEKS, start=1):
        # Reload so each week starts from the calories the previous one set
        active = progress_service.get_active_goal(supabase, DEMO_USER_ID)
        week_start = start + timedelta(weeks=week_number - 1)
        req = SubmitWeekReq(
            weight_logs=[
                WeighInLog(log_date=week_start + timedelta(days=i), weight_kg=w)
                for i, w in enumerate(weights)
            ],
            followed_calories=followed,
            tracked_accurately=tracked,
        )
        result = progress_service.submit_week(supabase, DEMO_USER_ID, active, week_number, req)
        print(f"  Week {week_number}: {result.adjustment.reason} -> {result.adjustment.new_daily_calories} kcal")

    print("\n✅ Database seeded successfully!")
    print(f"Demo user ID: {DEMO_USER_ID}")
    print(f"- 1 active goal ({goal['phase_name']})")
    print(f"- {len(WEEKS)} weekly check-ins")

if __name__ == "__main__":
    seed_database()
