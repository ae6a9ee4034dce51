import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from backend.app.database import get_db
from backend.app.main import app, get_current_user
from conftest import make_db

client = TestClient(app)

@pytest.fixture
def db(goal):
    db = make_db(
        nutrition_goals=[goal],
        weekly_progress=[{
            "id": "w1", "goal_id": "goal-1", "week_number": 1, "average_weight_kg": 99.5,
            "followed_calories": True, "tracked_accurately": True,
            "new_daily_calories": 2000, "calorie_adjustment": 0,
        }],
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: MagicMock(id="user-1", email="test@example.com")
    yield db
    app.dependency_overrides.clear()

@pytest.fixture
def auth_headers():
    """Provide test authentication headers."""
    return {"Authorization": "Bearer test-token"}

def submit_body(weight=99.2, count=3, followed=True):
    return {
        "weight_logs": [{"log_date": f"2026-01-{8 + i:02d}", "weight_kg": weight} for i in range(count)],
        "followed_calories": followed,
        "tracked_accurately": True,
    }

@patch("backend.app.main.SB.ping", new_callable=AsyncMock)
def test_health_endpoint(mock_ping):
    mock_ping.return_value = True
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data

@patch("backend.app.main.SB.ping", new_callable=AsyncMock)
def test_health_unhealthy_returns_503(mock_ping):
    mock_ping.return_value = False
    assert client.get("/health").status_code == 503

def test_health_quick_and_metrics():
    assert client.get("/health/quick").json()["status"] == "healthy"
    metrics = client.get("/metrics").json()
    assert "requests_total" in metrics
    assert "weeks_submitted_total" in metrics

@patch("backend.app.health.SB.ping", new_callable=AsyncMock)
def test_health_detailed(mock_ping):
    mock_ping.return_value = True
    data = client.get("/health/detailed").json()
    assert data["checks"]["database"]["healthy"]
    assert data["checks"]["email"]["connection"] == "disabled"

def test_nutrition_calculate_is_public():
    response = client.post("/nutrition/calculate", json={
        "weight_kg": 80, "height_cm": 180, "age": 30, "sex": "male",
        "activity_multiplier": 1.5, "goal_type": "loss", "rate_of_change": 0.5,
        "protein_per_kg": 2.0, "fat_percentage": 25,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["tdee"] == 2670
    assert data["calories"] == 2230

def test_nutrition_calculate_rejects_bad_weight():
    response = client.post("/nutrition/calculate", json={
        "weight_kg": 5, "height_cm": 180, "age": 30, "sex": "male",
        "activity_multiplier": 1.5, "goal_type": "loss", "rate_of_change": 0.5,
        "protein_per_kg": 2.0, "fat_percentage": 25,
    })
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "weight_kg"

def test_get_goal(db, auth_headers):
    response = client.get("/nutrition/goal", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["daily_calories"] == 2000
    assert data["current_macros"]["protein_g"] == 200

def test_get_goal_not_found(db, auth_headers):
    db.fakes["nutrition_goals"].rows = []
    response = client.get("/nutrition/goal", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "NOT_FOUND"

def test_estimate_maintenance(db, auth_headers):
    logs = [("2026-01-01", 100.0), ("2026-01-07", 100.0), ("2026-01-10", 99.3), ("2026-01-14", 99.3)]
    response = client.post("/nutrition/maintenance", headers=auth_headers, json={
        "weight_logs": [{"log_date": d, "weight_kg": w} for d, w in logs],
        "avg_daily_calories": 2000,
        "current_calories": 2000,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["maintenance_calories"] == 2770
    assert data["suggested_adjustment"] == 300
    assert data["new_target_calories"] == 2300

def test_estimate_maintenance_needs_two_weeks(db, auth_headers):
    response = client.post("/nutrition/maintenance", headers=auth_headers, json={
        "weight_logs": [{"log_date": "2026-01-01", "weight_kg": 100.0}, {"log_date": "2026-01-05", "weight_kg": 99.8}],
        "avg_daily_calories": 2000,
    })
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "weight_logs"

def test_preview_adjustment(db, auth_headers):
    response = client.post("/progress/preview", headers=auth_headers, json={
        "goal": {"starting_weight_kg": 100, "goal_type": "loss",
                 "weekly_rate_percentage": 0.5, "current_calories": 2000},
        "check_in": {"week_number": 1, "weigh_ins": [100.2, 100.2, 100.2],
                     "followed_calories": True, "tracked_accurately": True},
    })
    assert response.status_code == 200
    data = response.json()
    assert data["calorie_adjustment"] == -400
    assert data["new_daily_calories"] == 1600
    assert db.fakes["weekly_progress"].writes == []

def test_preview_requires_three_weigh_ins(db, auth_headers):
    response = client.post("/progress/preview", headers=auth_headers, json={
        "goal": {"starting_weight_kg": 100, "goal_type": "loss",
                 "weekly_rate_percentage": 0.5, "current_calories": 2000},
        "check_in": {"week_number": 1, "weigh_ins": [100.2, 100.2],
                     "followed_calories": True, "tracked_accurately": True},
    })
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "weigh_ins"

def test_list_weeks(db, auth_headers):
    response = client.get("/progress/weeks", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["goal_id"] == "goal-1"
    assert [w["week_number"] for w in data["weeks"]] == [1]

def test_save_weigh_ins_draft(db, auth_headers):
    response = client.put("/progress/weeks/2/weigh-ins", headers=auth_headers, json={
        "weight_logs": [{"log_date": "2026-01-08", "weight_kg": 99.3}],
        "notes": "Travel week",
    })
    assert response.status_code == 200
    assert response.json()["average_weight_kg"] is None

def test_submit_week(db, auth_headers):
    response = client.post("/progress/weeks/2/submit", headers=auth_headers, json=submit_body())
    assert response.status_code == 200
    data = response.json()
    assert data["adjustment"]["new_daily_calories"] == 1783
    assert data["goal_updated"] is True
    assert data["progress"]["week_number"] == 2

def test_submit_week_validation(db, auth_headers):
    response = client.post("/progress/weeks/2/submit", headers=auth_headers, json=submit_body(count=2))
    assert response.status_code == 422

def test_submit_week_skips_empty_weigh_in_slots(db, auth_headers):
    weights = [0, 99.5, 99.4, 99.3]
    response = client.post("/progress/weeks/1/submit", headers=auth_headers, json={
        "weight_logs": [{"log_date": f"2026-01-{1 + i:02d}", "weight_kg": w} for i, w in enumerate(weights)],
        "followed_calories": True,
        "tracked_accurately": True,
    })
    assert response.status_code == 200
    assert response.json()["adjustment"]["average_weight_kg"] == pytest.approx(99.4)
    update = db.fakes["weekly_progress"].ops("update")[0]["payload"]
    assert len(update["weight_logs"]) == 3

def test_submit_week_database_error_is_generic(db, auth_headers):
    db.fakes["weekly_progress"].execute = MagicMock(side_effect=Exception("relation does not exist"))
    response = client.post("/progress/weeks/2/submit", headers=auth_headers, json=submit_body())
    assert response.status_code == 500
    assert "relation" not in response.text

def test_progress_summary(db, auth_headers):
    response = client.get("/progress/summary", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["current_weight_kg"] == 99.5
    assert data["weight_progress_pct"] == pytest.approx(5)
    assert data["summary"]["average_adherence"] == pytest.approx(100)

def test_progress_summary_without_weekly_rate(db, goal, auth_headers):
    db.fakes["nutrition_goals"].rows = [{**goal, "weekly_rate_percentage": None}]
    response = client.get("/progress/summary", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["estimated_total_weeks"] == 20

def test_progress_summary_bad_goal_row_is_generic(db, goal, auth_headers):
    db.fakes["nutrition_goals"].rows = [{k: v for k, v in goal.items() if k != "daily_calories"}]
    response = client.get("/progress/summary", headers=auth_headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to load progress summary"

def test_job_endpoint_runs_sweep(db):
    with patch("backend.app.main.billing_sweeps.run_billing_reminders") as mock_run:
        mock_run.return_value = {"reminders_7_days": 2, "errors": 0}
        response = client.post("/jobs/billing-reminders", headers={"X-Cron-Secret": "test-cron-secret"})
    assert response.status_code == 200
    assert response.json()["results"]["reminders_7_days"] == 2
    mock_run.assert_called_once()
