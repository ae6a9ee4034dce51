import os

# Must be set before backend.app.config is imported
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("SENTRY_DSN", None)

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

class FakeTable:
    """
    Chainable stand-in for a PostgREST query builder. Reads return every row
    it was seeded with (filters are recorded, not applied); writes echo their
    payload back the way `returning=representation` does.
    """

    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.writes = []
        self._pending = None

    def select(self, *args, **kwargs):
        self._pending = None
        return self

    def _write(self, op, payload, **kwargs):
        self._pending = {"op": op, "payload": payload, "filters": [], **kwargs}
        self.writes.append(self._pending)
        return self

    def insert(self, payload):
        return self._write("insert", payload)

    def update(self, payload):
        return self._write("update", payload)

    def upsert(self, payload, **kwargs):
        return self._write("upsert", payload, **kwargs)

    def _filter(self, *args):
        if self._pending is not None:
            self._pending["filters"].append(args)
        return self

    eq = in_ = gte = is_ = _filter

    def order(self, *args, **kwargs):
        return self

    def limit(self, *args):
        return self

    @property
    def not_(self):
        return self

    def execute(self):
        if self._pending is not None:
            payload = self._pending["payload"]
            self._pending = None
            return SimpleNamespace(data=[dict(payload)])
        return SimpleNamespace(data=list(self.rows))

    def ops(self, op):
        return [w for w in self.writes if w["op"] == op]

def make_db(**tables):
    db = MagicMock()
    fakes = {name: FakeTable(rows) for name, rows in tables.items()}
    db.table.side_effect = lambda name: fakes.setdefault(name, FakeTable())
    db.fakes = fakes
    return db

@pytest.fixture
def goal():
    return {
        "id": "goal-1",
        "user_id": "user-1",
        "phase_name": "Cut",
        "goal_type": "loss",
        "start_date": "2026-01-01",
        "starting_weight_kg": 100.0,
        "target_weight_kg": 90.0,
        "weekly_rate_percentage": 0.5,
        "daily_calories": 2000,
        "protein_intake_g_per_kg": 2.0,
        "fat_intake_percentage": 30,
        "estimated_duration_weeks": 20,
        "diet_breaks_enabled": False,
        "diet_break_frequency_weeks": None,
        "diet_break_duration_weeks": None,
        "is_active": True,
    }

@pytest.fixture(autouse=True)
def reset_rate_limits():
    from backend.app.rate_limiter import rate_limiter
    rate_limiter.reset()
    yield
