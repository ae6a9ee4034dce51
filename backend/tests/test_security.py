import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from backend.app import main
from backend.app.database import get_db
from backend.app.main import app
from conftest import make_db

client = TestClient(app)

@pytest.fixture
def db():
    db = MagicMock()
    db.auth.get_user.side_effect = Exception("invalid JWT")
    app.dependency_overrides[get_db] = lambda: db
    yield db
    app.dependency_overrides.clear()

class TestSecurity:
    """Test security-related functionality"""

    def test_cors_allows_known_origin_only(self):
        allowed = client.options("/health", headers={
            "Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET",
        })
        assert allowed.headers.get("access-control-allow-origin") == "http://localhost:5173"

        blocked = client.options("/health", headers={
            "Origin": "https://malicious-site.com", "Access-Control-Request-Method": "GET",
        })
        assert blocked.headers.get("access-control-allow-origin") is None

    @pytest.mark.parametrize("method,endpoint", [
        ("get", "/nutrition/goal"),
        ("post", "/nutrition/maintenance"),
        ("post", "/progress/preview"),
        ("get", "/progress/weeks"),
        ("put", "/progress/weeks/1/weigh-ins"),
        ("post", "/progress/weeks/1/submit"),
        ("get", "/progress/summary"),
    ])
    def test_authentication_required(self, db, method, endpoint):
        """Test that endpoints require authentication"""
        response = getattr(client, method)(endpoint, json={})
        assert response.status_code == 401

        response = getattr(client, method)(endpoint, json={}, headers={"Authorization": "Bearer invalid-token"})
        assert response.status_code == 401

    def test_test_token_rejected_outside_development(self, db):
        """Dev tokens only work when ENVIRONMENT=development"""
        response = client.get("/progress/weeks", headers={"Authorization": "Bearer test-token"})
        assert response.status_code == 401

    def test_test_token_accepted_in_development(self, goal):
        app.dependency_overrides[get_db] = lambda: make_db(nutrition_goals=[goal])
        try:
            with patch.object(main.config, "ENVIRONMENT", "development"):
                response = client.get("/nutrition/goal", headers={"Authorization": "Bearer dev-token"})
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 200

    @pytest.mark.parametrize("endpoint", ["/jobs/payment-deadlines", "/jobs/billing-reminders"])
    def test_cron_secret_required(self, db, endpoint):
        assert client.post(endpoint).status_code == 401
        assert client.post(endpoint, headers={"X-Cron-Secret": "wrong"}).status_code == 401

    def test_cron_disabled_without_secret(self, db):
        with patch.object(main.config, "CRON_SECRET", None):
            response = client.post("/jobs/billing-reminders", headers={"X-Cron-Secret": "anything"})
        assert response.status_code == 503

    def test_rate_limiting(self):
        """Test rate limiting functionality"""
        body = {
            "weight_kg": 80, "height_cm": 180, "age": 30, "sex": "male",
            "activity_multiplier": 1.5, "goal_type": "maintenance",
            "protein_per_kg": 2.0, "fat_percentage": 25,
        }
        status_codes = [client.post("/nutrition/calculate", json=body).status_code for _ in range(35)]
        assert 429 in status_codes  # Over the calculate limit of 30/minute

        limited = client.post("/nutrition/calculate", json=body)
        assert "Retry-After" in limited.headers

    def test_sensitive_data_exposure(self, db):
        """Error responses must not leak configuration"""
        response = client.post("/jobs/billing-reminders", headers={"X-Cron-Secret": "wrong"})
        assert "test-cron-secret" not in response.text

    @patch("backend.app.main.SB.ping", new_callable=AsyncMock)
    def test_health_endpoint_security(self, mock_ping):
        """Test health endpoint doesn't expose sensitive info"""
        mock_ping.return_value = True
        response = client.get("/health")
        assert response.status_code == 200

        response_text = json.dumps(response.json()).lower()
        for key in ["password", "secret", "key", "dsn", "token"]:
            assert key not in response_text
