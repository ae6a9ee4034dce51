import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the repository root
env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

# Supabase (service role key for the worker and cron endpoints)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Resend transactional email
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Coaching Team <noreply@example.com>")

# Links placed in reminder emails
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5173")

# Shared secret the scheduler sends in X-Cron-Secret
CRON_SECRET = os.getenv("CRON_SECRET")

SENTRY_DSN = os.getenv("SENTRY_DSN")

# Worker polling cadence
WORKER_INTERVAL_SECONDS = int(os.getenv("WORKER_INTERVAL_SECONDS", "3600"))
