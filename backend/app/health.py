import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

import httpx
import psutil
import sentry_sdk

from . import config
from .database import SB
from .logging_config import DatabaseError, ExternalServiceError

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

class HealthChecker:
    """Dependency checks for /health/detailed"""

    def __init__(self):
        self.checks = {
            'database': self._check_database,
            'email': self._check_email,
            'sentry': self._check_sentry,
        }

    async def run_all_checks(self) -> Dict[str, Any]:
        start_time = time.time()
        names = list(self.checks)
        outcomes = await asyncio.gather(
            *(self._run_single_check(name, self.checks[name]) for name in names),
            return_exceptions=True,
        )

        results = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                outcome = {'status': 'error', 'healthy': False, 'error': str(outcome), 'response_time_ms': None}
            results[name] = outcome

        return {
            'status': 'healthy' if all(r['healthy'] for r in results.values()) else 'degraded',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'response_time_ms': int((time.time() - start_time) * 1000),
            'checks': results,
            'version': VERSION,
            'environment': config.ENVIRONMENT,
        }

    async def _run_single_check(self, name: str, check_func) -> Dict[str, Any]:
        start_time = time.time()
        try:
            result = await check_func()
            return {
                'status': 'ok',
                'healthy': True,
                'response_time_ms': int((time.time() - start_time) * 1000),
                **result,
            }
        except Exception as e:
            logger.error(f"Health check failed for {name}: {e}")
            return {
                'status': 'error',
                'healthy': False,
                'error': str(e),
                'response_time_ms': int((time.time() - start_time) * 1000),
            }

    async def _check_database(self) -> Dict[str, Any]:
        if not await SB.ping():
            raise DatabaseError("health_check", "Supabase health probe failed")
        return {'connection': 'ok', 'details': 'Supabase health probe succeeded'}

    async def _check_email(self) -> Dict[str, Any]:
        """Resend reachability; an unset key reports disabled rather than failing"""
        if not config.RESEND_API_KEY:
            return {'connection': 'disabled', 'details': 'Resend API key not configured'}

        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                "https://api.resend.com/domains",
                headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
            )
        if response.status_code >= 400:
            raise ExternalServiceError("Resend", f"HTTP {response.status_code}", response.status_code)
        return {'connection': 'ok', 'details': 'Resend API reachable'}

    async def _check_sentry(self) -> Dict[str, Any]:
        if not config.SENTRY_DSN:
            return {'connection': 'disabled', 'details': 'Sentry not configured'}
        if not sentry_sdk.is_initialized():
            raise ExternalServiceError("Sentry", "Sentry client not initialized")
        return {'connection': 'ok', 'dsn_configured': True}

class MetricsCollector:
    """Process-level request and error counters"""

    def __init__(self):
        self.start_time = time.time()
        self.request_count = 0
        self.error_count = 0
        self.submissions = 0
        self.adjustments = 0

    def get_metrics(self) -> Dict[str, Any]:
        uptime_seconds = int(time.time() - self.start_time)
        return {
            'uptime_seconds': uptime_seconds,
            'uptime_human': self._format_uptime(uptime_seconds),
            'requests_total': self.request_count,
            'errors_total': self.error_count,
            'error_rate': self.error_count / max(self.request_count, 1),
            'weeks_submitted_total': self.submissions,
            'calorie_adjustments_total': self.adjustments,
            'memory_usage': self._get_memory_usage(),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }

    def increment_requests(self):
        self.request_count += 1

    def increment_errors(self):
        self.error_count += 1

    def record_submission(self, adjusted: bool):
        self.submissions += 1
        if adjusted:
            self.adjustments += 1

    def _format_uptime(self, seconds: int) -> str:
        days, rem = divmod(seconds, 86400)
        hours, rem = divmod(rem, 3600)
        minutes, secs = divmod(rem, 60)
        if days:
            return f"{days}d {hours}h {minutes}m {secs}s"
        if hours:
            return f"{hours}h {minutes}m {secs}s"
        if minutes:
            return f"{minutes}m {secs}s"
        return f"{secs}s"

    def _get_memory_usage(self) -> Dict[str, Any]:
        try:
            memory_info = psutil.Process().memory_info()
        except psutil.Error as e:
            return {'error': str(e)}
        return {
            'rss_bytes': memory_info.rss,
            'rss_mb': round(memory_info.rss / 1024 / 1024, 2),
            'vms_mb': round(memory_info.vms / 1024 / 1024, 2),
        }

health_checker = HealthChecker()
metrics_collector = MetricsCollector()
