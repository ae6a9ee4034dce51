"""
Transactional email through Resend, plus the `email_notifications` log the
sweep jobs use for de-duplication.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

import resend
from supabase import Client

from . import config
from .logging_config import ExternalServiceError, ValidationError
from .validation import validate_email

logger = logging.getLogger(__name__)

resend.api_key = config.RESEND_API_KEY

def send_email(to: Union[str, List[str]], subject: str, html: str,
               from_address: Optional[str] = None) -> dict:
    """Send one email via Resend; raises ExternalServiceError on failure"""
    recipients = [to] if isinstance(to, str) else to

    if not config.RESEND_API_KEY:
        raise ExternalServiceError("Resend", "RESEND_API_KEY not configured")

    try:
        response = resend.Emails.send({
            "from": from_address or config.EMAIL_FROM,
            "to": recipients,
            "subject": subject,
            "html": html,
        })
        logger.info(f"Email sent via Resend: {subject}")
        return response
    except Exception as e:
        logger.error(f"Email send error to {recipients}: {e}")
        raise ExternalServiceError("Resend", str(e)) from e

def log_notification(db: Client, user_id: str, notification_type: str, status: str,
                     now: Optional[datetime] = None):
    """Record a sent/failed notification; failures here are logged, not raised"""
    try:
        db.table("email_notifications").insert({
            "user_id": user_id,
            "notification_type": notification_type,
            "status": status,
            "sent_at": (now or datetime.now(timezone.utc)).isoformat(),
        }).execute()
    except Exception as e:
        logger.error(f"Failed to log email notification: {e}", extra={"user_id": user_id})

def recently_notified(db: Client, user_id: str, notification_type: str, hours: int,
                      now: Optional[datetime] = None) -> bool:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    result = (
        db.table("email_notifications")
        .select("id")
        .eq("user_id", user_id)
        .eq("notification_type", notification_type)
        .gte("sent_at", cutoff.isoformat())
        .limit(1)
        .execute()
    )
    return bool(result.data)

def notify(db: Client, user_id: str, email: str, notification_type: str,
           subject: str, html: str, now: Optional[datetime] = None) -> bool:
    """Send and log in one step. Returns True when the email went out."""
    try:
        email = validate_email(email)
    except ValidationError:
        logger.warning(f"Skipping {notification_type}: invalid address", extra={"user_id": user_id})
        return False

    try:
        send_email(email, subject, html)
    except ExternalServiceError as e:
        logger.warning(f"Notification {notification_type} not sent: {e.message}",
                       extra={"user_id": user_id})
        log_notification(db, user_id, notification_type, "failed", now)
        return False

    log_notification(db, user_id, notification_type, "sent", now)
    return True
