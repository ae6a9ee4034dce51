"""
Billing sweeps run by the worker (and the cron endpoints):

* payment-deadline sweep: pending-payment sign-ups and failed renewals
* billing reminders: manual-renewal cadence around `next_billing_date`

Each sweep is a pure `classify_*` decision per row plus a runner that applies
the decision to Supabase and sends the matching email.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil.parser import isoparse
from supabase import Client

from backend.app import config
from backend.app.notifications import notify, recently_notified

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_DAYS = 7
REMINDER_COOLDOWN_HOURS = 20
DEADLINE_REMINDER_COOLDOWN_HOURS = 24
FAILED_PAYMENT_RESTRICT_DAYS = 7
FAILED_PAYMENT_CANCEL_DAYS = 14
ACTIVE_GRACE_REMINDER_DAYS = (3, 5)
INACTIVE_REMINDER_DAYS = (10, 12)
UPCOMING_REMINDER_DAYS = {7: "reminders_7_days", 3: "reminders_3_days", 1: "reminders_1_day"}

def classify_pending_deadline(deadline: datetime, now: datetime) -> Optional[str]:
    """"expire" once the deadline passed, "remind" in the 24-48h window before it"""
    hours_left = (deadline - now).total_seconds() / 3600
    if hours_left < 0:
        return "expire"
    if 24 < hours_left < 48:
        return "remind"
    return None

def classify_failed_payment(days_since_failure: int, profile_status: str) -> Optional[str]:
    if days_since_failure >= FAILED_PAYMENT_CANCEL_DAYS:
        return "cancel"
    if days_since_failure >= FAILED_PAYMENT_RESTRICT_DAYS and profile_status == "active":
        return "restrict"
    if profile_status == "active" and days_since_failure in ACTIVE_GRACE_REMINDER_DAYS:
        return "remind_active"
    if profile_status == "inactive" and days_since_failure in INACTIVE_REMINDER_DAYS:
        return "remind_inactive"
    return None

def classify_billing(status: str, days_until_due: int, days_past_due: Optional[int],
                     grace_days: int = DEFAULT_GRACE_PERIOD_DAYS) -> Optional[str]:
    """
    Active subscriptions get reminders 7/3/1 days out and flip to past_due
    when the due date passes. Past-due ones get a day-3 notice, a final
    warning the day before the grace period ends, then a lock.
    """
    if status == "active":
        if days_until_due < 0:
            return "mark_past_due"
        if days_until_due in UPCOMING_REMINDER_DAYS:
            return f"reminder_{days_until_due}"
        return None

    if status == "past_due" and days_past_due is not None:
        if days_past_due >= grace_days:
            return "lock"
        if days_past_due == 3:
            return "past_due_3"
        if days_past_due == grace_days - 1:
            return "final_warning"
    return None

def days_between(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / 86400)

def parse_ts(value: Any) -> datetime:
    ts = value if isinstance(value, datetime) else isoparse(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts

def _first(value: Any) -> Dict[str, Any]:
    # PostgREST embeds come back as an object or a one-element list
    if isinstance(value, list):
        return value[0] if value else {}
    return value or {}

def _full_name(profile: Dict[str, Any]) -> str:
    name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return name or "there"

def _pay_url() -> str:
    return f"{config.APP_BASE_URL}/billing/pay"

class BillingSweeps:
    def run_payment_deadline_sweep(self, db: Client, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or datetime.now(timezone.utc)
        results = {
            "pending_payment_reminders": 0,
            "expired_subscriptions": 0,
            "failed_payment_restricted": 0,
            "failed_payment_cancelled": 0,
            "failed_payment_reminders": 0,
            "errors": 0,
        }

        pending = (
            db.table("profiles")
            .select("id, email, first_name, last_name, status, payment_deadline, "
                    "subscriptions(id, status, services(name, price_kwd))")
            .eq("status", "pending_payment")
            .not_.is_("payment_deadline", "null")
            .execute()
        )

        for profile in pending.data or []:
            try:
                self._handle_pending_profile(db, profile, now, results)
            except Exception as e:
                logger.error(f"Error processing pending profile {profile.get('id')}: {e}",
                             extra={"job": "payment_deadlines", "user_id": profile.get("id")})
                results["errors"] += 1

        failed = (
            db.table("subscriptions")
            .select("id, user_id, payment_failed_at, profiles(id, email, first_name, last_name, status)")
            .eq("status", "failed")
            .not_.is_("payment_failed_at", "null")
            .execute()
        )

        for subscription in failed.data or []:
            try:
                self._handle_failed_subscription(db, subscription, now, results)
            except Exception as e:
                logger.error(f"Error processing failed subscription {subscription.get('id')}: {e}",
                             extra={"job": "payment_deadlines", "user_id": subscription.get("user_id")})
                results["errors"] += 1

        logger.info(f"Payment deadline check completed: {results}", extra={"job": "payment_deadlines"})
        return results

    def _handle_pending_profile(self, db: Client, profile: Dict[str, Any], now: datetime,
                                results: Dict[str, int]):
        deadline = parse_ts(profile["payment_deadline"])
        action = classify_pending_deadline(deadline, now)
        if action is None:
            return

        service = _first(_first(profile.get("subscriptions")).get("services"))
        service_name = service.get("name") or "your program"
        name = _full_name(profile)

        if action == "expire":
            db.table("profiles").update(
                {"status": "inactive", "payment_deadline": None}
            ).eq("id", profile["id"]).execute()
            db.table("subscriptions").update(
                {"status": "inactive"}
            ).eq("user_id", profile["id"]).eq("status", "pending").execute()

            if profile.get("email"):
                notify(
                    db, profile["id"], profile["email"], "subscription_inactive",
                    "Your subscription request has expired",
                    f"<p>Hi {name},</p><p>Your payment deadline for <strong>{service_name}</strong> "
                    f"has passed and your spot has been released. You can restart your application "
                    f"at any time from {config.APP_BASE_URL}.</p>",
                    now,
                )
            results["expired_subscriptions"] += 1
            logger.info(f"Expired pending payment for user {profile['id']}",
                        extra={"job": "payment_deadlines", "user_id": profile["id"]})
            return

        if not profile.get("email"):
            return
        if recently_notified(db, profile["id"], "payment_reminder", DEADLINE_REMINDER_COOLDOWN_HOURS, now):
            return

        days_left = math.ceil((deadline - now).total_seconds() / 86400)
        sent = notify(
            db, profile["id"], profile["email"], "payment_reminder",
            "Reminder: complete your payment to secure your spot",
            f"<p>Hi {name},</p><p>Your payment for <strong>{service_name}</strong> "
            f"({service.get('price_kwd') or 0} KWD/month) is due by {deadline:%Y-%m-%d %H:%M} UTC, "
            f"about {days_left} day{'s' if days_left != 1 else ''} from now.</p>"
            f"<p><a href=\"{config.APP_BASE_URL}/dashboard\">Complete payment</a></p>",
            now,
        )
        if sent:
            results["pending_payment_reminders"] += 1

    def _handle_failed_subscription(self, db: Client, subscription: Dict[str, Any], now: datetime,
                                    results: Dict[str, int]):
        profile = _first(subscription.get("profiles"))
        if not profile:
            return

        days = days_between(now, parse_ts(subscription["payment_failed_at"]))
        action = classify_failed_payment(days, profile.get("status"))

        if action == "cancel":
            # Gateway cancellation and account deletion are handled downstream
            db.table("subscriptions").update(
                {"status": "cancelled", "cancel_requested": True}
            ).eq("id", subscription["id"]).execute()
            db.table("profiles").update(
                {"status": "cancelled"}
            ).eq("id", subscription["user_id"]).execute()
            results["failed_payment_cancelled"] += 1
            logger.info(f"Cancelled subscription {subscription['id']} after {days} days of payment failure",
                        extra={"job": "payment_deadlines", "user_id": subscription["user_id"]})

        elif action == "restrict":
            db.table("profiles").update(
                {"status": "inactive"}
            ).eq("id", subscription["user_id"]).execute()
            results["failed_payment_restricted"] += 1
            logger.info(f"Set account to inactive for user {subscription['user_id']} after {days} days",
                        extra={"job": "payment_deadlines", "user_id": subscription["user_id"]})

        elif action in ("remind_active", "remind_inactive") and profile.get("email"):
            limit = FAILED_PAYMENT_RESTRICT_DAYS if action == "remind_active" else FAILED_PAYMENT_CANCEL_DAYS
            notification_type = f"payment_failed_day_{days}"
            if recently_notified(db, profile["id"], notification_type, DEADLINE_REMINDER_COOLDOWN_HOURS, now):
                return
            consequence = "your account is paused" if action == "remind_active" else "your account is closed"
            sent = notify(
                db, profile["id"], profile["email"], notification_type,
                "Action required: your payment did not go through",
                f"<p>Hi {_full_name(profile)},</p><p>We could not process your last payment. "
                f"You have {limit - days} days to update it before {consequence}.</p>"
                f"<p><a href=\"{_pay_url()}\">Update payment</a></p>",
                now,
            )
            if sent:
                results["failed_payment_reminders"] += 1

    def run_billing_reminders(self, db: Client, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or datetime.now(timezone.utc)
        results = {
            "reminders_7_days": 0,
            "reminders_3_days": 0,
            "reminders_1_day": 0,
            "past_due_1_day": 0,
            "past_due_3_days": 0,
            "past_due_7_days": 0,
            "marked_past_due": 0,
            "marked_inactive": 0,
            "errors": 0,
        }

        subscriptions = (
            db.table("subscriptions")
            .select("id, user_id, status, next_billing_date, past_due_since, grace_period_days, "
                    "billing_amount_kwd, services(name, price_kwd), "
                    "profiles!inner(id, email, first_name, last_name, status)")
            .in_("status", ["active", "past_due"])
            .not_.is_("next_billing_date", "null")
            .execute()
        )

        logger.info(f"Processing {len(subscriptions.data or [])} subscriptions for billing reminders",
                    extra={"job": "billing_reminders"})

        for sub in subscriptions.data or []:
            try:
                self._handle_billing(db, sub, now, results)
            except Exception as e:
                logger.error(f"Error processing subscription {sub.get('id')}: {e}",
                             extra={"job": "billing_reminders", "user_id": sub.get("user_id")})
                results["errors"] += 1

        logger.info(f"Billing reminders completed: {results}", extra={"job": "billing_reminders"})
        return results

    def _handle_billing(self, db: Client, sub: Dict[str, Any], now: datetime, results: Dict[str, int]):
        profile = _first(sub.get("profiles"))
        service = _first(sub.get("services"))
        if not profile.get("email"):
            return

        next_billing = parse_ts(sub["next_billing_date"])
        grace_days = sub.get("grace_period_days") or DEFAULT_GRACE_PERIOD_DAYS
        days_past_due = None
        if sub.get("past_due_since"):
            days_past_due = days_between(now, parse_ts(sub["past_due_since"]))

        action = classify_billing(sub["status"], days_between(next_billing, now), days_past_due, grace_days)
        if action is None:
            return

        amount = sub.get("billing_amount_kwd")
        if amount is None:
            amount = service.get("price_kwd") or 0
        service_name = service.get("name") or "Your Plan"
        name = _full_name(profile)
        user_id = profile["id"]

        if action == "mark_past_due":
            # Profile stays active through the grace period; only the subscription flips
            db.table("subscriptions").update(
                {"status": "past_due", "past_due_since": now.isoformat()}
            ).eq("id", sub["id"]).execute()
            results["marked_past_due"] += 1
            if notify(db, user_id, profile["email"], "billing_past_due_1",
                      f"Payment past due: {service_name}",
                      _past_due_html(name, amount, grace_days - 1), now):
                results["past_due_1_day"] += 1
            return

        if action == "lock":
            db.table("subscriptions").update({"status": "inactive"}).eq("id", sub["id"]).execute()
            db.table("profiles").update({"status": "inactive"}).eq("id", sub["user_id"]).execute()
            notify(db, user_id, profile["email"], "billing_account_locked",
                   f"Your {service_name} subscription has been suspended",
                   f"<p>Hi {name},</p><p>Your grace period has ended and access has been suspended. "
                   f"<a href=\"{_pay_url()}\">Pay now</a> to restore it.</p>", now)
            results["marked_inactive"] += 1
            return

        notification_type = {
            "past_due_3": "billing_past_due_3",
            "final_warning": "billing_final_warning",
        }.get(action, f"billing_{action}")
        if recently_notified(db, user_id, notification_type, REMINDER_COOLDOWN_HOURS, now):
            return

        if action == "past_due_3":
            sent = notify(db, user_id, profile["email"], notification_type,
                          "Urgent: payment 3 days overdue",
                          _past_due_html(name, amount, grace_days - 3), now)
            result_key = "past_due_3_days"
        elif action == "final_warning":
            sent = notify(db, user_id, profile["email"], notification_type,
                          f"Final warning: your {service_name} access will be suspended tomorrow",
                          f"<p>Hi {name},</p><p>Amount due: {amount} KWD. "
                          f"<a href=\"{_pay_url()}\">Pay now</a> to avoid suspension.</p>", now)
            result_key = "past_due_7_days"
        else:
            days_until_due = int(action.rsplit("_", 1)[1])
            subject = (f"Final reminder: payment due tomorrow for {service_name}" if days_until_due <= 1
                       else f"Payment reminder: {service_name} due in {days_until_due} days")
            sent = notify(db, user_id, profile["email"], notification_type, subject,
                          f"<p>Hi {name},</p><p>Your payment of {amount} KWD is due on "
                          f"{next_billing:%A, %B %d, %Y}.</p><p><a href=\"{_pay_url()}\">Pay now</a></p>", now)
            result_key = UPCOMING_REMINDER_DAYS[days_until_due]

        if sent:
            results[result_key] += 1

def _past_due_html(name: str, amount: float, days_remaining: int) -> str:
    return (f"<p>Hi {name},</p><p>Your payment of {amount} KWD is past due. "
            f"{max(days_remaining, 0)} days remaining to avoid service interruption.</p>"
            f"<p><a href=\"{_pay_url()}\">Pay {amount} KWD now</a></p>")

billing_sweeps = BillingSweeps()
