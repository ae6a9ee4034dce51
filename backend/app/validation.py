import re
import html
from typing import List, Optional
from .logging_config import ValidationError

# Input size limits
MAX_TEXT_LENGTH = 2000
MAX_NOTES_LENGTH = 1000
MAX_WEIGH_INS_PER_WEEK = 14
MIN_WEIGH_INS_PER_WEEK = 3
MAX_WEIGHT_KG = 500  # Reasonable upper limit
MIN_WEIGHT_KG = 20   # Reasonable lower limit
MAX_WEEKLY_RATE_PCT = 2.0
MIN_DAILY_CALORIES = 800
MAX_DAILY_CALORIES = 10000

def sanitize_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Sanitize text input by removing HTML and limiting length"""
    if not isinstance(text, str):
        raise ValidationError("Input must be a string")

    clean_text = html.escape(text.strip())

    # Remove control characters except newlines and tabs
    clean_text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', clean_text)

    if len(clean_text) > max_length:
        raise ValidationError(f"Text exceeds maximum length of {max_length} characters")

    return clean_text

def validate_email(email: str) -> str:
    """Validate and sanitize email address"""
    if not isinstance(email, str):
        raise ValidationError("Email must be a string", "email")

    email = email.strip().lower()

    email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    if not re.match(email_pattern, email):
        raise ValidationError("Invalid email format", "email")

    if len(email) > 254:  # RFC 5321 limit
        raise ValidationError("Email address too long", "email")

    return email

def validate_weight(weight_kg: float, field: str = "weight_kg") -> float:
    """Validate weight measurement"""
    if isinstance(weight_kg, bool) or not isinstance(weight_kg, (int, float)):
        raise ValidationError("Weight must be a number", field)

    weight_kg = float(weight_kg)

    if weight_kg < MIN_WEIGHT_KG:
        raise ValidationError(f"Weight too low (minimum {MIN_WEIGHT_KG} kg)", field)

    if weight_kg > MAX_WEIGHT_KG:
        raise ValidationError(f"Weight too high (maximum {MAX_WEIGHT_KG} kg)", field)

    return round(weight_kg, 2)

def validate_weigh_ins(weights: List[float], minimum: int = MIN_WEIGH_INS_PER_WEEK) -> List[float]:
    """
    Validate a week's weigh-ins; `minimum` is 0 for drafts.
    Empty slots (None, 0 or negative) are dropped before the bounds check.
    """
    if not isinstance(weights, list):
        raise ValidationError("Weigh-ins must be a list", "weigh_ins")

    if len(weights) > MAX_WEIGH_INS_PER_WEEK:
        raise ValidationError(
            f"Too many weigh-ins (maximum {MAX_WEIGH_INS_PER_WEEK})", "weigh_ins"
        )

    logged = [w for w in weights if not _is_empty_slot(w)]
    validated = [validate_weight(w, "weigh_ins") for w in logged]

    if len(validated) < minimum:
        raise ValidationError(
            f"Please log at least {minimum} weights for the week", "weigh_ins"
        )

    return validated

def _is_empty_slot(value) -> bool:
    if value is None:
        return True
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value <= 0

def validate_weekly_rate(rate_pct: float) -> float:
    """Validate target weekly change as a percentage of body weight"""
    if isinstance(rate_pct, bool) or not isinstance(rate_pct, (int, float)):
        raise ValidationError("Weekly rate must be a number", "weekly_rate_percentage")

    rate_pct = float(rate_pct)

    if rate_pct < 0 or rate_pct > MAX_WEEKLY_RATE_PCT:
        raise ValidationError(
            f"Weekly rate must be between 0 and {MAX_WEEKLY_RATE_PCT}%",
            "weekly_rate_percentage"
        )

    return rate_pct

def validate_daily_calories(kcal: int) -> int:
    """Validate a daily calorie target"""
    if isinstance(kcal, bool) or not isinstance(kcal, (int, float)):
        raise ValidationError("Calories must be a number", "daily_calories")

    kcal = int(kcal)

    if kcal < MIN_DAILY_CALORIES:
        raise ValidationError(
            f"Daily calories too low (minimum {MIN_DAILY_CALORIES})", "daily_calories"
        )

    if kcal > MAX_DAILY_CALORIES:
        raise ValidationError("Daily calories too high", "daily_calories")

    return kcal

def validate_body_fat(body_fat_pct: Optional[float]) -> Optional[float]:
    if body_fat_pct is None:
        return None

    if isinstance(body_fat_pct, bool) or not isinstance(body_fat_pct, (int, float)):
        raise ValidationError("Body fat must be a number", "body_fat_percentage")

    if body_fat_pct < 3 or body_fat_pct > 70:
        raise ValidationError("Body fat must be between 3% and 70%", "body_fat_percentage")

    return float(body_fat_pct)

def validate_week_number(week_number: int) -> int:
    if isinstance(week_number, bool) or not isinstance(week_number, int):
        raise ValidationError("Week number must be an integer", "week_number")

    if week_number < 1:
        raise ValidationError("Week number must be 1 or greater", "week_number")

    return week_number

def validate_notes(notes: Optional[str]) -> Optional[str]:
    if not notes:
        return None
    return sanitize_text(notes, MAX_NOTES_LENGTH)
