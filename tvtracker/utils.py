import re
from datetime import datetime, timezone
from typing import Optional

DEFAULT_REDIRECT = "/"

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def safe_redirect(to: Optional[str], default_redirect: str = DEFAULT_REDIRECT) -> str:
    """
    Use this any time the redirect path is user-provided (like the query
    string on the login/join pages) to avoid open redirects.
    """
    if not to or not isinstance(to, str):
        return default_redirect

    if not to.startswith("/") or to.startswith("//"):
        return default_redirect

    return to


def validate_email(email) -> bool:
    return isinstance(email, str) and len(email) > 3 and "@" in email


def get_password_validation_error(password) -> Optional[str]:
    if not isinstance(password, str) or len(password) == 0:
        return "Password is required"

    if len(password) < 8:
        return "Password must be at least 8 characters long"

    return None


def sanitize_input(value) -> str:
    """Remove control characters and surrounding whitespace."""
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS.sub("", value).strip()


def validate_and_sanitize_email(email) -> Optional[str]:
    sanitized = sanitize_input(email)
    return sanitized.lower() if validate_email(sanitized) else None


def pad_number(number: int) -> str:
    return f"{number:02d}"


def format_watch_time(minutes: int) -> str:
    """Format minutes as e.g. '2d 3h 15m'."""
    hours = minutes // 60
    days = hours // 24
    remaining_hours = hours % 24
    remaining_minutes = minutes % 60

    if days > 0:
        return f"{days}d {remaining_hours}h {remaining_minutes}m"
    elif hours > 0:
        return f"{hours}h {remaining_minutes}m"
    else:
        return f"{minutes}m"


def format_runtime(minutes: int) -> str:
    """Format minutes as e.g. '1 hour and 5 minutes'."""
    hours = minutes // 60
    remaining_minutes = minutes % 60

    hour_text = f"{hours} {'hour' if hours == 1 else 'hours'}" if hours > 0 else ""
    minute_text = (
        f"{remaining_minutes} {'minute' if remaining_minutes == 1 else 'minutes'}"
        if remaining_minutes > 0
        else ""
    )

    if hour_text and minute_text:
        return f"{hour_text} and {minute_text}"
    return hour_text or minute_text
