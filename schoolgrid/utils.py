from datetime import datetime, timezone
from typing import Optional

from schoolgrid.errors import ValidationError


def as_int(value) -> Optional[int]:
    """Coerce a JSON/query value to int; None when it is not a whole number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def require_int(value, field: str) -> int:
    number = as_int(value)
    if number is None:
        raise ValidationError(f'{field} must be an integer')
    return number


def parse_datetime(value, field: str) -> Optional[datetime]:
    """Parse an ISO-8601 string into naive UTC; empty values give None."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'{field} must be an ISO-8601 date or datetime')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
