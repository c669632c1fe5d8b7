import math
from typing import Final, Optional

SECONDS_PER_MINUTE: Final[int] = 60
_PLACEHOLDER_PHONES: Final[frozenset] = frozenset({"", "unknown", "n/a", "none", "null"})


def billing_minutes(duration_seconds: int) -> int:
    """Minutes billed for a call, always rounded up."""
    if duration_seconds <= 0:
        return 0
    return math.ceil(duration_seconds / SECONDS_PER_MINUTE)


def format_duration(duration_seconds: int) -> str:
    seconds = max(int(duration_seconds), 0)
    minutes, remaining = divmod(seconds, SECONDS_PER_MINUTE)
    if minutes == 0:
        return f"{remaining} sec"
    if remaining == 0:
        return f"{minutes} min"
    return f"{minutes} min {remaining} sec"


def normalize_phone(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(int(value))
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if cleaned.lower() in _PLACEHOLDER_PHONES:
        return None
    return cleaned
