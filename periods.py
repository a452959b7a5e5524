from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from errors import ValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime

    @property
    def bucket(self) -> str:
        """strftime pattern used to group trend data for this period."""
        return "%Y-%m" if self.slug == "year" else "%Y-%m-%d"


def parse_bound(value: str, *, end: bool = False) -> datetime:
    """Parse an ISO date or datetime; a bare end date covers that whole day."""
    raw = value.strip()
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime.combine(day, time.max if end else time.min)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Period:
    now = now or datetime.utcnow()
    if period == "week":
        return Period("week", now - timedelta(days=7), now)
    if period == "year":
        return Period("year", datetime(now.year, 1, 1), now)
    if period == "custom":
        if not start or not end:
            raise ValidationError("Custom period requires start and end dates")
        start_at = parse_bound(start)
        end_at = parse_bound(end, end=True)
        if start_at > end_at:
            raise ValidationError("Start date must be before end date")
        return Period("custom", start_at, end_at)

    # unknown selectors fall back to the current month
    return Period("month", datetime(now.year, now.month, 1), now)
