"""
Cron expressions for backup schedules.

Accepted forms:
    5 fields      minute hour day-of-month month day-of-week
    6 fields      second minute hour day-of-month month day-of-week
    descriptors   @yearly @annually @monthly @weekly @daily @midnight @hourly
                  (the leading @ is optional)
    @every <d>    fixed interval, e.g. "@every 90s", "@every 1h30m"

Day-of-week uses cron numbering (0 or 7 = Sunday) and three-letter names;
"?" is a wildcard for day-of-month and day-of-week. When both day fields are
restricted a time matches if either of them does, as in standard cron.
"""
import re
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .exceptions import ValidationError

DESCRIPTORS = {
    "yearly": "0 0 0 1 1 *",
    "annually": "0 0 0 1 1 *",
    "monthly": "0 0 0 1 * *",
    "weekly": "0 0 0 * * 0",
    "daily": "0 0 0 * * *",
    "midnight": "0 0 0 * * *",
    "hourly": "0 0 * * * *",
}

_CRON_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def _parse_duration(text: str) -> timedelta:
    text = text.strip().lower()
    if not text or _DURATION_PART.sub("", text):
        raise ValidationError(f"invalid cron expression: bad duration {text!r}")
    seconds = sum(float(value) * _DURATION_UNITS[unit] for value, unit in _DURATION_PART.findall(text))
    if seconds < 1:
        raise ValidationError("invalid cron expression: @every interval must be at least one second")
    return timedelta(seconds=seconds)


def _weekday_number(token: str) -> int:
    if token.isdigit():
        value = int(token)
        if value > 7:
            raise ValidationError(f"invalid cron expression: day of week {value} out of range")
        return value
    name = token[:3]
    if len(token) < 3 or name not in _CRON_WEEKDAYS:
        raise ValidationError(f"invalid cron expression: unknown day of week {token!r}")
    return _CRON_WEEKDAYS.index(name)


def _convert_day_of_week(field: str) -> str:
    """Rewrite a cron day-of-week field with names, which APScheduler reads unambiguously."""
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.lower().split(","):
        step = 1
        has_step = "/" in part
        if has_step:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValidationError(f"invalid cron expression: bad step in {field!r}")
            step = int(step_text)

        if part in ("*", "?"):
            start, end = 0, 6
        elif "-" in part:
            first, last = part.split("-", 1)
            start, end = _weekday_number(first), _weekday_number(last)
        else:
            start = _weekday_number(part)
            end = 6 if has_step else start

        if start > end:
            raise ValidationError(f"invalid cron expression: bad range in {field!r}")
        days.update(day % 7 for day in range(start, end + 1, step))

    return ",".join(_CRON_WEEKDAYS[day] for day in sorted(days))


def build_trigger(expression: str, timezone: str = "UTC", now: Optional[datetime] = None) -> BaseTrigger:
    """Parse `expression` into an APScheduler trigger; raises ValidationError."""
    if not expression or not expression.strip():
        raise ValidationError("invalid cron expression: empty")
    text = " ".join(expression.split())

    if text.lower().startswith("@every"):
        interval = _parse_duration(text[len("@every"):])
        start = (now or datetime.now(dt_timezone.utc)) + interval
        return IntervalTrigger(seconds=interval.total_seconds(), start_date=start, timezone=timezone)

    descriptor = text.lstrip("@").lower()
    if descriptor in DESCRIPTORS:
        text = DESCRIPTORS[descriptor]
    elif text.startswith("@"):
        raise ValidationError(f"invalid cron expression: unknown descriptor {text!r}")

    fields = text.split(" ")
    if len(fields) == 5:
        fields.insert(0, "0")
    elif len(fields) != 6:
        raise ValidationError(f"invalid cron expression: expected 5 or 6 fields, got {len(fields)}")

    second, minute, hour, day, month, day_of_week = fields
    weekdays = _convert_day_of_week(day_of_week)
    if day == "?":
        day = "*"

    def cron(day_field, weekday_field):
        return CronTrigger(
            second=second, minute=minute, hour=hour, day=day_field, month=month,
            day_of_week=weekday_field, timezone=timezone,
        )

    try:
        # both day fields restricted: either one matching is enough
        if not day.startswith("*") and not day_of_week.startswith(("*", "?")):
            return OrTrigger([cron(day, "*"), cron("*", weekdays)])
        return cron(day, weekdays)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"invalid cron expression {expression!r}: {e}", original_error=e)


def validate_expression(expression: str, timezone: str = "UTC") -> None:
    build_trigger(expression, timezone)


def next_fire_time_for(trigger: BaseTrigger, now: datetime) -> datetime:
    """First fire time strictly after `now`."""
    next_time = trigger.get_next_fire_time(None, now + timedelta(microseconds=1))
    if next_time is None:
        raise ValidationError("invalid cron expression: it never fires")
    return next_time


def next_fire_time(expression: str, now: datetime, timezone: str = "UTC") -> datetime:
    return next_fire_time_for(build_trigger(expression, timezone, now), now)
