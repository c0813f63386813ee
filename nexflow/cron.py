"""Cron due-time evaluation.

Turns a standard 5-field UTC cron expression plus the last run instant into
a run/wait decision. Parsing is delegated to APScheduler's ``CronTrigger``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from apscheduler.triggers.cron import CronTrigger

from .constants import NEW_FLOW_LOOKBACK_SECONDS
from .utils.time import ensure_utc, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# crontab numbering: 0 and 7 are both Sunday
_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

Timestamp = Union[datetime, str]


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit():
        number = int(token)
        if number > 7:
            raise ValueError(f"Weekday out of range: {token}")
        return number
    if token[:3] in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES.index(token[:3])
    raise ValueError(f"Unrecognised weekday: {token}")


def _translate_day_of_week(field: str) -> str:
    """Rewrite a crontab weekday field into APScheduler weekday names.

    APScheduler counts weekdays from Monday = 0, crontab from Sunday = 0,
    so numeric tokens (and steps over them) are expanded to explicit names.
    """
    if field in ("*", "?"):
        return "*"
    if not any(ch.isdigit() for ch in field):
        return field.lower()

    days: set[int] = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step <= 0:
            raise ValueError(f"Invalid step in weekday field: {part}")
        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            first, last = base.split("-", 1)
            start, end = _weekday_number(first), _weekday_number(last)
            if end == 0 and start > 0:
                end = 7
        else:
            start = _weekday_number(base)
            end = 6 if step_text else start
        if start > end:
            raise ValueError(f"Invalid weekday range: {base}")
        days.update(day % 7 for day in range(start, end + 1, step))
    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))


def _is_restricted(field: str) -> bool:
    return not field.startswith(("*", "?"))


def _build_triggers(schedule: str) -> list[CronTrigger]:
    """Parse ``schedule`` into one trigger, or two when both day fields are set.

    Crontab fires when either day-of-month or day-of-week matches if both are
    restricted, while APScheduler requires both to match. That case is split
    into a day-of-month trigger and a day-of-week trigger.
    """
    fields = schedule.split()
    if len(fields) != 5:
        raise ValueError(f"Wrong number of fields; got {len(fields)}, expected 5")
    either_day = _is_restricted(fields[2]) and _is_restricted(fields[4])
    fields[4] = _translate_day_of_week(fields[4])
    if either_day:
        variants = [fields[:4] + ["*"], fields[:2] + ["*"] + fields[3:]]
    else:
        variants = [fields]
    return [
        CronTrigger.from_crontab(" ".join(variant), timezone=timezone.utc)
        for variant in variants
    ]


def next_run_after(schedule: str, reference: datetime) -> datetime:
    """Return the first occurrence of ``schedule`` strictly after ``reference``.

    Raises:
        ValueError: If the expression cannot be parsed or never fires again.
    """
    start = ensure_utc(reference) + timedelta(microseconds=1)
    fire_times = []
    for trigger in _build_triggers(schedule):
        fire_time = trigger.get_next_fire_time(None, start)
        if fire_time is not None:
            fire_times.append(fire_time)
    if not fire_times:
        raise ValueError(f"Cron expression has no future occurrence: {schedule}")
    return min(fire_times).astimezone(timezone.utc)


def is_due(
    schedule: str,
    last_run_at: Optional[Timestamp],
    now: Optional[Timestamp] = None,
) -> bool:
    """Decide whether a flow should run at ``now``.

    A flow that never ran is evaluated as if it last ran one minute before
    ``now``, so a schedule matching the current minute fires immediately.
    Unparseable expressions are logged and treated as never due; they never
    raise, so one malformed flow cannot stall the scheduler sweep.

    Raises:
        ValueError: If ``now`` or ``last_run_at`` is a malformed ISO string.
            Stored flows carry datetimes, so only direct callers passing
            text can hit this.
    """
    if isinstance(now, str):
        now = parse_timestamp(now)
    now = ensure_utc(now) or utc_now()
    if isinstance(last_run_at, str):
        last_run_at = parse_timestamp(last_run_at)

    if last_run_at is None:
        reference = now - timedelta(seconds=NEW_FLOW_LOOKBACK_SECONDS)
    else:
        reference = ensure_utc(last_run_at)

    try:
        next_run = next_run_after(schedule, reference)
    except Exception as e:
        logger.warning(f'Invalid cron expression "{schedule}": {e}')
        return False
    return next_run <= now


def describe_schedule(
    schedule: str, now: Optional[datetime] = None
) -> Optional[datetime]:
    """Next occurrence after ``now``, or ``None`` for an invalid expression."""
    try:
        return next_run_after(schedule, now or utc_now())
    except Exception as e:
        logger.warning(f'Invalid cron expression "{schedule}": {e}')
        return None
