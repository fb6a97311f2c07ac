"""Drip window and local-day calculations.

Windows are half-open ``[start, end)`` in the workflow's timezone. A window
whose start is later than its end wraps midnight; a window with no bounds, or
with ``start == end``, is always open.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from .models import WorkflowDefinition, ensure_utc


def in_window(start: time | None, end: time | None, at: time) -> bool:
    """Check whether a local wall-clock time falls inside ``[start, end)``."""
    if start is None or end is None or start == end:
        return True
    at = at.replace(tzinfo=None)
    if start < end:
        return start <= at < end
    return at >= start or at < end


def local_time(definition: WorkflowDefinition, now: datetime) -> datetime:
    """Convert a UTC instant to the workflow's wall clock."""
    return ensure_utc(now).astimezone(definition.tz)


def is_window_open(definition: WorkflowDefinition, now: datetime) -> bool:
    return in_window(
        definition.drip_window_start,
        definition.drip_window_end,
        local_time(definition, now).time(),
    )


def local_day(definition: WorkflowDefinition, now: datetime) -> date:
    """The day a daily cap is charged against.

    This is the local calendar date, except that the early-morning tail of a
    window wrapping midnight (e.g. 02:00 inside 22:00-06:00) still belongs to
    the day the window opened. A cap spent at 23:30 therefore stays spent
    until the window opens again the following evening.
    """
    local = local_time(definition, now)
    start = definition.drip_window_start
    end = definition.drip_window_end
    if start is not None and end is not None and start > end and local.time() < end:
        return local.date() - timedelta(days=1)
    return local.date()


def next_window_open(definition: WorkflowDefinition, now: datetime) -> datetime:
    """The next instant (UTC) at which the window opens after ``now``.

    Returns ``now`` when the workflow has no window. Used to report when a
    closed or capped workflow will resume.
    """
    now = ensure_utc(now)
    start = definition.drip_window_start
    end = definition.drip_window_end
    if start is None or end is None or start == end:
        return now
    local = local_time(definition, now)
    candidate = datetime.combine(local.date(), start, tzinfo=definition.tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), start, tzinfo=definition.tz)
    return candidate.astimezone(now.tzinfo)


def cap_resets_at(definition: WorkflowDefinition, now: datetime) -> datetime:
    """When a workflow that hit its daily cap may admit contacts again (UTC).

    With a drip window this is the next window opening; without one it is
    the next local midnight.
    """
    if definition.drip_window_start is not None and definition.drip_window_end is not None:
        if definition.drip_window_start != definition.drip_window_end:
            return next_window_open(definition, now)
    local = local_time(definition, now)
    midnight = datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=definition.tz)
    return midnight.astimezone(ensure_utc(now).tzinfo)
