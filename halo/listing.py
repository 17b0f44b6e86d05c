from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from .events import Event, Visibility, expand, redact
from .time_utils import days_to, to_utc_string, today


DEFAULT_DAYS_BEFORE = 1
DEFAULT_DAYS_AFTER = 3


@dataclass(frozen=True)
class Situation:
    """Who is looking, and at which days (both inclusive)."""

    user: Optional[str]
    day_from: date
    day_until: date


@dataclass
class Occurrence:
    id: int
    owner: str
    start: datetime
    repeat_weeks: int
    description: str
    link: str
    show_to_group: int
    show_to_all: int
    days_to: int

    @property
    def start_utc(self) -> str:
        return to_utc_string(self.start)


def default_window(
    day_from: Optional[date] = None, day_until: Optional[date] = None
) -> tuple[date, date]:
    now = today()
    return (
        day_from or now - timedelta(days=DEFAULT_DAYS_BEFORE),
        day_until or now + timedelta(days=DEFAULT_DAYS_AFTER),
    )


def _shift(day: date, days: int) -> Optional[date]:
    """Move ``day`` by ``days``, or ``None`` (an open bound) past the calendar's end."""
    try:
        return day + timedelta(days=days)
    except OverflowError:
        return None


def occurrences_of(
    event: Event, situation: Situation, now: Optional[date] = None
) -> List[Occurrence]:
    now = now or today()
    show_to_group = Visibility.from_code(event.show_to_group)
    show_to_all = Visibility.from_code(event.show_to_all)
    description, link = redact(event, situation.user)
    return [
        Occurrence(
            id=event.id,
            owner=event.owner,
            start=start,
            repeat_weeks=event.repeat_weeks,
            description=description,
            link=link,
            show_to_group=int(show_to_group),
            show_to_all=int(show_to_all),
            days_to=days_to(now, start.date()),
        )
        for start in expand(
            event,
            _shift(situation.day_from, -1),
            _shift(situation.day_until, 1),
        )
    ]


def list_occurrences(
    events: Iterable[Event], situation: Situation, now: Optional[date] = None
) -> List[Occurrence]:
    """Expand and redact ``events`` and merge them into one timeline.

    ``events`` should already be limited to what the viewer may see at all
    (see :meth:`EventStore.find_visible`). Ties keep the order of ``events``.
    """
    now = now or today()
    result: List[Occurrence] = []
    for event in events:
        result.extend(occurrences_of(event, situation, now))
    result.sort(key=lambda occ: occ.start)
    return result


def occurrence_as_json(occ: Occurrence) -> dict:
    return {
        "id": occ.id,
        "owner": occ.owner,
        "startDateTime": occ.start_utc,
        "repeatWeeks": occ.repeat_weeks,
        "description": occ.description,
        "link": occ.link,
        "showToGroup": occ.show_to_group,
        "showToAll": occ.show_to_all,
        "daysTo": occ.days_to,
    }
