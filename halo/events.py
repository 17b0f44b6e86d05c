from __future__ import annotations

from datetime import date, datetime, time, timedelta
from enum import IntEnum
from typing import Iterator, List, Optional

from sqlmodel import Field, Session, SQLModel, or_, select


class DataIntegrityError(ValueError):
    """A stored value is outside the range the schema allows."""


class Visibility(IntEnum):
    """Disclosure policy, ordered by how much it reveals."""

    HIDE = 0
    BUSY = 1
    SHOW = 2

    @classmethod
    def from_code(cls, code: int) -> "Visibility":
        try:
            return cls(code)
        except ValueError:
            raise DataIntegrityError(f"visibility out of range: {code!r}") from None


BUSY_DESCRIPTION = "busy"


class Event(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner: str = Field(index=True)
    start_date: date
    start_time: time
    repeat_weeks: int = Field(default=0, ge=0)
    description: str = ""
    link: str = ""
    show_to_group: int = Field(default=int(Visibility.HIDE))
    show_to_all: int = Field(default=int(Visibility.HIDE))


class EventStore:
    """CRUD helper for :class:`Event` rows.

    Every method is a single statement; an ownership check followed by a
    write is two round trips and is not wrapped in one transaction.
    """

    def __init__(self, engine):
        self.engine = engine

    def find_visible(self, viewer: Optional[str]) -> List[Event]:
        """Return events ``viewer`` may see at least partially.

        Anonymous viewers only get events shown to everyone; a logged-in viewer
        also gets their own events and those shown to the group.
        """
        with Session(self.engine) as session:
            stmt = select(Event)
            if viewer is None:
                stmt = stmt.where(Event.show_to_all > int(Visibility.HIDE))
            else:
                stmt = stmt.where(
                    or_(
                        Event.owner == viewer,
                        Event.show_to_all > int(Visibility.HIDE),
                        Event.show_to_group > int(Visibility.HIDE),
                    )
                )
            return session.exec(stmt.order_by(Event.id)).all()

    def get(self, event_id: int) -> Optional[Event]:
        with Session(self.engine) as session:
            return session.get(Event, event_id)

    def get_owned(self, event_id: int, owner: str) -> Optional[Event]:
        with Session(self.engine) as session:
            return session.exec(
                select(Event).where((Event.id == event_id) & (Event.owner == owner))
            ).first()

    def create(self, event: Event) -> Event:
        with Session(self.engine) as session:
            session.add(event)
            session.commit()
            session.refresh(event)
            return event

    def update(self, event_id: int, new_data: Event) -> bool:
        with Session(self.engine) as session:
            event = session.get(Event, event_id)
            if not event:
                return False
            event.owner = new_data.owner
            event.start_date = new_data.start_date
            event.start_time = new_data.start_time
            event.repeat_weeks = new_data.repeat_weeks
            event.description = new_data.description
            event.link = new_data.link
            event.show_to_group = new_data.show_to_group
            event.show_to_all = new_data.show_to_all
            session.add(event)
            session.commit()
            return True

    def delete(self, event_id: int) -> bool:
        with Session(self.engine) as session:
            event = session.get(Event, event_id)
            if not event:
                return False
            session.delete(event)
            session.commit()
            return True


def expand(
    event: Event, day_from: Optional[date], day_until: Optional[date]
) -> Iterator[datetime]:
    """Yield the start of each instance of ``event`` between the two days.

    Both bounds are exclusive; ``None`` leaves that side open. The listing
    widens its window by a day on each side before calling this. Instances
    that would fall after ``date.max`` are never produced.
    """
    first = 0
    if day_from is not None and day_from >= event.start_date:
        first = (day_from - event.start_date).days // 7 + 1
    for k in range(first, event.repeat_weeks + 1):
        try:
            day = event.start_date + timedelta(days=7 * k)
        except OverflowError:
            return
        if day_until is not None and day >= day_until:
            return
        yield datetime.combine(day, event.start_time)


def _disclose(event: Event, visibility: Visibility) -> tuple[str, str]:
    if visibility == Visibility.SHOW:
        return event.description, event.link
    if visibility == Visibility.BUSY:
        return BUSY_DESCRIPTION, ""
    return "", ""


def redact(event: Event, viewer: Optional[str]) -> tuple[str, str]:
    """Return the ``(description, link)`` of ``event`` that ``viewer`` may see.

    The owner sees everything. Any other logged-in viewer is governed by
    ``show_to_group`` and anonymous viewers by ``show_to_all``.
    """
    if viewer is not None and viewer == event.owner:
        return event.description, event.link
    if viewer is not None:
        return _disclose(event, Visibility.from_code(event.show_to_group))
    return _disclose(event, Visibility.from_code(event.show_to_all))
