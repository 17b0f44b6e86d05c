from __future__ import annotations

from datetime import date, time
from typing import Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .events import Event
from .guard import ValidationFailure


class StrictForm(BaseModel):
    model_config = ConfigDict(extra="forbid")

    csrf: str = Field(min_length=1)


class EventForm(StrictForm):
    start_date: date = Field(alias="startDate")
    start_time: time = Field(alias="startTime")
    description: str
    link: str
    repeat_weeks: int = Field(default=0, ge=0, alias="repeatWeeks")
    show_to_group: int = Field(ge=0, le=2, alias="showToGroup")
    show_to_all: int = Field(ge=0, le=2, alias="showToAll")

    @field_validator("repeat_weeks", mode="before")
    @classmethod
    def _blank_means_zero(cls, value):
        if value == "":
            return 0
        return value

    def to_event(self, owner: str) -> Event:
        return Event(
            owner=owner,
            start_date=self.start_date,
            start_time=self.start_time,
            repeat_weeks=self.repeat_weeks,
            description=self.description,
            link=self.link,
            show_to_group=self.show_to_group,
            show_to_all=self.show_to_all,
        )


class EditEventForm(EventForm):
    id: int


class DeleteEventForm(StrictForm):
    id: int


class PasswordForm(StrictForm):
    password: str = Field(min_length=1)


F = TypeVar("F", bound=StrictForm)


def parse_form(form_cls: Type[F], data: Mapping[str, str]) -> F:
    """Validate submitted fields, rejecting the request on any problem."""
    try:
        return form_cls.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailure("malformed input") from exc
