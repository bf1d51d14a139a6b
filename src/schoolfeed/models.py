"""Pydantic models for SIS records and feed events.

All data structures use Pydantic v2 for validation, serialization, and type safety.
SIS records keep the raw field names as aliases so payloads validate directly.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

SIS_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class PersonType(str, Enum):
    """Resource types a person-scoped feed can be requested for."""

    TEACHER = "teacher"
    STUDENT = "student"

    @property
    def resource_type(self) -> str:
        return self.value.upper()


class EventCategory(str, Enum):
    """Closed set of feed categories."""

    PUBLIC = "public"
    CLUB_ACTIVITY = "club_activity"
    EXAM = "exam"
    STUDENT = "student"
    LOWER_SECONDARY = "lower_secondary"
    UPPER_SECONDARY = "upper_secondary"
    TEACHER = "teacher"

    @property
    def label(self) -> str:
        return _CATEGORY_STYLES[self][0]

    @property
    def color(self) -> str:
        return _CATEGORY_STYLES[self][1]

    @property
    def background_color(self) -> str:
        return _CATEGORY_STYLES[self][2]


# (display label, accent color, background color) for the display surface
_CATEGORY_STYLES: dict[EventCategory, tuple[str, str, str]] = {
    EventCategory.PUBLIC: ("Öffentlich", "emerald-400", "[#D6E4E1]"),
    EventCategory.CLUB_ACTIVITY: ("AG", "emerald-400", "[#D6E4E1]"),
    EventCategory.EXAM: ("Prüfung", "rose-400", "[#E7D8DD]"),
    EventCategory.STUDENT: ("Lernende", "amber-400", "[#E8E2DB]"),
    EventCategory.LOWER_SECONDARY: ("Sek I", "amber-400", "[#E8E2DB]"),
    EventCategory.UPPER_SECONDARY: ("Sek II", "amber-400", "[#E8E2DB]"),
    EventCategory.TEACHER: ("Lehrkräfte", "sky-400", "[#D6E1ED]"),
}


class Event(BaseModel):
    """Canonical feed event.

    `date` is always the calendar day of `start`. Full-day events keep a
    concrete start/end, used only for ordering.
    """

    title: str
    description: str = ""
    category: EventCategory
    date: date
    full_day: bool = False
    start: datetime
    end: datetime
    location: str = ""

    @computed_field
    @property
    def category_label(self) -> str:
        return self.category.label

    @computed_field
    @property
    def category_color(self) -> str:
        return self.category.color

    @computed_field
    @property
    def category_background_color(self) -> str:
        return self.category.background_color

    @model_validator(mode="after")
    def _date_matches_start(self) -> "Event":
        if self.date != self.start.date():
            raise ValueError(
                f"event date {self.date.isoformat()} does not match start {self.start.isoformat()}"
            )
        return self


class SisValue(BaseModel):
    """Generic SIS element reference (class, teacher, room, subject, ...)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = 0
    short_name: str = Field(default="", alias="shortName")
    long_name: str = Field(default="", alias="longName")
    display_name: str = Field(default="", alias="displayName")

    @field_validator("short_name", "long_name", "display_name", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


def parse_sis_timestamp(value: Any) -> datetime | None:
    """Parse an SIS timestamp, ignoring anything past the seconds field.

    Exam payloads append fractional seconds or offsets in varying formats;
    only the first 19 characters are meaningful.
    """
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip('"')[:19]
    if text in ("", "null"):
        return None
    return datetime.strptime(text, SIS_TIMESTAMP_FORMAT)


class Exam(BaseModel):
    """Exam record as returned by the exams endpoint."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(default=0, alias="examId")
    exam_type: SisValue = Field(default_factory=SisValue, alias="examType")
    name: str = Field(default="", alias="examName")
    text: str = Field(default="", alias="examText")
    start: datetime | None = Field(default=None, alias="examStart")
    end: datetime | None = Field(default=None, alias="examEnd")
    subject: SisValue = Field(default_factory=SisValue)
    classes: list[SisValue] = Field(default_factory=list)
    teachers: list[SisValue] = Field(default_factory=list)
    rooms: list[SisValue] = Field(default_factory=list)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _truncate_timestamp(cls, value: Any) -> datetime | None:
        return parse_sis_timestamp(value)

    @field_validator("name", "text", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("exam_type", "subject", mode="before")
    @classmethod
    def _none_as_blank_value(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("classes", "teachers", "rooms", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value


class CalendarEvent(BaseModel):
    """Entry of the school's external calendar."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str
    notes: str = ""
    date: date
    start: datetime
    end: datetime
    full_day: bool
    location: str = ""
    calendar: str = ""
    color: str = ""


class TimetableEvent(BaseModel):
    """Timetable event, possibly merged from several identical lessons."""

    model_config = ConfigDict(frozen=True)

    title: str
    start: datetime
    end: datetime
    classes: list[str] = Field(default_factory=list)
    teachers: list[str] = Field(default_factory=list)
