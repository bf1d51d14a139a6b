"""WebUntis endpoint adapters.

Each function issues the requests for one endpoint family and parses the
payload into intermediate records (Exam, CalendarEvent, TimetableEvent).

Payload shapes (observed, partially undocumented):

  exams          {"exams": [{"examType": {...}, "examName", "examText",
                  "examStart": "2024-01-15T07:45:00.000", ...}]}
  timetable/     {"days": [{"date": "2024-01-15",
  entries           "dayEntries":  [{"id", "name", "duration": {"start", "end"},
                                     "position1": {"shortName"}, ...}],
                    "gridEntries": [{"ids": [..], "name", "type", "lessonInfo",
                                     "duration": {"start", "end"},
                                     "position1": [{"current": {...}}], ...}]}]}
  Timetable.do   {"result": {"data": {"elementIds": [..],
                  "elementPeriods": {"<id>": [lesson, ...]},
                  "elements": [{"type", "id", "name"}]}}}
  timetable/     {"teachers": [{"teacher": {"id", "shortName", "longName",
  filter                         "displayName"}}]}

dayEntries and gridEntries describe the same concept with incompatible
layouts: day entries hold single objects per position, grid entries hold
lists of {"current": ...} wrappers.
"""

import time
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from enum import Enum
from typing import Any, Iterator, NamedTuple

from pydantic import ValidationError as ModelValidationError

from schoolfeed.errors import NotFoundError, ParseError
from schoolfeed.logging import get_logger
from schoolfeed.models import (
    CalendarEvent,
    Exam,
    PersonType,
    SisValue,
    TimetableEvent,
)
from schoolfeed.sis.client import SisSession

log = get_logger(__name__)

EXAMS_PATH = "WebUntis/api/rest/view/v1/exams"
CALENDAR_INTEGRATION_PATH = "WebUntis/api/rest/view/v1/timetable/calendar"
ENTRIES_PATH = "WebUntis/api/rest/view/v1/timetable/entries"
FILTER_PATH = "WebUntis/api/rest/view/v1/timetable/filter"
DAY_OVERVIEW_PATH = "WebUntis/Timetable.do"

# Element types in the day overview
CLASS_ELEMENT = 1
TEACHER_ELEMENT = 2


def format_date(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def _dig(value: Any, *path: str | int, default: Any = None) -> Any:
    """Walk nested dicts/lists; return `default` when any step is missing."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or not -len(value) <= key < len(value):
                return default
            value = value[key]
        else:
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
    return default if value is None else value


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(f"Expected a list for {what}, got {type(value).__name__}")
    return value


def _parse_duration(entry: dict[str, Any], field: str) -> datetime:
    raw = _dig(entry, "duration", field)
    try:
        return datetime.fromisoformat(str(raw))
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid entry duration {field}={raw!r}") from e


# --- Exams -------------------------------------------------------------------


def parse_exams(payload: Any) -> list[Exam]:
    """Parse the exams endpoint payload.

    Raises:
        ParseError: If the payload has no exam list or an exam is malformed.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("exams"), list):
        raise ParseError("Exam payload has no 'exams' list")
    try:
        return [Exam.model_validate(raw) for raw in payload["exams"]]
    except ModelValidationError as e:
        raise ParseError(f"Malformed exam record: {e}") from e


def get_exams(
    session: SisSession, start: date, end: date, with_deleted: bool = False
) -> list[Exam]:
    payload = session.request_json(
        "GET",
        EXAMS_PATH,
        params={
            "start": format_date(start),
            "end": format_date(end),
            "withDeleted": "true" if with_deleted else "false",
        },
    )
    exams = parse_exams(payload)
    log.info("exams_fetched", start=str(start), end=str(end), count=len(exams))
    return exams


# --- Calendar ----------------------------------------------------------------


class EntryShape(Enum):
    """Layout of a timetable entry, keyed by the list it was found in."""

    DAY = "dayEntries"
    GRID = "gridEntries"


def iter_day_entries(
    payload: Any, shapes: tuple[EntryShape, ...] = (EntryShape.DAY, EntryShape.GRID)
) -> Iterator[tuple[EntryShape, date, dict[str, Any]]]:
    """Yield (shape, day, entry) for every entry of a timetable/entries payload.

    Raises:
        ParseError: If the payload has no day list or a day has no valid date.
    """
    if not isinstance(payload, dict):
        raise ParseError("Timetable entries payload is not a JSON object")
    for day_data in _as_list(payload.get("days"), "days"):
        try:
            day = date.fromisoformat(str(_dig(day_data, "date", default="")))
        except ValueError as e:
            raise ParseError(f"Invalid day in timetable entries: {e}") from e
        for shape in shapes:
            for entry in _as_list(_dig(day_data, shape.value), shape.value):
                if isinstance(entry, dict):
                    yield shape, day, entry


def _clamp_to_day(day: date, start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Restrict a multi-day entry to the part falling on `day`."""
    day_start = datetime.combine(day, dt_time.min)
    day_end = datetime.combine(day, dt_time(23, 59, 59))
    return max(start, day_start), min(end, day_end)


def _parse_day_entry(day: date, entry: dict[str, Any]) -> CalendarEvent:
    start, end = _clamp_to_day(
        day, _parse_duration(entry, "start"), _parse_duration(entry, "end")
    )
    return CalendarEvent(
        id=int(_dig(entry, "id", default=0)),
        name=str(_dig(entry, "position1", "shortName", default="")),
        notes=str(_dig(entry, "notesAll", default="")),
        date=day,
        start=start,
        end=end,
        full_day=True,
        location=str(_dig(entry, "position2", "shortName", default="")),
        calendar=str(_dig(entry, "position3", "shortName", default="")),
        color=str(_dig(entry, "color", default="")),
    )


def _parse_grid_entry(day: date, entry: dict[str, Any]) -> CalendarEvent:
    start = _parse_duration(entry, "start")
    return CalendarEvent(
        id=int(_dig(entry, "ids", 0, default=0)),
        name=str(_dig(entry, "position1", 0, "current", "shortName", default="")),
        notes=str(_dig(entry, "notesAll", default="")),
        date=start.date(),
        start=start,
        end=_parse_duration(entry, "end"),
        full_day=False,
        location=str(_dig(entry, "position2", 0, "current", "shortName", default="")),
        calendar=str(_dig(entry, "position3", 0, "current", "shortName", default="")),
        color=str(_dig(entry, "color", default="")),
    )


_CALENDAR_PARSERS = {
    EntryShape.DAY: _parse_day_entry,
    EntryShape.GRID: _parse_grid_entry,
}


def parse_calendar_events(payload: Any, calendar_name: str) -> list[CalendarEvent]:
    """Parse entries belonging to the external calendar `calendar_name`."""
    events: list[CalendarEvent] = []
    for shape, day, entry in iter_day_entries(payload):
        if entry.get("name") != calendar_name:
            continue
        events.append(_CALENDAR_PARSERS[shape](day, entry))
    return events


def get_calendar_events(
    session: SisSession,
    start: date,
    end: date,
    calendar_name: str,
    resource_type: str,
    resource: int,
) -> list[CalendarEvent]:
    """Fetch calendar entries by querying the timetable of a proxy resource.

    The external calendar only shows up in timetable queries while its
    integration is switched on, so it is enabled before every read.
    """
    session.request(
        "PUT",
        CALENDAR_INTEGRATION_PATH,
        json_body={"integrations": [{"name": calendar_name, "active": True}]},
    )
    payload = session.request_json(
        "GET",
        ENTRIES_PATH,
        params={
            "start": format_date(start),
            "end": format_date(end),
            "format": "4",
            "resourceType": resource_type,
            "resources": str(resource),
            # rarely used period type, keeps the lesson grid out of the response
            "periodTypes": "OFFICE_HOUR",
        },
    )
    events = parse_calendar_events(payload, calendar_name)
    log.info("calendar_fetched", start=str(start), end=str(end), count=len(events))
    return events


# --- Timetable ---------------------------------------------------------------


def _lesson_time(day: date, hhmm: int) -> datetime:
    return datetime.combine(day, dt_time(hhmm // 100, hhmm % 100))


def _merge_names(existing: list[str], new: list[str]) -> list[str]:
    return sorted(set(existing) | set(new))


def parse_day_overview(
    payload: Any, merged: dict[tuple[str, datetime, datetime], TimetableEvent] | None = None
) -> dict[tuple[str, datetime, datetime], TimetableEvent]:
    """Collect event lessons of a day overview, merged by title and time.

    The same event appears once per participating class. Lessons with equal
    title, start and end collapse into one TimetableEvent carrying the union
    of classes and teachers.
    """
    if merged is None:
        merged = {}
    data = _dig(payload, "result", "data")
    if not isinstance(data, dict):
        raise ParseError("Day overview payload has no result.data object")

    names: dict[tuple[int, int], str] = {}
    for element in _as_list(data.get("elements"), "elements"):
        names[(_dig(element, "type", default=0), _dig(element, "id", default=0))] = str(
            _dig(element, "name", default="")
        )

    periods = data.get("elementPeriods") or {}
    if not isinstance(periods, dict):
        raise ParseError("Day overview elementPeriods is not an object")

    for element_id in _as_list(data.get("elementIds"), "elementIds"):
        for lesson in _as_list(periods.get(str(element_id)), "elementPeriods"):
            if not _dig(lesson, "is", "event", default=False):
                continue
            try:
                day = datetime.strptime(str(lesson["date"]), "%Y%m%d").date()
                start = _lesson_time(day, int(lesson["startTime"]))
                end = _lesson_time(day, int(lesson["endTime"]))
            except (KeyError, TypeError, ValueError) as e:
                raise ParseError(f"Malformed lesson in day overview: {e}") from e

            classes: list[str] = []
            teachers: list[str] = []
            for element in _as_list(lesson.get("elements"), "lesson elements"):
                key = (_dig(element, "type", default=0), _dig(element, "id", default=0))
                if key not in names:
                    continue
                if key[0] == CLASS_ELEMENT:
                    classes.append(names[key])
                elif key[0] == TEACHER_ELEMENT:
                    teachers.append(names[key])

            title = str(_dig(lesson, "lessonText", default=""))
            identity = (title, start, end)
            if identity in merged:
                current = merged[identity]
                merged[identity] = current.model_copy(
                    update={
                        "classes": _merge_names(current.classes, classes),
                        "teachers": _merge_names(current.teachers, teachers),
                    }
                )
            else:
                merged[identity] = TimetableEvent(
                    title=title,
                    start=start,
                    end=end,
                    classes=_merge_names([], classes),
                    teachers=_merge_names([], teachers),
                )
    return merged


def get_timetable_events(session: SisSession, start: date, end: date) -> list[TimetableEvent]:
    """Fetch timetable events for every day in [start, end]."""
    merged: dict[tuple[str, datetime, datetime], TimetableEvent] = {}
    day = start
    while day <= end:
        payload = session.request_json(
            "POST",
            DAY_OVERVIEW_PATH,
            params={"request.preventCache": str(int(time.time() * 1000))},
            data={
                "ajaxCommand": "getDayOverviewTimetable",
                "elementType": str(CLASS_ELEMENT),
                "date": day.strftime("%Y%m%d"),
                "formatId": "4",
            },
        )
        parse_day_overview(payload, merged)
        day += timedelta(days=1)

    events = list(merged.values())
    log.info("timetable_fetched", start=str(start), end=str(end), count=len(events))
    return events


# --- Persons and individual timetables ---------------------------------------


def parse_persons(payload: Any, person_type: PersonType) -> list[SisValue]:
    key = person_type.value
    if not isinstance(payload, dict):
        raise ParseError("Person filter payload is not a JSON object")
    persons: list[SisValue] = []
    for item in _as_list(payload.get(f"{key}s"), f"{key}s"):
        raw = _dig(item, key)
        if not isinstance(raw, dict):
            raise ParseError(f"Person filter entry has no '{key}' object")
        try:
            persons.append(SisValue.model_validate(raw))
        except ModelValidationError as e:
            raise ParseError(f"Malformed {key} record: {e}") from e
    return persons


def get_persons(session: SisSession, person_type: PersonType) -> list[SisValue]:
    payload = session.request_json(
        "GET",
        FILTER_PATH,
        params={"resourceType": person_type.resource_type, "timetableType": "STANDARD"},
    )
    return parse_persons(payload, person_type)


def find_person(persons: list[SisValue], display_name: str, person_type: PersonType) -> SisValue:
    """Return the person with exactly this display name.

    Raises:
        NotFoundError: If nobody matches.
    """
    for person in persons:
        if person.display_name == display_name:
            return person
    raise NotFoundError(f"No {person_type.value} named {display_name!r}")


def combine_exam_periods(exams: list[Exam]) -> list[Exam]:
    """Merge exams written across consecutive periods into one exam.

    Exams are ordered by name then start; neighbours with the same name on
    the same day become one exam from the first start to the last end.
    """
    ordered = sorted(
        (exam for exam in exams if exam.start is not None and exam.end is not None),
        key=lambda exam: (exam.name, exam.start),
    )
    combined: list[Exam] = []
    for exam in ordered:
        previous = combined[-1] if combined else None
        if (
            previous is not None
            and previous.name == exam.name
            and previous.start.date() == exam.start.date()
        ):
            combined[-1] = previous.model_copy(update={"end": max(previous.end, exam.end)})
        else:
            combined.append(exam)
    return combined


def _long_names(entry: dict[str, Any], position: str) -> list[str]:
    return [
        str(_dig(item, "current", "longName", default=""))
        for item in _as_list(entry.get(position), position)
    ]


class IndividualEvents(NamedTuple):
    timetable: list[TimetableEvent]
    calendar: list[CalendarEvent]
    exams: list[Exam]


def parse_individual_entries(payload: Any, calendar_name: str) -> IndividualEvents:
    timetable: list[TimetableEvent] = []
    exams: list[Exam] = []
    for _, _, entry in iter_day_entries(payload, shapes=(EntryShape.GRID,)):
        entry_type = entry.get("type")
        if entry_type not in ("EVENT", "EXAM"):
            continue
        start = _parse_duration(entry, "start")
        end = _parse_duration(entry, "end")
        title = str(_dig(entry, "lessonInfo", default=""))
        if entry_type == "EVENT":
            timetable.append(
                TimetableEvent(
                    title=title,
                    start=start,
                    end=end,
                    classes=_long_names(entry, "position1"),
                    teachers=_long_names(entry, "position2"),
                )
            )
        else:
            room = str(_dig(entry, "position4", 0, "current", "shortName", default=""))
            exams.append(
                Exam(name=title, start=start, end=end, rooms=[SisValue(short_name=room)])
            )

    return IndividualEvents(
        timetable=timetable,
        calendar=parse_calendar_events(payload, calendar_name),
        exams=combine_exam_periods(exams),
    )


def get_individual_events(
    session: SisSession,
    person: str,
    person_type: PersonType,
    start: date,
    end: date,
    calendar_name: str,
) -> IndividualEvents:
    """Fetch events, exams and calendar entries of one teacher or student.

    Raises:
        NotFoundError: If no person of that type has this display name.
    """
    match = find_person(get_persons(session, person_type), person, person_type)
    payload = session.request_json(
        "GET",
        ENTRIES_PATH,
        params={
            "start": format_date(start),
            "end": format_date(end),
            "format": "4",
            "resourceType": person_type.resource_type,
            "resources": str(match.id),
            "periodTypes": ["EVENT", "EXAM"],
        },
    )
    result = parse_individual_entries(payload, calendar_name)
    log.info(
        "individual_fetched",
        person_type=person_type.value,
        person_id=match.id,
        events=len(result.timetable),
        calendar=len(result.calendar),
        exams=len(result.exams),
    )
    return result
