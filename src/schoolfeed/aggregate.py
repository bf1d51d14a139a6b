"""Merge all sources into the date-bucketed event feed."""

from datetime import date, timedelta

from schoolfeed.cache import ResponseCache
from schoolfeed.config import FeedConfig, get_config
from schoolfeed.errors import ValidationError
from schoolfeed.logging import get_logger
from schoolfeed.models import Event, PersonType
from schoolfeed.sis.client import SisClient
from schoolfeed.sources import (
    CalendarSource,
    EventSource,
    ExamSource,
    IndividualSource,
    TimetableSource,
)

logger = get_logger(__name__)

DEFAULT_DAYS = 7


def event_sort_key(event: Event) -> tuple:
    """Start, full-day before timed, end, then title.

    Category, location and description break remaining ties so the order
    does not depend on the input order.
    """
    return (
        event.start,
        not event.full_day,
        event.end,
        event.title,
        event.category.value,
        event.location,
        event.description,
    )


def sort_events(events: list[Event]) -> list[Event]:
    return sorted(events, key=event_sort_key)


def iter_days(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def bucket_events(events: list[Event], start: date, end: date) -> dict[str, list[Event]]:
    """Group sorted events by day; every day in [start, end] gets a key."""
    buckets: dict[str, list[Event]] = {day.isoformat(): [] for day in iter_days(start, end)}
    for event in events:
        bucket = buckets.get(event.date.isoformat())
        if bucket is not None:
            bucket.append(event)
    return buckets


def parse_date_range(
    start: str | None = None,
    end: str | None = None,
    days: str | int | None = None,
    today: date | None = None,
) -> tuple[date, date]:
    """Resolve request parameters into an inclusive date range.

    Without a start date the range begins today; without end and days it
    spans one week. End and days are mutually exclusive.

    Raises:
        ValidationError: If a value is malformed or the range is contradictory.
    """
    if not start:
        start_date = today or date.today()
    else:
        try:
            start_date = date.fromisoformat(start)
        except ValueError:
            raise ValidationError(f"Start date {start!r} is invalid")

    if end and days not in (None, ""):
        raise ValidationError("End date and day amount cannot both be given")

    if end:
        try:
            end_date = date.fromisoformat(end)
        except ValueError:
            raise ValidationError(f"End date {end!r} is invalid")
    else:
        if days in (None, ""):
            day_count = DEFAULT_DAYS
        else:
            try:
                day_count = int(days)
            except (TypeError, ValueError):
                raise ValidationError(f"Day amount {days!r} is not a valid integer")
        if day_count < 1:
            raise ValidationError("Day amount must be at least 1")
        end_date = start_date + timedelta(days=day_count - 1)

    if end_date < start_date:
        raise ValidationError("End date must not be before start date")
    return start_date, end_date


def build_sources(
    config: FeedConfig,
    cache: ResponseCache,
    person: str | None = None,
    person_type: PersonType | None = None,
    refresh: bool = False,
) -> list[EventSource]:
    if person:
        return [
            IndividualSource(
                cache, config, person, person_type or PersonType.STUDENT, refresh=refresh
            )
        ]
    return [
        ExamSource(cache, refresh=refresh),
        CalendarSource(cache, config, refresh=refresh),
        TimetableSource(cache, refresh=refresh),
    ]


def get_events(
    start: date,
    end: date,
    person: str | None = None,
    person_type: PersonType | None = None,
    *,
    config: FeedConfig | None = None,
    cache: ResponseCache | None = None,
    client: SisClient | None = None,
    refresh: bool = False,
) -> dict[str, list[Event]]:
    """Build the feed for [start, end], optionally for a single person.

    Sources run one after another; the first error aborts the request and no
    partial feed is returned. The SIS session is only opened when a source
    misses the cache, and is always logged out before returning.

    Raises:
        ValidationError: If end lies before start.
        FeedError: Any fetch failure, unchanged.
    """
    if end < start:
        raise ValidationError("End date must not be before start date")

    config = config or get_config()
    if cache is None:
        cache = ResponseCache(config.cache_dir, ttl_minutes=config.cache_ttl_minutes)
    if client is None:
        client = SisClient(config)

    events: list[Event] = []
    with client.scope() as scope:
        for source in build_sources(config, cache, person, person_type, refresh):
            events.extend(source.fetch(scope, start, end))

    feed = bucket_events(sort_events(events), start, end)
    logger.info(
        "events_built",
        start=start.isoformat(),
        end=end.isoformat(),
        person=bool(person),
        count=len(events),
    )
    return feed
