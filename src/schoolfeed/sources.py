"""Cache-first event sources.

Each source owns one cache name. A fetch first looks for a valid, non-empty
cached event list; only on a miss does it touch the SIS session, normalize
the records and write the result back.
"""

import hashlib
from datetime import date

from pydantic import TypeAdapter
from pydantic import ValidationError as ModelValidationError

from schoolfeed.cache import CacheKey, ResponseCache
from schoolfeed.config import FeedConfig
from schoolfeed.errors import CacheMiss
from schoolfeed.logging import get_logger
from schoolfeed.models import Event, EventCategory, PersonType
from schoolfeed.normalize import calendar_to_event, exam_to_event, timetable_to_event
from schoolfeed.sis import resources
from schoolfeed.sis.client import SessionScope, SisSession

logger = get_logger(__name__)

EVENT_LIST = TypeAdapter(list[Event])


class EventSource:
    """Base class for sources; subclasses implement `fetch_live`."""

    name = ""

    def __init__(self, cache: ResponseCache, refresh: bool = False) -> None:
        self.cache = cache
        self.refresh = refresh

    def cache_key(self, start: date, end: date) -> CacheKey:
        return CacheKey(self.name, start, end)

    def load_cached(self, key: CacheKey) -> list[Event] | None:
        """Return cached events, or None when the cache cannot be used."""
        if self.refresh or not self.cache.is_valid(key):
            return None
        try:
            payload = self.cache.load(key)
        except CacheMiss:
            return None
        try:
            return EVENT_LIST.validate_json(payload)
        except ModelValidationError as e:
            logger.warning("cache_corrupt", cache=key.prefix, error=str(e))
            return None

    def fetch(self, scope: SessionScope, start: date, end: date) -> list[Event]:
        key = self.cache_key(start, end)
        cached = self.load_cached(key)
        if cached:
            logger.info("cache_hit", source=self.name, count=len(cached))
            return cached

        logger.info("cache_miss", source=self.name)
        events = self.fetch_live(scope.session, start, end)
        self.cache.write(key, EVENT_LIST.dump_json(events))
        return events

    def fetch_live(self, session: SisSession, start: date, end: date) -> list[Event]:
        raise NotImplementedError


class ExamSource(EventSource):
    name = "exams"

    def fetch_live(self, session: SisSession, start: date, end: date) -> list[Event]:
        events = []
        for exam in resources.get_exams(session, start, end):
            if exam.start is None or exam.end is None:
                logger.warning("exam_skipped", exam_id=exam.id, reason="missing_time")
                continue
            events.append(exam_to_event(exam))
        return events


class CalendarSource(EventSource):
    name = "calendar"

    def __init__(self, cache: ResponseCache, config: FeedConfig, refresh: bool = False) -> None:
        super().__init__(cache, refresh)
        self.config = config

    def fetch_live(self, session: SisSession, start: date, end: date) -> list[Event]:
        calendar = resources.get_calendar_events(
            session,
            start,
            end,
            calendar_name=self.config.calendar_name,
            resource_type=self.config.calendar_resource_type,
            resource=self.config.calendar_resource,
        )
        return [calendar_to_event(entry) for entry in calendar]


class TimetableSource(EventSource):
    name = "timetable"

    def fetch_live(self, session: SisSession, start: date, end: date) -> list[Event]:
        return [
            timetable_to_event(entry)
            for entry in resources.get_timetable_events(session, start, end)
        ]


class IndividualSource(EventSource):
    """Events, exams and calendar entries of one teacher or student."""

    def __init__(
        self,
        cache: ResponseCache,
        config: FeedConfig,
        person: str,
        person_type: PersonType,
        refresh: bool = False,
    ) -> None:
        super().__init__(cache, refresh)
        self.config = config
        self.person = person
        self.person_type = person_type
        # display names are not file-name safe; the digest keeps them distinct
        digest = hashlib.sha1(person.encode("utf-8")).hexdigest()[:10]
        self.name = f"individual_{person_type.value}_{digest}"

    def fetch_live(self, session: SisSession, start: date, end: date) -> list[Event]:
        result = resources.get_individual_events(
            session,
            self.person,
            self.person_type,
            start,
            end,
            calendar_name=self.config.calendar_name,
        )
        category = (
            EventCategory.TEACHER
            if self.person_type is PersonType.TEACHER
            else EventCategory.STUDENT
        )
        events = [timetable_to_event(entry, category) for entry in result.timetable]
        events += [calendar_to_event(entry) for entry in result.calendar]
        events += [exam_to_event(exam) for exam in result.exams]
        return events
