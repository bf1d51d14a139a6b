"""Exam, calendar and timetable feed for the school display.

Fetches records from WebUntis, normalizes them into one event model and
buckets them per day, with a filesystem cache in front of the SIS.
"""

from schoolfeed.aggregate import get_events, parse_date_range
from schoolfeed.cache import CacheKey, ResponseCache
from schoolfeed.models import Event, EventCategory, PersonType
from schoolfeed.sis.client import SisClient

__all__ = [
    "get_events",
    "parse_date_range",
    "Event",
    "EventCategory",
    "PersonType",
    "CacheKey",
    "ResponseCache",
    "SisClient",
]
