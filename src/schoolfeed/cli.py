"""Print the event feed for a date range as JSON.

Run with: python -m schoolfeed
Range:    python -m schoolfeed --start 2024-01-15 --days 5
Teacher:  python -m schoolfeed --teacher "Müller, Anna"
Refresh:  python -m schoolfeed --refresh

Output is the response envelope {"success": ..., "message": ..., "result": ...}
where result maps every day of the range to its ordered events.

Exit codes:
  0 = success (feed on stdout)
  1 = error (failure envelope on stdout, details in the log on stderr)
"""

import argparse
import json
import sys
from typing import Any

from dotenv import load_dotenv

from schoolfeed.aggregate import get_events, parse_date_range
from schoolfeed.config import get_config
from schoolfeed.errors import FeedError
from schoolfeed.logging import get_logger, setup_logging
from schoolfeed.models import PersonType
from schoolfeed.sources import EVENT_LIST


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="schoolfeed",
        description="Fetch exams, calendar and timetable events as a per-day JSON feed.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--start", type=str, default=None, help="First day (YYYY-MM-DD, default: today).")

    range_group = parser.add_mutually_exclusive_group()
    range_group.add_argument("--end", type=str, default=None, help="Last day (YYYY-MM-DD).")
    range_group.add_argument("--days", type=str, default=None, help="Number of days (default: 7).")

    person_group = parser.add_mutually_exclusive_group()
    person_group.add_argument("--teacher", type=str, default=None, help="Teacher display name.")
    person_group.add_argument("--student", type=str, default=None, help="Student display name.")

    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore cached responses and fetch everything from the SIS.",
    )
    return parser.parse_args(argv)


def _envelope(success: bool, message: str = "", result: Any = None) -> str:
    return json.dumps(
        {"success": success, "message": message, "result": result},
        ensure_ascii=False,
        indent=2,
    )


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)
    log = get_logger(__name__)

    if args.teacher:
        person, person_type = args.teacher, PersonType.TEACHER
    elif args.student:
        person, person_type = args.student, PersonType.STUDENT
    else:
        person, person_type = None, None

    try:
        start, end = parse_date_range(args.start, args.end, args.days)
        feed = get_events(
            start, end, person, person_type, config=config, refresh=args.refresh
        )
    except FeedError as e:
        log.error("feed_failed", error=str(e), type=type(e).__name__)
        print(_envelope(False, str(e)))
        return 1

    result = {day: EVENT_LIST.dump_python(events, mode="json") for day, events in feed.items()}
    print(_envelope(True, result=result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
