import json
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from schoolfeed import cli
from schoolfeed.errors import AuthError
from schoolfeed.models import Event, EventCategory, PersonType


@pytest.fixture
def fake_feed(monkeypatch, config):
    get_events = MagicMock()
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    monkeypatch.setattr(cli, "get_config", lambda: config)
    monkeypatch.setattr(cli, "get_events", get_events)
    return get_events


def test_success_prints_feed_envelope(fake_feed, capsys):
    fake_feed.return_value = {
        "2024-01-15": [
            Event(
                title="Wandertag",
                category=EventCategory.STUDENT,
                date=date(2024, 1, 15),
                full_day=True,
                start=datetime(2024, 1, 15),
                end=datetime(2024, 1, 15, 23, 59, 59),
            )
        ],
        "2024-01-16": [],
    }

    assert cli.main(["--start", "2024-01-15", "--days", "2"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["success"] is True
    assert output["message"] == ""
    day = output["result"]["2024-01-15"][0]
    assert day["title"] == "Wandertag"
    assert day["category"] == "student"
    assert day["category_label"] == "Lernende"
    assert day["start"] == "2024-01-15T00:00:00"
    assert output["result"]["2024-01-16"] == []

    args, kwargs = fake_feed.call_args
    assert args == (date(2024, 1, 15), date(2024, 1, 16), None, None)
    assert kwargs["refresh"] is False


def test_teacher_and_refresh_are_forwarded(fake_feed):
    fake_feed.return_value = {}

    cli.main(["--start", "2024-01-15", "--teacher", "Müller, Anna", "--refresh"])

    args, kwargs = fake_feed.call_args
    assert args[2:] == ("Müller, Anna", PersonType.TEACHER)
    assert kwargs["refresh"] is True


def test_invalid_range_prints_failure_envelope(fake_feed, capsys):
    assert cli.main(["--start", "gestern"]) == 1

    output = json.loads(capsys.readouterr().out)
    assert output["success"] is False
    assert "gestern" in output["message"]
    assert output["result"] is None
    fake_feed.assert_not_called()


def test_upstream_failure_exits_with_error(fake_feed, capsys):
    fake_feed.side_effect = AuthError("bad credentials")

    assert cli.main([]) == 1

    output = json.loads(capsys.readouterr().out)
    assert output == {"success": False, "message": "bad credentials", "result": None}


def test_end_and_days_are_exclusive(fake_feed):
    with pytest.raises(SystemExit):
        cli.main(["--end", "2024-01-20", "--days", "3"])
