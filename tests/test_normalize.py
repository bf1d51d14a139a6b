from datetime import date, datetime

import pytest

from schoolfeed.models import CalendarEvent, EventCategory, Exam, TimetableEvent
from schoolfeed.normalize import (
    calendar_category,
    calendar_to_event,
    class_label,
    exam_to_event,
    format_location,
    generate_exam_description,
    generate_exam_title,
    is_useful,
    timetable_to_event,
)
from schoolfeed.subjects import Subject, subject_from_code, subject_from_text


def make_exam(**fields) -> Exam:
    raw = {
        "examType": {"shortName": "KA"},
        "examName": "",
        "examText": "",
        "examStart": "2024-01-16T08:00:00",
        "examEnd": "2024-01-16T09:30:00",
        "subject": {"shortName": "MA"},
        "classes": [{"shortName": "9a"}],
        "teachers": [{"shortName": "MüA", "longName": "Müller"}],
        "rooms": [{"shortName": "204"}],
    }
    raw.update(fields)
    return Exam.model_validate(raw)


def make_calendar_event(name: str, calendar: str) -> CalendarEvent:
    return CalendarEvent(
        name=name,
        date=date(2024, 1, 17),
        start=datetime(2024, 1, 17),
        end=datetime(2024, 1, 17, 23, 59, 59),
        full_day=True,
        calendar=calendar,
        location="Turnhalle",
    )


@pytest.mark.parametrize(
    "classes, expected",
    [
        (["7a", "7b", "8c"], "Jg 7, 8"),
        (["9a", "9b", "9c"], "Jg9"),
        (["7a", "8b"], "7a, 8b"),
        (["9b", "9a", "9a"], "9a, 9b"),
        (["10a", "9a", "8a"], "Jg 8, 9, 10"),
        (["Jhg11"], "Jg11"),
        (["9a", "9b", "Chor"], "9a, 9b, Chor"),
        ([], ""),
    ],
)
def test_class_label(classes, expected):
    assert class_label(classes) == expected


def test_title_combines_labels():
    title = generate_exam_title(make_exam())
    assert title.subject is Subject.MATHEMATIK
    assert title.text == "KA 9a Mathematik Müller"


@pytest.mark.parametrize(
    "name, expected",
    [("Vokabeltest Unit 3", "Test"), ("Kurzer TEST", "Test"), ("Lernerfolgskontrolle", "LEK")],
)
def test_generic_test_type_is_split(name, expected):
    exam = make_exam(examType={"shortName": "LEK-Test"}, examName=name)
    assert generate_exam_title(exam).exam_type == expected


def test_subject_falls_back_to_free_text():
    exam = make_exam(subject=None, examName="Mathe Test")
    assert generate_exam_title(exam).subject is Subject.MATHEMATIK


def test_unknown_subject_leaves_gap_out_of_title():
    exam = make_exam(subject={"shortName": "XY"}, teachers=[])
    title = generate_exam_title(exam)
    assert title.subject is None
    assert title.text == "KA 9a"


def test_course_type_only_in_final_grades():
    exam = make_exam(
        examType={"shortName": "KL"},
        subject={"shortName": "MA-LK1"},
        classes=[{"shortName": "Jhg11"}],
        teachers=[{"shortName": "ScH", "longName": "Schmidt"}],
    )
    assert generate_exam_title(exam).text == "KL Jg11 Mathematik LK Schmidt"

    younger = make_exam(subject={"shortName": "MA-LK1"}, classes=[{"shortName": "10a"}])
    assert generate_exam_title(younger).course_type == ""


def test_course_type_from_free_text():
    exam = make_exam(classes=[{"shortName": "Jhg12"}], examText="Klausur GK Analysis")
    assert generate_exam_title(exam).course_type == "GK"


def test_teacher_name_override():
    exam = make_exam(teachers=[{"shortName": "UrSoF", "longName": "Urschel-Sommerfeld"}])
    assert generate_exam_title(exam).teacher == "Urschel"


def test_subject_lookup_by_code():
    assert subject_from_code("DE") is Subject.DEUTSCH
    assert subject_from_code("W1SK") is Subject.SEMINARKURS
    assert subject_from_code("") is None
    assert subject_from_text("Politische Bildung Test") is Subject.PB
    assert subject_from_text("nothing here") is None


def test_used_words_make_text_useless():
    assert not is_useful("Mathematik", ["Mathematik"])
    assert not is_useful("KA 1234567", ["KA"])
    assert not is_useful("", [])


def test_enough_remaining_text_is_useful():
    assert is_useful("Mathematik Funktionen", ["Mathematik"])
    assert is_useful("Bruchrechnung", ["Mathematik"])


def test_longest_used_word_removed_first():
    # "Grundkurs" must not leave "kurs" behind
    assert not is_useful("Grundkurs", ["Grund", "Grundkurs"])


def test_description_prefers_text_over_redundant_name():
    exam = make_exam(examName="Klassenarbeit Mathematik", examText="Bruchrechnung und Dezimalzahlen")
    assert generate_exam_description(exam) == "Bruchrechnung und Dezimalzahlen"


def test_description_combines_short_useful_fields():
    exam = make_exam(subject={"shortName": "DE"}, examName="Gedichtanalyse", examText="Romantik")
    assert generate_exam_description(exam) == "Gedichtanalyse - Romantik"


def test_description_skips_combination_when_too_long():
    name = "Erörterung zu einem literarischen Text"
    text = "Schwerpunkt auf Argumentationsstrukturen und Zitiertechnik"
    exam = make_exam(subject={"shortName": "DE"}, examName=name, examText=text)
    assert generate_exam_description(exam) == text


def test_description_falls_back_to_name_then_empty():
    exam = make_exam(examName="Funktionen und Graphen", examText="Mathematik")
    assert generate_exam_description(exam) == "Funktionen und Graphen"

    redundant = make_exam(examName="Mathematik", examText="KA")
    assert generate_exam_description(redundant) == ""


@pytest.mark.parametrize(
    "name, calendar, expected",
    [
        ("Elternabend", "Termine Jahrgang 7-9", EventCategory.LOWER_SECONDARY),
        ("Abiturball", "Termine Jahrgang 10 und Oberstufe", EventCategory.UPPER_SECONDARY),
        ("Wandertag", "Lernende", EventCategory.STUDENT),
        ("Konferenz", "Lehrkräfte", EventCategory.TEACHER),
        ("Tag der offenen Tür", "Öffentlich", EventCategory.PUBLIC),
        ("Schach AG", "Öffentlich", EventCategory.CLUB_ACTIVITY),
        ("Schach AG", "Lernende", EventCategory.STUDENT),
        ("Sonstiges", "Unbekannt", EventCategory.PUBLIC),
    ],
)
def test_calendar_category(name, calendar, expected):
    assert calendar_category(make_calendar_event(name, calendar)) is expected


@pytest.mark.parametrize(
    "room, expected",
    [("Turnhalle", "TH"), ("SHA", "TH (A)"), ("SHB", "TH (B)"), ("SHC", "TH (C)"), ("204", "204")],
)
def test_format_location(room, expected):
    assert format_location(room) == expected


def test_exam_event():
    event = exam_to_event(make_exam(rooms=[{"shortName": "SHC"}]))

    assert event.category is EventCategory.EXAM
    assert event.date == date(2024, 1, 16)
    assert event.location == "TH (C)"
    assert not event.full_day


def test_event_serializes_category_style():
    dumped = exam_to_event(make_exam()).model_dump(mode="json")

    assert dumped["category"] == "exam"
    assert dumped["category_label"] == "Prüfung"
    assert dumped["category_color"] == "rose-400"
    assert dumped["category_background_color"] == "[#E7D8DD]"


def test_exam_event_without_room():
    assert exam_to_event(make_exam(rooms=[])).location == ""


def test_calendar_event_keeps_notes_and_full_day():
    event = calendar_to_event(make_calendar_event("Wandertag", "Lernende"))

    assert event.full_day
    assert event.location == "TH"
    assert event.category is EventCategory.STUDENT


def test_timetable_event_title_lists_classes():
    entry = TimetableEvent(
        title="Theaterbesuch",
        start=datetime(2024, 1, 18, 10),
        end=datetime(2024, 1, 18, 11, 30),
        classes=["7a", "7b"],
    )

    event = timetable_to_event(entry)
    assert event.title == "Theaterbesuch 7a, 7b"
    assert event.category is EventCategory.STUDENT
    assert timetable_to_event(entry, EventCategory.TEACHER).category is EventCategory.TEACHER
