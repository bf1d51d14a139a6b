"""Turn SIS records into canonical feed events.

Exam titles are generated from the structured exam fields ("KA 9b Mathematik
Müller"); descriptions keep only the parts of the free-text name/text that
the title does not already say. Both are pure functions so they can be tested
without network access.
"""

import re
from dataclasses import dataclass

from schoolfeed.models import CalendarEvent, Event, EventCategory, Exam, TimetableEvent
from schoolfeed.subjects import Subject, subject_from_code, subject_from_text

# Exam type code shared by short tests and regular performance checks
GENERIC_TEST_TYPE = "LEK-Test"
COURSE_TYPES = ("GK", "LK")
COURSE_TYPE_GRADES = ("Jg11", "Jg12")
TEACHER_NAME_OVERRIDES = {"UrSoF": "Urschel"}

CALENDAR_CATEGORIES = {
    "Termine Jahrgang 7-9": EventCategory.LOWER_SECONDARY,
    "Termine Jahrgang 10 und Oberstufe": EventCategory.UPPER_SECONDARY,
    "Lernende": EventCategory.STUDENT,
    "Lehrkräfte": EventCategory.TEACHER,
    "Öffentlich": EventCategory.PUBLIC,
}

LOCATIONS = {
    "Turnhalle": "TH",
    "SHA": "TH (A)",
    "SHB": "TH (B)",
    "SHC": "TH (C)",
}

USEFUL_RATIO = 0.4
MAX_COMBINED_DESCRIPTION = 75
_TRIM_CHARS = " .,-/&0123456789"
_GRADE = re.compile(r"[0-9]+")


def contains(text: str, part: str, ignore_case: bool = False) -> bool:
    if ignore_case:
        return part.lower() in text.lower()
    return part in text


def any_contains(texts: list[str], part: str, ignore_case: bool = False) -> bool:
    return any(contains(text, part, ignore_case) for text in texts)


@dataclass(frozen=True)
class ExamTitle:
    """Labels an exam title is assembled from; empty labels are skipped."""

    exam_type: str = ""
    classes: str = ""
    subject: Subject | None = None
    course_type: str = ""
    teacher: str = ""

    @property
    def text(self) -> str:
        subject = self.subject.display_name if self.subject else ""
        labels = [self.exam_type, self.classes, subject, self.course_type, self.teacher]
        title = " ".join(label for label in labels if label).strip()
        return re.sub(r" {2,}", " ", title)


def exam_type_label(exam: Exam) -> str:
    code = exam.exam_type.short_name
    if code == GENERIC_TEST_TYPE:
        return "Test" if any_contains([exam.name, exam.text], "Test", ignore_case=True) else "LEK"
    return code


def class_label(class_names: list[str]) -> str:
    """Collapse the classes taking an exam into a short label.

    Up to two classes are listed. More classes become "Jg9" when they share
    one grade level, or "Jg 7, 8" when they span several. A class without a
    grade (e.g. "Chor") keeps the full list.
    """
    classes = sorted({name.replace("Jhg", "Jg", 1) for name in class_names if name})
    if len(classes) <= 2:
        return ", ".join(classes)

    grades = set()
    for name in classes:
        match = _GRADE.search(name)
        if not match:
            return ", ".join(classes)
        grades.add(int(match.group()))
    if len(grades) == 1:
        return f"Jg{grades.pop()}"
    return "Jg " + ", ".join(str(grade) for grade in sorted(grades))


def exam_subject(exam: Exam) -> Subject | None:
    if exam.subject.short_name:
        return subject_from_code(exam.subject.short_name)
    return subject_from_text(exam.name, exam.text)


def course_type_label(exam: Exam, classes: str) -> str:
    """Basic (GK) or advanced (LK) course, only known in the final two grades."""
    if classes not in COURSE_TYPE_GRADES:
        return ""
    for course_type in COURSE_TYPES:
        if any_contains([exam.name, exam.text, exam.subject.short_name], course_type):
            return course_type
    return ""


def teacher_label(exam: Exam) -> str:
    return ", ".join(
        TEACHER_NAME_OVERRIDES.get(teacher.short_name, teacher.long_name)
        for teacher in exam.teachers
    )


def generate_exam_title(exam: Exam) -> ExamTitle:
    classes = class_label([value.short_name for value in exam.classes])
    return ExamTitle(
        exam_type=exam_type_label(exam),
        classes=classes,
        subject=exam_subject(exam),
        course_type=course_type_label(exam, classes),
        teacher=teacher_label(exam),
    )


def is_useful(text: str, used_words: list[str]) -> bool:
    """Check if enough of `text` remains once already-used words are removed."""
    if not text:
        return False
    remaining = text
    # longest first, so "Grundkurs" is not left behind as "kurs"
    for word in sorted(used_words, key=len, reverse=True):
        if word:
            remaining = remaining.replace(word, "")
    return len(remaining.strip(_TRIM_CHARS)) / len(text) >= USEFUL_RATIO


def generate_exam_description(exam: Exam, title: ExamTitle | None = None) -> str:
    if title is None:
        title = generate_exam_title(exam)
    text = title.text

    used_words: list[str] = []
    if "GK" in text:
        used_words += ["Grund", "Grundkurs"]
    elif "LK" in text:
        used_words += ["Leistungs", "Leistungskurs"]
    if "KA" in text:
        used_words.append("Klassenarbeit")
    if title.subject is not None:
        used_words += title.subject.variants
    used_words += text.split(" ")

    name_useful = is_useful(exam.name, used_words)
    text_useful = is_useful(exam.text, used_words)
    if name_useful and text_useful and len(exam.name) + len(exam.text) < MAX_COMBINED_DESCRIPTION:
        return f"{exam.name} - {exam.text}"
    if text_useful:
        return exam.text
    if name_useful:
        return exam.name
    return ""


def calendar_category(event: CalendarEvent) -> EventCategory:
    if event.calendar == "Öffentlich" and "AG" in event.name:
        return EventCategory.CLUB_ACTIVITY
    return CALENDAR_CATEGORIES.get(event.calendar, EventCategory.PUBLIC)


def format_location(room: str) -> str:
    return LOCATIONS.get(room, room)


def exam_to_event(exam: Exam) -> Event:
    """Build the feed event for an exam.

    Raises:
        ValueError: If the exam has no start or end time.
    """
    if exam.start is None or exam.end is None:
        raise ValueError(f"Exam {exam.id} has no start or end time")
    title = generate_exam_title(exam)
    return Event(
        title=title.text,
        description=generate_exam_description(exam, title),
        category=EventCategory.EXAM,
        date=exam.start.date(),
        full_day=False,
        start=exam.start,
        end=exam.end,
        location=format_location(exam.rooms[0].short_name) if exam.rooms else "",
    )


def calendar_to_event(event: CalendarEvent) -> Event:
    return Event(
        title=event.name,
        description=event.notes,
        category=calendar_category(event),
        date=event.start.date(),
        full_day=event.full_day,
        start=event.start,
        end=event.end,
        location=format_location(event.location),
    )


def timetable_to_event(
    event: TimetableEvent, category: EventCategory = EventCategory.STUDENT
) -> Event:
    return Event(
        title=f"{event.title} {', '.join(event.classes)}".strip(),
        category=category,
        date=event.start.date(),
        full_day=False,
        start=event.start,
        end=event.end,
    )
