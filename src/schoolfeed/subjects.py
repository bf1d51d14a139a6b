"""Subject taxonomy of the school.

Each subject has a display name, the two-letter code used by the SIS, an
alternative three-letter abbreviation teachers use in free text, and the
variant spellings matched against exam names.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class SubjectInfo:
    display_name: str
    short_code: str
    alt_code: str
    extra_variants: tuple[str, ...] = ()
    # Spellings placed before the display name when matching
    leading_variants: tuple[str, ...] = ()

    @property
    def variants(self) -> tuple[str, ...]:
        return (
            *self.leading_variants,
            self.display_name,
            *self.extra_variants,
            self.alt_code,
            self.short_code,
        )


class Subject(Enum):
    """Subjects in matching order; earlier members win ambiguous matches."""

    BIOLOGIE = SubjectInfo("Biologie", "BI", "Bio")
    CHEMIE = SubjectInfo("Chemie", "CH", "Che")
    DEUTSCH = SubjectInfo("Deutsch", "DE", "Deu")
    ENGLISCH = SubjectInfo("Englisch", "EN", "Eng")
    FRANZOESISCH = SubjectInfo("Französisch", "FR", "Fra")
    GEOGRAPHIE = SubjectInfo("Geographie", "EK", "Geo")
    GESCHICHTE = SubjectInfo("Geschichte", "GE", "Ges")
    INFORMATIK = SubjectInfo("Informatik", "IF", "Inf")
    KUNST = SubjectInfo("Kunst", "KU", "Kun")
    LATEIN = SubjectInfo("Latein", "LA", "Lat")
    LER = SubjectInfo("LER", "LE", "LER")
    MATHEMATIK = SubjectInfo("Mathematik", "MA", "Mat", extra_variants=("Mathe",))
    MUSIK = SubjectInfo("Musik", "MU", "Mus")
    PB = SubjectInfo(
        "PB", "PB", "PB", leading_variants=("Politische Bildung", "Polit. Bildung")
    )
    PHYSIK = SubjectInfo("Physik", "PH", "Phy")
    RECHT = SubjectInfo("Recht", "RL", "Rec")
    RELIGION_EV = SubjectInfo("ev. Religion", "RE", "evR")
    RELIGION_KA = SubjectInfo("kat. Religion", "RK", "kaR")
    SEMINARKURS = SubjectInfo("Seminarkurs", "SK", "SK")
    SPANISCH = SubjectInfo("Spanisch", "SN", "Spa")
    SPORT = SubjectInfo("Sport", "SP", "Spo")
    TECHNIK = SubjectInfo("Technik", "TE", "Tec")
    WAT = SubjectInfo("WAT", "LE", "WAT")

    @property
    def info(self) -> SubjectInfo:
        return self.value

    @property
    def display_name(self) -> str:
        return self.value.display_name

    @property
    def short_code(self) -> str:
        return self.value.short_code

    @property
    def variants(self) -> tuple[str, ...]:
        return self.value.variants


def subject_from_code(code: str) -> Subject | None:
    """Look up a subject by its SIS subject short name.

    The SIS encodes course names like "MA-LK1"; the first two letters are the
    subject. Seminar courses carry their "SK" marker at letters three and
    four ("W1SK"), after a course prefix that matches no other subject.
    """
    if not code:
        return None
    for subject in Subject:
        prefix = code[:2]
        if subject is Subject.SEMINARKURS and len(code) >= 4:
            prefix = code[2:4]
        if subject.short_code == prefix:
            return subject
    return None


def subject_from_text(*texts: str) -> Subject | None:
    """Find the first subject whose variant appears in any of the texts."""
    for subject in Subject:
        for text in texts:
            if any(variant and variant in text for variant in subject.variants):
                return subject
    return None
