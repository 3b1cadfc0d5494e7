"""Letter grades for a (marks, max) pair.

Two scales are in use: the fine 8-band scale printed on report cards and
the coarse 4-band scale used by the analytics rollups. Both are plain
threshold tables read top to bottom; the first band whose lower bound the
percentage reaches wins.
"""
from __future__ import annotations

from enum import Enum


NOT_APPLICABLE = 'N/A'
PASS_PERCENTAGE = 35.0
# Quotients like 18.2/20 land a hair under a band edge; compare at this precision.
BAND_PRECISION = 6


class GradeScale(str, Enum):
    FINE = 'fine'
    COARSE = 'coarse'


GRADE_BANDS: dict[GradeScale, tuple[tuple[float, str], ...]] = {
    GradeScale.FINE: (
        (91.0, 'A1'),
        (81.0, 'A2'),
        (71.0, 'B1'),
        (61.0, 'B2'),
        (51.0, 'C1'),
        (41.0, 'C2'),
        (35.0, 'D'),
        (0.0, 'E'),
    ),
    GradeScale.COARSE: (
        (80.0, 'A'),
        (60.0, 'B'),
        (35.0, 'C'),
        (0.0, 'D'),
    ),
}

COARSE_GRADES = tuple(label for _, label in GRADE_BANDS[GradeScale.COARSE])


def percentage(marks_obtained: float | None, max_marks: float | None) -> float | None:
    if not max_marks:
        return None
    return (float(marks_obtained or 0) / float(max_marks)) * 100.0


def grade_for_percentage(pct: float | None, scale: GradeScale = GradeScale.FINE) -> str:
    if pct is None:
        return NOT_APPLICABLE
    bands = GRADE_BANDS[GradeScale(scale)]
    pct = round(pct, BAND_PRECISION)
    for lower_bound, label in bands:
        if pct >= lower_bound:
            return label
    return bands[-1][1]


def calculate_grade(marks_obtained: float | None, max_marks: float | None, scale: GradeScale = GradeScale.FINE) -> str:
    return grade_for_percentage(percentage(marks_obtained, max_marks), scale)


def resolve_grade(stored_grade: str | None, marks_obtained: float | None, max_marks: float | None) -> str:
    """Stored grades win; recomputation only covers legacy ungraded rows."""
    clean = (stored_grade or '').strip()
    if clean:
        return clean
    return calculate_grade(marks_obtained, max_marks, GradeScale.FINE)


def is_passing(pct: float | None) -> bool:
    return pct is not None and round(pct, BAND_PRECISION) >= PASS_PERCENTAGE


def grade_rank(label: str, scale: GradeScale = GradeScale.FINE) -> int:
    """0 is the best band; N/A ranks below every real grade."""
    labels = [band_label for _, band_label in GRADE_BANDS[GradeScale(scale)]]
    if label in labels:
        return labels.index(label)
    return len(labels)
