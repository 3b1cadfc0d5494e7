"""Scoped performance analytics over the district > mandal > school tree.

Every view works at student level first: a student's score is the mean of
their own subject percentages, and a student passes only when every one of
their subject marks reaches the pass threshold. Entity figures are then
built from those student figures, so a student with more recorded
subjects weighs the same as any other student.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace

from sqlalchemy import func
from sqlalchemy.orm import Session

from results_portal.core.grading import COARSE_GRADES, GradeScale, grade_for_percentage, is_passing, percentage, resolve_grade
from results_portal.core.jurisdiction import Scope, apply_scope
from results_portal.models import District, Exam, Mandal, Mark, School, Student, Subject


logger = logging.getLogger(__name__)

# level -> (child model, scope field naming the parent, fact attribute naming the child)
LEVEL_CHILDREN = {
    'root': (District, None, 'district_id'),
    'district': (Mandal, 'district_id', 'mandal_id'),
    'mandal': (School, 'mandal_id', 'school_id'),
}
TERMINAL_LEVEL = 'school'


@dataclass(frozen=True)
class MarkFact:
    student_id: int
    exam_id: int
    subject_id: int
    school_id: int
    mandal_id: int
    district_id: int
    marks_obtained: float
    max_marks: float

    @property
    def pct(self) -> float | None:
        return percentage(self.marks_obtained, self.max_marks)


@dataclass
class StudentRollup:
    student_id: int
    percentages: list[float] = field(default_factory=list)

    @property
    def average(self) -> float:
        return sum(self.percentages) / len(self.percentages)

    @property
    def passed(self) -> bool:
        return all(is_passing(pct) for pct in self.percentages)


def _round(value: float) -> float:
    return round(float(value), 2)


def load_mark_facts(db: Session, scope: Scope, *, exam_id: int | None = None) -> list[MarkFact]:
    query = (
        db.query(
            Mark.student_id,
            Mark.exam_id,
            Mark.subject_id,
            Student.school_id,
            School.mandal_id,
            School.district_id,
            Mark.marks_obtained,
            Mark.max_marks,
        )
        .join(Student, Student.id == Mark.student_id)
        .join(School, School.id == Student.school_id)
    )
    if exam_id:
        query = query.filter(Mark.exam_id == int(exam_id))
    query = apply_scope(query, scope, School)
    return [MarkFact(*row) for row in query.all()]


def summarize_students(facts) -> dict[int, StudentRollup]:
    rollups: dict[int, StudentRollup] = {}
    for fact in facts:
        pct = fact.pct
        if pct is None:
            continue
        rollup = rollups.setdefault(fact.student_id, StudentRollup(student_id=fact.student_id))
        rollup.percentages.append(pct)
    return rollups


def performance_summary(rollups) -> dict:
    rollups = list(rollups)
    if not rollups:
        return {'avg_score': 0.0, 'pass_percentage': 0.0, 'student_count': 0}
    passed = sum(1 for rollup in rollups if rollup.passed)
    return {
        'avg_score': _round(sum(rollup.average for rollup in rollups) / len(rollups)),
        'pass_percentage': _round(passed * 100.0 / len(rollups)),
        'student_count': len(rollups),
    }


def grade_distribution(scores) -> dict:
    """Coarse-band census of already averaged percentages, one entry per score."""
    counts = dict.fromkeys(COARSE_GRADES, 0)
    for score in scores:
        counts[grade_for_percentage(score, GradeScale.COARSE)] += 1
    total = sum(counts.values())
    result: dict = {'total': total}
    for grade in COARSE_GRADES:
        key = f'grade_{grade.lower()}'
        result[key] = counts[grade]
        result[f'{key}_pct'] = _round(counts[grade] * 100.0 / total) if total else 0.0
    return result


def get_overview_counts(db: Session, scope: Scope) -> dict:
    school_count = apply_scope(db.query(func.count(School.id)), scope, School).scalar() or 0
    student_count = (
        apply_scope(db.query(func.count(Student.id)).join(School, School.id == Student.school_id), scope, School).scalar()
        or 0
    )
    return {'school_count': int(school_count), 'student_count': int(student_count)}


def get_stats(db: Session, scope: Scope, *, exam_id: int | None = None) -> dict:
    counts = get_overview_counts(db, scope)
    facts = load_mark_facts(db, scope, exam_id=exam_id)
    rollups = summarize_students(facts)
    census = grade_distribution(rollup.average for rollup in rollups.values())
    summary = performance_summary(rollups.values())
    return {
        'total_schools': counts['school_count'],
        'total_students': counts['student_count'],
        'total_exams': len({fact.exam_id for fact in facts}),
        'avg_score': summary['avg_score'],
        'pass_percentage': summary['pass_percentage'],
        'grade_a_students': census['grade_a'],
        'grade_b_students': census['grade_b'],
        'grade_c_students': census['grade_c'],
        'grade_d_students': census['grade_d'],
    }


def _child_entities(db: Session, scope: Scope, level: str, parent_id: int | None) -> tuple[list[tuple[int, str]], Scope]:
    model, parent_field, _ = LEVEL_CHILDREN[level]
    query = db.query(model.id, model.name)
    narrowed = scope
    if parent_field:
        parent = int(parent_id) if parent_id else scope.get(parent_field)
        if not parent:
            return [], scope
        query = query.filter(getattr(model, parent_field) == parent)
        if scope.get(parent_field) is None:
            narrowed = replace(scope, **{parent_field: parent})
    query = apply_scope(query, scope, model)
    return [(int(child_id), name) for child_id, name in query.order_by(model.name.asc()).all()], narrowed


def _facts_by_child(facts, key_field: str, child_ids: set[int]) -> dict[int, list[MarkFact]]:
    grouped: dict[int, list[MarkFact]] = defaultdict(list)
    for fact in facts:
        key = getattr(fact, key_field)
        if key in child_ids:
            grouped[key].append(fact)
    return grouped


def get_drill_down(
    db: Session,
    scope: Scope,
    *,
    level: str | None,
    parent_id: int | None = None,
    exam_id: int | None = None,
) -> list[dict]:
    """One row per child of ``level``, worst pass percentage first.

    Unknown levels and the terminal school level yield an empty list.
    """
    clean_level = str(level or '').strip().lower()
    if clean_level not in LEVEL_CHILDREN:
        if clean_level != TERMINAL_LEVEL:
            logger.info('drill_down_unknown_level level=%s', level)
        return []

    children, narrowed = _child_entities(db, scope, clean_level, parent_id)
    if not children:
        return []
    key_field = LEVEL_CHILDREN[clean_level][2]
    grouped = _facts_by_child(load_mark_facts(db, narrowed, exam_id=exam_id), key_field, {cid for cid, _ in children})

    rows = []
    for child_id, name in children:
        child_facts = grouped.get(child_id, [])
        summary = performance_summary(summarize_students(child_facts).values())
        grade_a_count = sum(
            1
            for fact in child_facts
            if fact.pct is not None and grade_for_percentage(fact.pct, GradeScale.COARSE) == 'A'
        )
        rows.append(
            {
                'id': child_id,
                'name': name,
                'avg_score': summary['avg_score'],
                'pass_percentage': summary['pass_percentage'],
                'grade_a_count': grade_a_count,
                'student_count': summary['student_count'],
            }
        )
    rows.sort(key=lambda row: (row['pass_percentage'], row['name']))
    return rows


def _subject_names(db: Session) -> dict[int, str]:
    return {int(subject_id): name for subject_id, name in db.query(Subject.id, Subject.name).all()}


def _subject_scores(facts) -> dict[int, list[float]]:
    """Per subject, each student's mean percentage in that subject."""
    per_pair: dict[tuple[int, int], list[float]] = defaultdict(list)
    for fact in facts:
        pct = fact.pct
        if pct is not None:
            per_pair[(fact.subject_id, fact.student_id)].append(pct)
    scores: dict[int, list[float]] = defaultdict(list)
    for (subject_id, _), pcts in per_pair.items():
        scores[subject_id].append(sum(pcts) / len(pcts))
    return scores


def _subject_rows(db: Session, scores_by_subject: dict[int, list[float]]) -> list[dict]:
    names = _subject_names(db)
    rows = []
    for subject_id, scores in scores_by_subject.items():
        row = {'id': subject_id, 'name': names.get(subject_id, '')}
        row.update(grade_distribution(scores))
        rows.append(row)
    rows.sort(key=lambda row: (-row['grade_d_pct'], row['name']))
    return rows


def get_entity_performance(
    db: Session,
    scope: Scope,
    *,
    level: str | None,
    parent_id: int | None = None,
    exam_id: int | None = None,
) -> list[dict]:
    """Grade-band spread of student averages per child entity.

    At school level the children are the subjects taught there.
    """
    clean_level = str(level or '').strip().lower()
    if clean_level == TERMINAL_LEVEL:
        school_id = int(parent_id) if parent_id else scope.school_id
        if not school_id:
            return []
        if scope.school_id is not None and scope.school_id != school_id:
            return []
        facts = load_mark_facts(db, replace(scope, school_id=school_id), exam_id=exam_id)
        return _subject_rows(db, _subject_scores(facts))
    if clean_level not in LEVEL_CHILDREN:
        return []

    children, narrowed = _child_entities(db, scope, clean_level, parent_id)
    if not children:
        return []
    key_field = LEVEL_CHILDREN[clean_level][2]
    grouped = _facts_by_child(load_mark_facts(db, narrowed, exam_id=exam_id), key_field, {cid for cid, _ in children})

    rows = []
    for child_id, name in children:
        rollups = summarize_students(grouped.get(child_id, []))
        row = {'id': child_id, 'name': name}
        row.update(grade_distribution(rollup.average for rollup in rollups.values()))
        rows.append(row)
    rows.sort(key=lambda row: (-row['grade_d_pct'], row['name']))
    return rows


def get_subject_performance(db: Session, scope: Scope, *, exam_id: int | None = None) -> list[dict]:
    """Each subject mark in scope is bucketed once."""
    scores: dict[int, list[float]] = defaultdict(list)
    for fact in load_mark_facts(db, scope, exam_id=exam_id):
        pct = fact.pct
        if pct is not None:
            scores[fact.subject_id].append(pct)
    return _subject_rows(db, scores)


def get_student_marks(db: Session, scope: Scope, *, exam_id: int | None = None) -> list[dict]:
    if scope.school_id is None:
        raise ValueError('school_id is required for student marks')
    query = (
        db.query(Mark, Student.name, Student.pen_number, Subject.name, Exam.name)
        .join(Student, Student.id == Mark.student_id)
        .join(School, School.id == Student.school_id)
        .join(Subject, Subject.id == Mark.subject_id)
        .join(Exam, Exam.id == Mark.exam_id)
    )
    if exam_id:
        query = query.filter(Mark.exam_id == int(exam_id))
    query = apply_scope(query, scope, School)
    rows = query.order_by(Student.name.asc(), Subject.id.asc()).all()
    return [
        {
            'student_id': mark.student_id,
            'student_name': student_name,
            'pen_number': pen_number,
            'subject': subject_name,
            'exam_name': exam_name,
            'marks_obtained': float(mark.marks_obtained),
            'max_marks': float(mark.max_marks),
            'grade': resolve_grade(mark.grade, mark.marks_obtained, mark.max_marks),
        }
        for mark, student_name, pen_number, subject_name, exam_name in rows
    ]
