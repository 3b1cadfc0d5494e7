"""Keeps ``class_statistics`` consistent with ``marks``.

A cohort is a (school, class) pair: classes are shared grade levels, so the
school is what keeps one school's grade 10 apart from another's. Each
affected (exam, subject, school, class) key is recomputed from every mark
row for that key, never patched with a delta, so re-running with the same
data yields the same rows. Callers run this inside the transaction that
wrote the marks.
"""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func, tuple_
from sqlalchemy.orm import Session

from results_portal.core.jurisdiction import Scope, apply_scope
from results_portal.core.time_provider import default_time_provider
from results_portal.db import upsert_rows
from results_portal.models import ClassStatistic, Mark, School, Student


logger = logging.getLogger(__name__)

_STAT_COLUMNS = ('average_marks', 'highest_marks', 'lowest_marks', 'updated_at')
_STAT_KEY = ('exam_id', 'subject_id', 'school_id', 'class_id')


def serialize_statistic(row: ClassStatistic | dict) -> dict:
    get = row.get if isinstance(row, dict) else lambda key: getattr(row, key)
    return {
        'exam_id': get('exam_id'),
        'subject_id': get('subject_id'),
        'school_id': get('school_id'),
        'class_id': get('class_id'),
        'average_marks': float(get('average_marks') or 0),
        'highest_marks': float(get('highest_marks') or 0),
        'lowest_marks': float(get('lowest_marks') or 0),
    }


def _clean_cohorts(cohorts: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    return sorted({(int(school_id), int(class_id)) for school_id, class_id in cohorts if school_id and class_id})


def recompute_class_statistics(
    db: Session,
    *,
    exam_id: int,
    subject_id: int,
    cohorts: Iterable[tuple[int, int]],
) -> list[dict]:
    wanted = _clean_cohorts(cohorts)
    if not wanted:
        return []

    aggregates = (
        db.query(
            Student.school_id,
            Student.class_id,
            func.avg(Mark.marks_obtained),
            func.max(Mark.marks_obtained),
            func.min(Mark.marks_obtained),
        )
        .join(Student, Student.id == Mark.student_id)
        .filter(
            Mark.exam_id == int(exam_id),
            Mark.subject_id == int(subject_id),
            tuple_(Student.school_id, Student.class_id).in_(wanted),
        )
        .group_by(Student.school_id, Student.class_id)
        .all()
    )

    now = default_time_provider.utc_now()
    rows = [
        {
            'exam_id': int(exam_id),
            'subject_id': int(subject_id),
            'school_id': int(school_id),
            'class_id': int(class_id),
            'average_marks': round(float(average), 2),
            'highest_marks': float(highest),
            'lowest_marks': float(lowest),
            'updated_at': now,
        }
        for school_id, class_id, average, highest, lowest in aggregates
    ]
    rows.sort(key=lambda row: (row['school_id'], row['class_id']))
    upsert_rows(db, ClassStatistic, rows, conflict_columns=_STAT_KEY, update_columns=_STAT_COLUMNS)

    # A cohort whose last mark moved away keeps no statistic row.
    emptied = sorted(set(wanted) - {(row['school_id'], row['class_id']) for row in rows})
    if emptied:
        (
            db.query(ClassStatistic)
            .filter(
                ClassStatistic.exam_id == int(exam_id),
                ClassStatistic.subject_id == int(subject_id),
                tuple_(ClassStatistic.school_id, ClassStatistic.class_id).in_(emptied),
            )
            .delete(synchronize_session=False)
        )
    db.flush()
    logger.info(
        'class_statistics_recomputed exam_id=%s subject_id=%s cohorts=%s emptied=%s',
        exam_id,
        subject_id,
        [(row['school_id'], row['class_id']) for row in rows],
        emptied,
    )
    return [serialize_statistic(row) for row in rows]


def recompute_for_student_cohorts(db: Session, *, student_id: int, cohorts: Iterable[tuple[int, int]]) -> int:
    """Rebuild every statistic a student's marks feed, for each listed cohort."""
    cohorts = _clean_cohorts(cohorts)
    pairs = (
        db.query(Mark.exam_id, Mark.subject_id)
        .filter(Mark.student_id == int(student_id))
        .distinct()
        .all()
    )
    for exam_id, subject_id in pairs:
        recompute_class_statistics(db, exam_id=exam_id, subject_id=subject_id, cohorts=cohorts)
    return len(pairs)


def list_class_statistics(
    db: Session,
    scope: Scope,
    *,
    exam_id: int,
    subject_id: int | None = None,
    class_id: int | None = None,
) -> list[dict]:
    query = (
        db.query(ClassStatistic)
        .join(School, School.id == ClassStatistic.school_id)
        .filter(ClassStatistic.exam_id == int(exam_id))
    )
    query = apply_scope(query, scope, School)
    if subject_id:
        query = query.filter(ClassStatistic.subject_id == int(subject_id))
    if class_id:
        query = query.filter(ClassStatistic.class_id == int(class_id))
    rows = query.order_by(
        ClassStatistic.subject_id.asc(),
        ClassStatistic.school_id.asc(),
        ClassStatistic.class_id.asc(),
    ).all()
    return [serialize_statistic(row) for row in rows]
