from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy.orm import Session, joinedload

from results_portal.core.errors import NotFoundError
from results_portal.core.grading import GRADE_BANDS, GradeScale, calculate_grade, resolve_grade
from results_portal.core.jurisdiction import Scope, apply_scope, assert_jurisdiction
from results_portal.core.time_provider import default_time_provider
from results_portal.db import atomic, upsert_rows
from results_portal.models import Exam, Mark, School, Student, Subject
from results_portal.services.statistics_service import recompute_class_statistics


logger = logging.getLogger(__name__)

_KNOWN_GRADES = {label for bands in GRADE_BANDS.values() for _, label in bands}
_MARK_UPDATE_COLUMNS = ('marks_obtained', 'max_marks', 'grade', 'updated_at')


def student_scope(student: Student) -> Scope:
    school = student.school
    return Scope(district_id=school.district_id, mandal_id=school.mandal_id, school_id=school.id)


def _clean_grade(raw: str | None, marks: float, max_marks: float) -> str:
    clean = (raw or '').strip().upper()
    if not clean:
        return calculate_grade(marks, max_marks, GradeScale.FINE)
    if clean not in _KNOWN_GRADES:
        raise ValueError(f"Unknown grade '{raw}'")
    return clean


def bulk_update_marks(db: Session, actor: dict, *, exam_id: int, subject_id: int, entries: list[dict]) -> dict:
    """Upsert one exam/subject batch and rebuild the statistics it touches.

    The mark rows and the statistics commit together or not at all.
    """
    if not entries:
        raise ValueError('marks_data cannot be empty')

    student_ids = [int(entry['student_id']) for entry in entries]
    duplicates = sorted(sid for sid, count in Counter(student_ids).items() if count > 1)
    if duplicates:
        raise ValueError(f'Duplicate student_id in marks_data: {duplicates}')

    if not db.query(Exam.id).filter(Exam.id == int(exam_id)).first():
        raise NotFoundError('Exam not found')
    if not db.query(Subject.id).filter(Subject.id == int(subject_id)).first():
        raise NotFoundError('Subject not found')

    students = (
        db.query(Student)
        .options(joinedload(Student.school))
        .filter(Student.id.in_(student_ids))
        .all()
    )
    by_id = {student.id: student for student in students}
    missing = sorted(set(student_ids) - set(by_id))
    if missing:
        raise NotFoundError(f'Student not found: {missing}')
    for student in students:
        assert_jurisdiction(actor, student_scope(student))

    now = default_time_provider.utc_now()
    rows = []
    for entry in entries:
        marks = float(entry['marks'])
        max_marks = float(entry.get('max_marks') or 100)
        rows.append(
            {
                'student_id': int(entry['student_id']),
                'exam_id': int(exam_id),
                'subject_id': int(subject_id),
                'marks_obtained': marks,
                'max_marks': max_marks,
                'grade': _clean_grade(entry.get('grade'), marks, max_marks),
                'updated_at': now,
            }
        )
    cohorts = {(by_id[sid].school_id, by_id[sid].class_id) for sid in student_ids}
    class_ids = {class_id for _, class_id in cohorts}

    with atomic(db):
        upsert_rows(
            db,
            Mark,
            rows,
            conflict_columns=('student_id', 'exam_id', 'subject_id'),
            update_columns=_MARK_UPDATE_COLUMNS,
        )
        statistics = recompute_class_statistics(db, exam_id=exam_id, subject_id=subject_id, cohorts=cohorts)

    logger.info(
        'marks_bulk_update exam_id=%s subject_id=%s rows=%s classes=%s user_id=%s',
        exam_id,
        subject_id,
        len(rows),
        sorted(class_ids),
        actor.get('user_id'),
    )
    return {'updated': len(rows), 'classes': sorted(class_ids), 'statistics': statistics}


def fetch_marks(
    db: Session,
    scope: Scope,
    *,
    exam_id: int,
    class_id: int,
    subject_id: int | None = None,
) -> list[dict]:
    query = (
        db.query(Mark, Student.name, Student.pen_number)
        .join(Student, Student.id == Mark.student_id)
        .join(School, School.id == Student.school_id)
        .filter(Mark.exam_id == int(exam_id), Student.class_id == int(class_id))
    )
    if subject_id:
        query = query.filter(Mark.subject_id == int(subject_id))
    query = apply_scope(query, scope, School)
    rows = query.order_by(Student.name.asc(), Mark.subject_id.asc()).all()
    return [
        {
            'student_id': mark.student_id,
            'student_name': name,
            'pen_number': pen_number,
            'subject_id': mark.subject_id,
            'marks_obtained': float(mark.marks_obtained),
            'max_marks': float(mark.max_marks),
            'grade': resolve_grade(mark.grade, mark.marks_obtained, mark.max_marks),
        }
        for mark, name, pen_number in rows
    ]
