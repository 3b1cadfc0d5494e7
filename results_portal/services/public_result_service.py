"""Parent-facing result lookup keyed by the student's access token.

Token possession is the only credential here. The payload carries no
internal row ids and no contact details.
"""
from __future__ import annotations

import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session, joinedload

from results_portal.core.errors import NotFoundError
from results_portal.core.grading import percentage, resolve_grade
from results_portal.core.validators import is_valid_access_token, mask_token
from results_portal.models import ClassStatistic, Exam, Mark, School, Student, Subject


logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = 'Invalid access link format.'
NOT_FOUND_MESSAGE = 'Student record not found or link is invalid.'


def _optional_float(value) -> float | None:
    return None if value is None else float(value)


def _student_payload(student: Student) -> dict:
    school = student.school
    return {
        'name': student.name,
        'name_telugu': student.name_telugu or '',
        'pen_number': student.pen_number,
        'class_name': f'Grade {student.school_class.grade_level}' if student.school_class else '',
        'gender': student.gender or '',
        'dob': student.date_of_birth.isoformat() if student.date_of_birth else None,
        'school': {
            'name': school.name,
            'name_telugu': school.name_telugu or '',
            'udise_code': school.udise_code,
            'district': school.district.name if school.district else '',
            'mandal': school.mandal.name if school.mandal else '',
            'address': school.address or '',
            'address_telugu': school.address_telugu or '',
        },
    }


def _exam_key(exam: Exam) -> tuple:
    return (exam.start_date is not None, exam.start_date, exam.id)


def get_public_result(db: Session, token: str) -> dict:
    # Shape check comes first so malformed input never reaches a query.
    if not is_valid_access_token(token):
        raise ValueError(INVALID_LINK_MESSAGE)

    student = (
        db.query(Student)
        .options(
            joinedload(Student.school).joinedload(School.district),
            joinedload(Student.school).joinedload(School.mandal),
            joinedload(Student.school_class),
        )
        .filter(Student.parent_access_token == token.lower())
        .first()
    )
    if not student:
        logger.info('public_result_not_found token=%s', mask_token(token))
        raise NotFoundError(NOT_FOUND_MESSAGE)

    rows = (
        db.query(Mark, Exam, Subject, ClassStatistic)
        .join(Exam, Exam.id == Mark.exam_id)
        .join(Subject, Subject.id == Mark.subject_id)
        .outerjoin(
            ClassStatistic,
            and_(
                ClassStatistic.exam_id == Mark.exam_id,
                ClassStatistic.subject_id == Mark.subject_id,
                ClassStatistic.school_id == student.school_id,
                ClassStatistic.class_id == student.class_id,
            ),
        )
        .filter(Mark.student_id == student.id)
        .order_by(Subject.id.asc())
        .all()
    )

    exams: dict[int, dict] = {}
    order: dict[int, tuple] = {}
    for mark, exam, subject, statistic in rows:
        bucket = exams.get(exam.id)
        if bucket is None:
            bucket = {
                'exam_name': exam.name,
                'exam_name_telugu': exam.name_telugu or '',
                'exam_code': exam.exam_code,
                'exam_date': exam.start_date.isoformat() if exam.start_date else None,
                'total_obtained': 0.0,
                'total_max': 0.0,
                'percentage': None,
                'subjects': [],
            }
            exams[exam.id] = bucket
            order[exam.id] = _exam_key(exam)
        bucket['total_obtained'] += float(mark.marks_obtained)
        bucket['total_max'] += float(mark.max_marks)
        bucket['subjects'].append(
            {
                'name': subject.name,
                'name_telugu': subject.name_telugu or '',
                'marks': float(mark.marks_obtained),
                'max': float(mark.max_marks),
                'grade': resolve_grade(mark.grade, mark.marks_obtained, mark.max_marks),
                'class_average': _optional_float(statistic.average_marks) if statistic else None,
                'class_highest': _optional_float(statistic.highest_marks) if statistic else None,
                'class_lowest': _optional_float(statistic.lowest_marks) if statistic else None,
            }
        )

    results = []
    # Latest exam first; undated exams sink to the end.
    for exam_id in sorted(exams, key=lambda key: order[key], reverse=True):
        bucket = exams[exam_id]
        pct = percentage(bucket['total_obtained'], bucket['total_max'])
        bucket['percentage'] = round(pct, 2) if pct is not None else None
        results.append(bucket)

    logger.info('public_result_served token=%s exams=%s', mask_token(token), len(results))
    return {'student': _student_payload(student), 'results': results}
