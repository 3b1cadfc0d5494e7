from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from results_portal.config import settings
from results_portal.core.errors import NotFoundError
from results_portal.core.jurisdiction import Scope, assert_jurisdiction
from results_portal.core.validators import parse_class_filter
from results_portal.models import School, SchoolClass, Student


logger = logging.getLogger(__name__)


def result_url(token: str) -> str:
    return f"{settings.public_portal_base_url.rstrip('/')}/student/{token}"


def get_qr_data(db: Session, actor: dict, *, school_id: int, class_filter: str | None = 'all') -> list[dict]:
    """Rows an external renderer needs to print one access card per student."""
    class_id = parse_class_filter(class_filter)
    school = db.query(School).filter(School.id == int(school_id)).first()
    if not school:
        raise NotFoundError('School not found')
    assert_jurisdiction(actor, Scope(district_id=school.district_id, mandal_id=school.mandal_id, school_id=school.id))

    query = (
        db.query(Student.name, Student.pen_number, Student.parent_access_token, SchoolClass.grade_level)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .filter(Student.school_id == school.id)
    )
    if class_id is not None:
        query = query.filter(Student.class_id == class_id)
    rows = query.order_by(SchoolClass.grade_level.asc(), Student.name.asc()).all()

    logger.info(
        'qr_data_generated school_id=%s class_id=%s students=%s user_id=%s',
        school.id,
        class_id if class_id is not None else 'all',
        len(rows),
        actor.get('user_id'),
    )
    return [
        {
            'student_name': name,
            'pen_number': pen_number,
            'parent_access_token': token,
            'grade_level': grade_level,
            'school_name': school.name,
            'result_url': result_url(token),
        }
        for name, pen_number, token, grade_level in rows
    ]
