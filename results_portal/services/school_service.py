from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from results_portal.core.errors import ConflictError, NotFoundError
from results_portal.core.jurisdiction import Scope, assert_jurisdiction
from results_portal.core.validators import parse_grade_levels
from results_portal.db import atomic
from results_portal.models import Mandal, School, SchoolClass


logger = logging.getLogger(__name__)


def serialize_school(row: School) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'name_telugu': row.name_telugu or '',
        'udise_code': row.udise_code,
        'address': row.address or '',
        'address_telugu': row.address_telugu or '',
        'district_id': row.district_id,
        'mandal_id': row.mandal_id,
    }


def serialize_class(row: SchoolClass) -> dict:
    return {'id': row.id, 'grade_level': row.grade_level, 'name': f'Grade {row.grade_level}'}


def build_school(db: Session, actor: dict, data: dict) -> School:
    """Validate parentage and jurisdiction, then stage a new School row."""
    district_id = int(data['district_id'])
    mandal_id = int(data['mandal_id'])
    mandal = db.query(Mandal).filter(Mandal.id == mandal_id).first()
    if not mandal:
        raise NotFoundError('Mandal not found')
    if mandal.district_id != district_id:
        raise ValueError('Mandal does not belong to the selected district')
    assert_jurisdiction(actor, Scope(district_id=district_id, mandal_id=mandal_id))

    udise_code = str(data['udise_code']).strip()
    if db.query(School.id).filter(School.udise_code == udise_code).first():
        raise ConflictError('UDISE code already exists')

    row = School(
        name=str(data['name']).strip(),
        name_telugu=data.get('name_telugu') or '',
        udise_code=udise_code,
        address=data.get('address') or '',
        address_telugu=data.get('address_telugu') or '',
        district_id=district_id,
        mandal_id=mandal_id,
    )
    db.add(row)
    return row


def ensure_classes(db: Session, grade_levels: list[int]) -> list[SchoolClass]:
    if not grade_levels:
        return []
    existing = {
        row.grade_level: row
        for row in db.query(SchoolClass).filter(SchoolClass.grade_level.in_(grade_levels)).all()
    }
    rows = []
    for level in grade_levels:
        row = existing.get(level)
        if row is None:
            row = SchoolClass(grade_level=level)
            db.add(row)
        rows.append(row)
    return rows


def create_school_with_classes(db: Session, actor: dict, data: dict) -> dict:
    """Create a school and make sure its grade levels exist, in one transaction."""
    grade_levels = parse_grade_levels(data.get('grade_levels'))
    try:
        with atomic(db):
            school = build_school(db, actor, data)
            classes = ensure_classes(db, grade_levels)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError('School or class already exists') from exc

    db.refresh(school)
    logger.info(
        'school_created school_id=%s udise=%s grade_levels=%s user_id=%s',
        school.id,
        school.udise_code,
        grade_levels,
        actor.get('user_id'),
    )
    return {'school': serialize_school(school), 'classes': [serialize_class(row) for row in classes]}
