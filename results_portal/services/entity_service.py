"""Reference-data CRUD behind one route family.

Each entity kind has a fixed pydantic schema and a hand-written builder,
so request keys never become column names. Unknown kinds are a 404 at the
router; unknown fields are rejected by the schema.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from results_portal.core.errors import ConflictError, NotFoundError
from results_portal.core.jurisdiction import Scope, apply_scope, assert_jurisdiction, resolve_scope
from results_portal.core.roles import ROLE_LEVELS
from results_portal.core.validators import normalize_phone
from results_portal.db import atomic
from results_portal.models import (
    ClassStatistic,
    District,
    Exam,
    Mandal,
    Mark,
    Role,
    School,
    SchoolClass,
    Student,
    Subject,
    User,
    new_access_token,
)
from results_portal.schemas import (
    ClassCreate,
    DistrictCreate,
    DistrictUpdate,
    ExamCreate,
    ExamUpdate,
    MandalCreate,
    MandalUpdate,
    SchoolCreate,
    SchoolUpdate,
    StudentCreate,
    StudentUpdate,
    SubjectCreate,
    SubjectUpdate,
)
from results_portal.services.school_service import build_school, serialize_class, serialize_school
from results_portal.services.statistics_service import recompute_for_student_cohorts


logger = logging.getLogger(__name__)

PHONE_DIGITS = 10


class EntityKind(str, Enum):
    DISTRICTS = 'districts'
    MANDALS = 'mandals'
    SCHOOLS = 'schools'
    CLASSES = 'classes'
    SUBJECTS = 'subjects'
    EXAMS = 'exams'
    STUDENTS = 'students'


@dataclass(frozen=True)
class EntityDefinition:
    model: type
    label: str
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    writers: frozenset[str]
    serialize: Callable[[Any], dict]
    # (model, column) pairs whose rows block deletion while they point here.
    references: tuple[tuple[type, str], ...] = ()


def parse_kind(kind: str) -> EntityKind:
    try:
        return EntityKind(str(kind or '').strip().lower())
    except ValueError as exc:
        raise NotFoundError(f"Unknown entity type '{kind}'") from exc


def _get_or_404(db: Session, model, entity_id: int, label: str):
    row = db.query(model).filter(model.id == int(entity_id)).first()
    if not row:
        raise NotFoundError(f'{label} not found')
    return row


def _ensure_unique(db: Session, column, value, message: str, *, exclude_id: int | None = None) -> None:
    query = db.query(column.class_.id).filter(column == value)
    if exclude_id is not None:
        query = query.filter(column.class_.id != exclude_id)
    if query.first():
        raise ConflictError(message)


def _clean_phone(value: str | None) -> str:
    phone = normalize_phone(value)
    if phone and len(phone) != PHONE_DIGITS:
        raise ValueError(f'parent_phone must be a {PHONE_DIGITS} digit number')
    return phone


def serialize_district(row: District) -> dict:
    return {'id': row.id, 'name': row.name, 'name_telugu': row.name_telugu or ''}


def serialize_mandal(row: Mandal) -> dict:
    return {'id': row.id, 'name': row.name, 'district_id': row.district_id}


def serialize_subject(row: Subject) -> dict:
    return {'id': row.id, 'name': row.name, 'name_telugu': row.name_telugu or ''}


def serialize_exam(row: Exam) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'name_telugu': row.name_telugu or '',
        'exam_code': row.exam_code,
        'start_date': row.start_date.isoformat() if row.start_date else None,
        'end_date': row.end_date.isoformat() if row.end_date else None,
    }


def serialize_student(row: Student) -> dict:
    # The access token stays out of listings; only QR data exposes it.
    return {
        'id': row.id,
        'name': row.name,
        'name_telugu': row.name_telugu or '',
        'gender': row.gender or '',
        'date_of_birth': row.date_of_birth.isoformat() if row.date_of_birth else None,
        'pen_number': row.pen_number,
        'parent_phone': row.parent_phone or '',
        'school_id': row.school_id,
        'class_id': row.class_id,
    }


_ANY_ROLE = frozenset(ROLE_LEVELS)

ENTITY_DEFINITIONS: dict[EntityKind, EntityDefinition] = {
    EntityKind.DISTRICTS: EntityDefinition(
        model=District,
        label='District',
        create_schema=DistrictCreate,
        update_schema=DistrictUpdate,
        writers=frozenset({Role.ADMIN.value}),
        serialize=serialize_district,
        references=((Mandal, 'district_id'), (School, 'district_id'), (User, 'district_id')),
    ),
    EntityKind.MANDALS: EntityDefinition(
        model=Mandal,
        label='Mandal',
        create_schema=MandalCreate,
        update_schema=MandalUpdate,
        writers=frozenset({Role.ADMIN.value, Role.DEO.value}),
        serialize=serialize_mandal,
        references=((School, 'mandal_id'), (User, 'mandal_id')),
    ),
    EntityKind.SCHOOLS: EntityDefinition(
        model=School,
        label='School',
        create_schema=SchoolCreate,
        update_schema=SchoolUpdate,
        writers=frozenset({Role.ADMIN.value, Role.DEO.value, Role.MEO.value}),
        serialize=serialize_school,
        references=((Student, 'school_id'), (User, 'school_id'), (ClassStatistic, 'school_id')),
    ),
    EntityKind.CLASSES: EntityDefinition(
        model=SchoolClass,
        label='Class',
        create_schema=ClassCreate,
        update_schema=ClassCreate,
        writers=frozenset({Role.ADMIN.value}),
        serialize=serialize_class,
        references=((Student, 'class_id'), (ClassStatistic, 'class_id')),
    ),
    EntityKind.SUBJECTS: EntityDefinition(
        model=Subject,
        label='Subject',
        create_schema=SubjectCreate,
        update_schema=SubjectUpdate,
        writers=frozenset({Role.ADMIN.value}),
        serialize=serialize_subject,
        references=((Mark, 'subject_id'),),
    ),
    EntityKind.EXAMS: EntityDefinition(
        model=Exam,
        label='Exam',
        create_schema=ExamCreate,
        update_schema=ExamUpdate,
        writers=frozenset({Role.ADMIN.value, Role.DEO.value}),
        serialize=serialize_exam,
        references=((Mark, 'exam_id'),),
    ),
    EntityKind.STUDENTS: EntityDefinition(
        model=Student,
        label='Student',
        create_schema=StudentCreate,
        update_schema=StudentUpdate,
        writers=_ANY_ROLE,
        serialize=serialize_student,
        references=((Mark, 'student_id'),),
    ),
}


def _require_writer(actor: dict, kind: EntityKind) -> None:
    role = str(actor.get('role') or '').strip().lower()
    if role not in ENTITY_DEFINITIONS[kind].writers:
        raise PermissionError(f'Role {role} cannot modify {kind.value}')


def row_scope(kind: EntityKind, row) -> Scope:
    """Hierarchy position of a stored row; global kinds have none."""
    if kind == EntityKind.DISTRICTS:
        return Scope(district_id=row.id)
    if kind == EntityKind.MANDALS:
        return Scope(district_id=row.district_id, mandal_id=row.id)
    if kind == EntityKind.SCHOOLS:
        return Scope(district_id=row.district_id, mandal_id=row.mandal_id, school_id=row.id)
    if kind == EntityKind.STUDENTS:
        school = row.school
        return Scope(district_id=school.district_id, mandal_id=school.mandal_id, school_id=school.id)
    return Scope()


# ---------------------------------------------------------------- listing


def list_entities(db: Session, actor: dict, kind: EntityKind, *, filters: dict | None = None) -> list[dict]:
    filters = filters or {}
    definition = ENTITY_DEFINITIONS[kind]
    scope = resolve_scope(
        actor,
        district_id=filters.get('district_id'),
        mandal_id=filters.get('mandal_id'),
        school_id=filters.get('school_id'),
    )

    if kind == EntityKind.DISTRICTS:
        query = apply_scope(db.query(District), scope, District).order_by(District.name.asc())
    elif kind == EntityKind.MANDALS:
        query = apply_scope(db.query(Mandal), scope, Mandal).order_by(Mandal.name.asc())
    elif kind == EntityKind.SCHOOLS:
        query = apply_scope(db.query(School), scope, School).order_by(School.name.asc())
    elif kind == EntityKind.CLASSES:
        query = db.query(SchoolClass).order_by(SchoolClass.grade_level.asc())
    elif kind == EntityKind.SUBJECTS:
        query = db.query(Subject).order_by(Subject.id.asc())
    elif kind == EntityKind.EXAMS:
        query = db.query(Exam).order_by(Exam.start_date.desc().nulls_last(), Exam.id.desc())
    else:
        query = apply_scope(db.query(Student).join(School, School.id == Student.school_id), scope, School)
        if filters.get('class_id'):
            query = query.filter(Student.class_id == int(filters['class_id']))
        query = query.order_by(Student.name.asc())
    return [definition.serialize(row) for row in query.all()]


def list_exams(db: Session) -> list[dict]:
    rows = db.query(Exam).order_by(Exam.start_date.desc().nulls_last(), Exam.id.desc()).all()
    return [serialize_exam(row) for row in rows]


# ---------------------------------------------------------------- builders


def _build_district(db: Session, actor: dict, data: DistrictCreate) -> District:
    _ensure_unique(db, District.name, data.name, 'District already exists')
    row = District(name=data.name, name_telugu=data.name_telugu)
    db.add(row)
    return row


def _build_mandal(db: Session, actor: dict, data: MandalCreate) -> Mandal:
    _get_or_404(db, District, data.district_id, 'District')
    assert_jurisdiction(actor, Scope(district_id=data.district_id))
    exists = (
        db.query(Mandal.id)
        .filter(Mandal.district_id == data.district_id, Mandal.name == data.name)
        .first()
    )
    if exists:
        raise ConflictError('Mandal already exists in this district')
    row = Mandal(name=data.name, district_id=data.district_id)
    db.add(row)
    return row


def _build_school(db: Session, actor: dict, data: SchoolCreate) -> School:
    return build_school(db, actor, data.model_dump())


def _build_class(db: Session, actor: dict, data: ClassCreate) -> SchoolClass:
    _ensure_unique(db, SchoolClass.grade_level, data.grade_level, 'Class already exists')
    row = SchoolClass(grade_level=data.grade_level)
    db.add(row)
    return row


def _build_subject(db: Session, actor: dict, data: SubjectCreate) -> Subject:
    _ensure_unique(db, Subject.name, data.name, 'Subject already exists')
    row = Subject(name=data.name, name_telugu=data.name_telugu)
    db.add(row)
    return row


def _build_exam(db: Session, actor: dict, data: ExamCreate) -> Exam:
    _ensure_unique(db, Exam.exam_code, data.exam_code, 'Exam code already exists')
    row = Exam(
        name=data.name,
        name_telugu=data.name_telugu,
        exam_code=data.exam_code,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    db.add(row)
    return row


def _build_student(db: Session, actor: dict, data: StudentCreate) -> Student:
    school = _get_or_404(db, School, data.school_id, 'School')
    _get_or_404(db, SchoolClass, data.class_id, 'Class')
    if data.district_id is not None and data.district_id != school.district_id:
        raise ValueError('School does not belong to the selected district')
    if data.mandal_id is not None and data.mandal_id != school.mandal_id:
        raise ValueError('School does not belong to the selected mandal')
    assert_jurisdiction(actor, Scope(district_id=school.district_id, mandal_id=school.mandal_id, school_id=school.id))
    _ensure_unique(db, Student.pen_number, data.pen_number, 'PEN number already exists')
    row = Student(
        name=data.name,
        name_telugu=data.name_telugu,
        gender=data.gender,
        date_of_birth=data.date_of_birth,
        pen_number=data.pen_number,
        parent_phone=_clean_phone(data.parent_phone),
        school_id=school.id,
        class_id=data.class_id,
        parent_access_token=new_access_token(),
    )
    db.add(row)
    return row


_BUILDERS = {
    EntityKind.DISTRICTS: _build_district,
    EntityKind.MANDALS: _build_mandal,
    EntityKind.SCHOOLS: _build_school,
    EntityKind.CLASSES: _build_class,
    EntityKind.SUBJECTS: _build_subject,
    EntityKind.EXAMS: _build_exam,
    EntityKind.STUDENTS: _build_student,
}


def create_entity(db: Session, actor: dict, kind: EntityKind, payload: dict) -> dict:
    _require_writer(actor, kind)
    definition = ENTITY_DEFINITIONS[kind]
    data = definition.create_schema.model_validate(payload or {})
    try:
        with atomic(db):
            row = _BUILDERS[kind](db, actor, data)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError(f'{definition.label} conflicts with an existing record') from exc
    db.refresh(row)
    logger.info('entity_created kind=%s id=%s user_id=%s', kind.value, row.id, actor.get('user_id'))
    return definition.serialize(row)


# ---------------------------------------------------------------- updates


def _apply_school_update(db: Session, row: School, fields: dict) -> None:
    if 'udise_code' in fields:
        _ensure_unique(db, School.udise_code, fields['udise_code'], 'UDISE code already exists', exclude_id=row.id)


def _apply_exam_update(db: Session, row: Exam, fields: dict) -> None:
    if 'exam_code' in fields:
        _ensure_unique(db, Exam.exam_code, fields['exam_code'], 'Exam code already exists', exclude_id=row.id)
    start = fields.get('start_date', row.start_date)
    end = fields.get('end_date', row.end_date)
    if start and end and end < start:
        raise ValueError('end_date cannot be before start_date')


def _apply_student_update(db: Session, row: Student, fields: dict) -> None:
    if 'pen_number' in fields:
        _ensure_unique(db, Student.pen_number, fields['pen_number'], 'PEN number already exists', exclude_id=row.id)
    if 'parent_phone' in fields:
        fields['parent_phone'] = _clean_phone(fields['parent_phone'])
    if 'class_id' in fields:
        _get_or_404(db, SchoolClass, fields['class_id'], 'Class')


def update_entity(db: Session, actor: dict, kind: EntityKind, entity_id: int, payload: dict) -> dict:
    _require_writer(actor, kind)
    definition = ENTITY_DEFINITIONS[kind]
    fields = definition.update_schema.model_validate(payload or {}).model_dump(exclude_unset=True)
    if not fields:
        raise ValueError('No fields to update')
    columns = definition.model.__table__.columns
    nulled = sorted(key for key, value in fields.items() if value is None and not columns[key].nullable)
    if nulled:
        raise ValueError(f'Fields cannot be null: {", ".join(nulled)}')

    row = _get_or_404(db, definition.model, entity_id, definition.label)
    assert_jurisdiction(actor, row_scope(kind, row))

    if kind == EntityKind.DISTRICTS and 'name' in fields:
        _ensure_unique(db, District.name, fields['name'], 'District already exists', exclude_id=row.id)
    elif kind == EntityKind.CLASSES:
        _ensure_unique(db, SchoolClass.grade_level, fields['grade_level'], 'Class already exists', exclude_id=row.id)
    elif kind == EntityKind.SUBJECTS and 'name' in fields:
        _ensure_unique(db, Subject.name, fields['name'], 'Subject already exists', exclude_id=row.id)
    elif kind == EntityKind.SCHOOLS:
        _apply_school_update(db, row, fields)
    elif kind == EntityKind.EXAMS:
        _apply_exam_update(db, row, fields)
    elif kind == EntityKind.STUDENTS:
        _apply_student_update(db, row, fields)

    old_class_id = getattr(row, 'class_id', None) if kind == EntityKind.STUDENTS else None
    try:
        with atomic(db):
            for key, value in fields.items():
                setattr(row, key, value)
            db.flush()
            if old_class_id is not None and row.class_id != old_class_id:
                # Marks follow the student, so both cohorts' statistics move.
                recompute_for_student_cohorts(
                    db,
                    student_id=row.id,
                    cohorts={(row.school_id, old_class_id), (row.school_id, row.class_id)},
                )
    except IntegrityError as exc:
        raise ConflictError(f'{definition.label} conflicts with an existing record') from exc
    db.refresh(row)
    logger.info(
        'entity_updated kind=%s id=%s fields=%s user_id=%s',
        kind.value,
        row.id,
        sorted(fields),
        actor.get('user_id'),
    )
    return definition.serialize(row)


# ---------------------------------------------------------------- deletes


def delete_entity(db: Session, actor: dict, kind: EntityKind, entity_id: int) -> dict:
    _require_writer(actor, kind)
    definition = ENTITY_DEFINITIONS[kind]
    row = _get_or_404(db, definition.model, entity_id, definition.label)
    assert_jurisdiction(actor, row_scope(kind, row))

    for model, column in definition.references:
        if db.query(model.id).filter(getattr(model, column) == row.id).first():
            raise ConflictError(f'{definition.label} is still referenced by {model.__tablename__}')

    try:
        with atomic(db):
            db.delete(row)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError(f'{definition.label} is still referenced') from exc
    logger.info('entity_deleted kind=%s id=%s user_id=%s', kind.value, entity_id, actor.get('user_id'))
    return {'deleted': True, 'id': int(entity_id)}
