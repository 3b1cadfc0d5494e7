from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from results_portal.core.errors import ConflictError, NotFoundError, RoleHierarchyError
from results_portal.core.jurisdiction import Scope, apply_scope, assert_jurisdiction, resolve_scope
from results_portal.core.roles import ROLE_LABELS, ROLE_SCOPE_FIELDS, is_strictly_senior, normalize_role, roles_creatable_by
from results_portal.models import Mandal, School, User
from results_portal.services.auth_service import hash_password, normalize_username


logger = logging.getLogger(__name__)

_HIERARCHY_MESSAGE = 'Cannot create a user with equal or higher authority'


def serialize_user(row: User) -> dict:
    return {
        'id': row.id,
        'username': row.username,
        'full_name': row.full_name or '',
        'role': row.role,
        'role_label': ROLE_LABELS.get(row.role, row.role),
        'district_id': row.district_id,
        'mandal_id': row.mandal_id,
        'school_id': row.school_id,
        'created_by': row.created_by,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


def _canonical_scope(db: Session, role: str, requested: Scope, *, fallback: Scope) -> Scope:
    """Fill a role's scope from the deepest id it needs and drop the rest.

    School admins take district and mandal from their School row; mandal
    officers take district from their Mandal row. A missing id falls back
    to the creator's own scope; a supplied parent id that contradicts the
    stored parentage is rejected.
    """
    fields = ROLE_SCOPE_FIELDS[role]
    if not fields:
        return Scope()
    deepest = fields[-1]
    deepest_id = requested.get(deepest)
    if deepest_id is None:
        deepest_id = fallback.get(deepest)
    if deepest_id is None:
        raise ValueError(f'{deepest} is required for role {role}')

    if deepest == 'school_id':
        school = db.query(School).filter(School.id == deepest_id).first()
        if not school:
            raise NotFoundError('School not found')
        derived = Scope(district_id=school.district_id, mandal_id=school.mandal_id, school_id=school.id)
    elif deepest == 'mandal_id':
        mandal = db.query(Mandal).filter(Mandal.id == deepest_id).first()
        if not mandal:
            raise NotFoundError('Mandal not found')
        derived = Scope(district_id=mandal.district_id, mandal_id=mandal.id)
    else:
        derived = Scope(district_id=deepest_id)

    for field in fields:
        supplied = requested.get(field)
        if supplied is not None and supplied != derived.get(field):
            raise ValueError(f'{field} does not match the selected {deepest[:-3]}')
    return derived


def create_user(db: Session, actor: dict, data: dict) -> dict:
    role = normalize_role(data.get('role'))
    if role not in roles_creatable_by(actor.get('role')):
        logger.warning(
            'user_create_denied actor_id=%s actor_role=%s target_role=%s',
            actor.get('user_id'),
            actor.get('role'),
            role,
        )
        raise RoleHierarchyError(_HIERARCHY_MESSAGE)

    supplied = Scope.from_mapping(data)
    assert_jurisdiction(actor, supplied)
    scope = _canonical_scope(db, role, supplied, fallback=Scope.from_mapping(actor))
    assert_jurisdiction(actor, scope)

    username = normalize_username(data.get('username'))
    if not username:
        raise ValueError('username is required')
    if db.query(User.id).filter(User.username == username).first():
        raise ConflictError('Username already exists')

    row = User(
        username=username,
        password_hash=hash_password(data.get('password') or ''),
        full_name=(data.get('full_name') or '').strip(),
        role=role,
        district_id=scope.district_id,
        mandal_id=scope.mandal_id,
        school_id=scope.school_id,
        created_by=actor.get('user_id') or None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info(
        'user_created user_id=%s role=%s created_by=%s',
        row.id,
        row.role,
        actor.get('user_id'),
    )
    return serialize_user(row)


def list_users(db: Session, actor: dict, *, district_id=None, mandal_id=None, school_id=None) -> list[dict]:
    scope = resolve_scope(actor, district_id=district_id, mandal_id=mandal_id, school_id=school_id)
    rows = apply_scope(db.query(User), scope, User).order_by(User.role.asc(), User.username.asc()).all()
    return [serialize_user(row) for row in rows]


def update_user(db: Session, actor: dict, user_id: int, data: dict) -> dict:
    """Callers edit themselves, or a strictly junior user inside their jurisdiction."""
    row = db.query(User).filter(User.id == int(user_id)).first()
    if not row:
        raise NotFoundError('User not found')

    if row.id != int(actor.get('user_id') or 0):
        if not is_strictly_senior(actor.get('role'), row.role):
            raise RoleHierarchyError('Cannot modify a user with equal or higher authority')
        assert_jurisdiction(actor, Scope(district_id=row.district_id, mandal_id=row.mandal_id, school_id=row.school_id))

    changed = []
    if data.get('username') is not None:
        username = normalize_username(data['username'])
        if not username:
            raise ValueError('username cannot be empty')
        taken = db.query(User.id).filter(User.username == username, User.id != row.id).first()
        if taken:
            raise ConflictError('Username already exists')
        row.username = username
        changed.append('username')
    if data.get('full_name') is not None:
        row.full_name = data['full_name'].strip()
        changed.append('full_name')
    if data.get('password'):
        row.password_hash = hash_password(data['password'])
        changed.append('password')
    if not changed:
        raise ValueError('No fields to update')

    db.commit()
    db.refresh(row)
    logger.info('user_updated user_id=%s fields=%s by=%s', row.id, changed, actor.get('user_id'))
    return serialize_user(row)

