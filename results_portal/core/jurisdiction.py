"""Hierarchy scope checks for reads and writes.

A scope is the (district, mandal, school) triple with any field possibly
unset. Writes go through ``assert_jurisdiction``; reads build their filter
with ``resolve_scope`` and apply it with ``apply_scope``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Query

from results_portal.core.errors import JurisdictionError
from results_portal.core.roles import SCOPE_FIELDS, is_global_role


_LEVEL_NAMES = (
    ('district_id', 'District'),
    ('mandal_id', 'Mandal'),
    ('school_id', 'School'),
)


def _clean_id(value: Any) -> int | None:
    if value is None or value == '':
        return None
    clean = int(value)
    return clean if clean > 0 else None


@dataclass(frozen=True)
class Scope:
    district_id: int | None = None
    mandal_id: int | None = None
    school_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> 'Scope':
        data = data or {}
        return cls(**{field: _clean_id(data.get(field)) for field in SCOPE_FIELDS})

    def as_dict(self) -> dict[str, int | None]:
        return asdict(self)

    def get(self, field: str) -> int | None:
        return getattr(self, field)

    @property
    def is_unbounded(self) -> bool:
        return all(getattr(self, field) is None for field in SCOPE_FIELDS)


def assert_jurisdiction(actor: Mapping[str, Any], target: Scope | Mapping[str, Any]) -> None:
    """Reject a target whose scope differs from the actor's at any level both specify.

    A level is only compared when both sides carry a value there, so a
    payload naming only a school is checked only at the school level.
    """
    if is_global_role(actor.get('role')):
        return
    actor_scope = Scope.from_mapping(actor)
    target_scope = target if isinstance(target, Scope) else Scope.from_mapping(target)
    for field, level in _LEVEL_NAMES:
        actor_value = actor_scope.get(field)
        target_value = target_scope.get(field)
        if actor_value is not None and target_value is not None and actor_value != target_value:
            raise JurisdictionError(level)


def resolve_scope(
    actor: Mapping[str, Any],
    *,
    district_id: int | None = None,
    mandal_id: int | None = None,
    school_id: int | None = None,
) -> Scope:
    """The actor's own scope overrides query parameters level by level."""
    actor_scope = Scope.from_mapping(actor)
    requested = Scope(
        district_id=_clean_id(district_id),
        mandal_id=_clean_id(mandal_id),
        school_id=_clean_id(school_id),
    )
    return Scope(
        **{
            field: actor_scope.get(field) if actor_scope.get(field) is not None else requested.get(field)
            for field in SCOPE_FIELDS
        }
    )


_IDENTITY_FIELD = {
    'districts': 'district_id',
    'mandals': 'mandal_id',
    'schools': 'school_id',
}


def apply_scope(query: Query, scope: Scope, entity) -> Query:
    """Filter ``query`` on whichever scope columns ``entity`` has."""
    identity_field = _IDENTITY_FIELD.get(getattr(entity, '__tablename__', ''))
    for field in SCOPE_FIELDS:
        value = scope.get(field)
        if value is None:
            continue
        if field == identity_field:
            query = query.filter(entity.id == value)
            continue
        column = getattr(entity, field, None)
        if column is not None:
            query = query.filter(column == value)
    return query
