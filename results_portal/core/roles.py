from __future__ import annotations

from results_portal.models import Role


SCOPE_FIELDS = ('district_id', 'mandal_id', 'school_id')

# Lower number means more senior.
ROLE_LEVELS: dict[str, int] = {
    Role.ADMIN.value: 1,
    Role.DEO.value: 2,
    Role.MEO.value: 3,
    Role.SCHOOL_ADMIN.value: 4,
}

# Scope fields a role carries; every other scope field is always null.
ROLE_SCOPE_FIELDS: dict[str, tuple[str, ...]] = {
    Role.ADMIN.value: (),
    Role.DEO.value: ('district_id',),
    Role.MEO.value: ('district_id', 'mandal_id'),
    Role.SCHOOL_ADMIN.value: ('district_id', 'mandal_id', 'school_id'),
}

ROLE_LABELS: dict[str, str] = {
    Role.ADMIN.value: 'Super Admin',
    Role.DEO.value: 'District Education Officer',
    Role.MEO.value: 'Mandal Education Officer',
    Role.SCHOOL_ADMIN.value: 'School Principal',
}


def normalize_role(role: str | None) -> str:
    value = str(role or '').strip().lower()
    if value not in ROLE_LEVELS:
        raise ValueError(f"Unknown role '{role}'. Expected one of: {', '.join(ROLE_LEVELS)}")
    return value


def role_level(role: str | None) -> int:
    return ROLE_LEVELS[normalize_role(role)]


def is_global_role(role: str | None) -> bool:
    return str(role or '').strip().lower() == Role.ADMIN.value


def is_strictly_senior(actor_role: str | None, target_role: str | None) -> bool:
    return role_level(actor_role) < role_level(target_role)


def roles_creatable_by(actor_role: str | None) -> list[str]:
    actor_level = role_level(actor_role)
    return [role for role, level in ROLE_LEVELS.items() if level > actor_level]


def roles_at_least(min_role: str) -> set[str]:
    """Roles at least as senior as ``min_role``."""
    ceiling = role_level(min_role)
    return {role for role, level in ROLE_LEVELS.items() if level <= ceiling}
