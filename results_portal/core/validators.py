from __future__ import annotations

import re


ACCESS_TOKEN_RE = re.compile(r'[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}')

MIN_GRADE_LEVEL = 1
MAX_GRADE_LEVEL = 12


def is_valid_access_token(token: str | None) -> bool:
    return bool(token) and ACCESS_TOKEN_RE.fullmatch(str(token)) is not None


def mask_token(token: str | None) -> str:
    clean = str(token or '')
    if len(clean) < 4:
        return '***'
    return f'***{clean[-4:]}'


def normalize_phone(phone: str | None) -> str:
    return ''.join(ch for ch in str(phone or '') if ch.isdigit())


def parse_grade_levels(values) -> list[int]:
    levels: list[int] = []
    for raw in values or []:
        level = int(raw)
        if level < MIN_GRADE_LEVEL or level > MAX_GRADE_LEVEL:
            raise ValueError(f'Grade level must be between {MIN_GRADE_LEVEL} and {MAX_GRADE_LEVEL}')
        if level not in levels:
            levels.append(level)
    return sorted(levels)


def parse_class_filter(value: str | None) -> int | None:
    """``all`` (or nothing) means every class; anything else must be a class id."""
    clean = str(value or '').strip().lower()
    if clean in ('', 'all'):
        return None
    if not clean.isdigit():
        raise ValueError("class_id must be 'all' or a numeric class id")
    return int(clean)
