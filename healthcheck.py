import sys

import httpx
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import func, text

from results_portal.config import settings
from results_portal.core.grading import NOT_APPLICABLE, GradeScale, calculate_grade
from results_portal.core.validators import is_valid_access_token
from results_portal.db import SessionLocal, engine
from results_portal.models import ClassStatistic, Mark, Role, Student, User


GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'

STATISTIC_SAMPLE_SIZE = 20


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_write_rolls_back():
    with engine.connect() as conn:
        trans = conn.begin()
        try:
            conn.execute(text('SELECT 1'))
            conn.execute(text('CREATE TABLE _healthcheck_probe (id INTEGER PRIMARY KEY)'))
            conn.execute(text('INSERT INTO _healthcheck_probe (id) VALUES (1)'))
        finally:
            trans.rollback()
    return f'dialect={engine.dialect.name}'


def check_alembic_head():
    heads = set(ScriptDirectory.from_config(Config('alembic.ini')).get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    if current is None:
        raise RuntimeError('No migration version in DB (run bootstrap.py or alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_settings():
    if not settings.database_url.strip():
        raise RuntimeError('DATABASE_URL is empty')
    if settings.auth_secret == 'change-me' and settings.app_env != 'local':
        raise RuntimeError('AUTH_SECRET still has the default value')
    if not settings.public_portal_base_url.startswith(('http://', 'https://')):
        raise RuntimeError('PUBLIC_PORTAL_BASE_URL must be an http(s) URL')
    return f'env={settings.app_env}'


def check_admin_account_present():
    db = SessionLocal()
    try:
        count = db.query(User).filter(User.role == Role.ADMIN.value).count()
        if count == 0:
            raise RuntimeError('No admin user (set BOOTSTRAP_ADMIN_USERNAME/PASSWORD and run bootstrap.py)')
        return f'admins={count}'
    finally:
        db.close()


def check_grade_tables():
    expected = {
        (95, 100, GradeScale.FINE): 'A1',
        (80, 100, GradeScale.FINE): 'B1',
        (80, 100, GradeScale.COARSE): 'A',
        (10, 0, GradeScale.FINE): NOT_APPLICABLE,
    }
    for (marks, max_marks, scale), label in expected.items():
        got = calculate_grade(marks, max_marks, scale)
        if got != label:
            raise RuntimeError(f'{marks}/{max_marks} on {scale.value} gave {got}, expected {label}')
    return 'fine + coarse ok'


def check_statistics_match_marks():
    db = SessionLocal()
    try:
        rows = db.query(ClassStatistic).order_by(ClassStatistic.updated_at.desc()).limit(STATISTIC_SAMPLE_SIZE).all()
        for row in rows:
            average, highest, lowest = (
                db.query(func.avg(Mark.marks_obtained), func.max(Mark.marks_obtained), func.min(Mark.marks_obtained))
                .join(Student, Student.id == Mark.student_id)
                .filter(
                    Mark.exam_id == row.exam_id,
                    Mark.subject_id == row.subject_id,
                    Student.school_id == row.school_id,
                    Student.class_id == row.class_id,
                )
                .one()
            )
            if average is None:
                raise RuntimeError(f'Orphan statistic exam={row.exam_id} subject={row.subject_id} school={row.school_id} class={row.class_id}')
            if round(float(average), 2) != row.average_marks or float(highest) != row.highest_marks or float(lowest) != row.lowest_marks:
                raise RuntimeError(f'Stale statistic exam={row.exam_id} subject={row.subject_id} school={row.school_id} class={row.class_id}')
        return f'sampled={len(rows)}'
    finally:
        db.close()


def check_access_tokens_well_formed():
    db = SessionLocal()
    try:
        tokens = [token for (token,) in db.query(Student.parent_access_token).limit(200).all()]
        bad = sum(1 for token in tokens if not is_valid_access_token(token))
        if bad:
            raise RuntimeError(f'{bad} student access tokens would be rejected by the public link check')
        return f'checked={len(tokens)}'
    finally:
        db.close()


def check_public_portal_reachable():
    res = httpx.get(settings.public_portal_base_url, timeout=8)
    if res.status_code >= 500:
        raise RuntimeError(f'HTTP {res.status_code} from public portal')
    return f'HTTP {res.status_code}'


def main():
    checks = [
        ('Database write access', check_db_write_rolls_back),
        ('Alembic migration status at head', check_alembic_head),
        ('Settings sane for this environment', check_settings),
        ('Admin account present', check_admin_account_present),
        ('Grade tables', check_grade_tables),
        ('Class statistics match marks', check_statistics_match_marks),
        ('Student access tokens well formed', check_access_tokens_well_formed),
        ('Public portal reachable', check_public_portal_reachable),
    ]

    results = [run_check(name, fn) for name, fn in checks]
    sys.exit(0 if all(results) else 1)


if __name__ == '__main__':
    main()
