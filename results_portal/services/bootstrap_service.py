import logging

from sqlalchemy.orm import Session

from results_portal.config import settings
from results_portal.models import Role, User
from results_portal.services.auth_service import hash_password, normalize_username


logger = logging.getLogger(__name__)


def ensure_bootstrap_admin(db: Session) -> dict:
    """Make sure the configured global admin account exists.

    An existing account is never overwritten; only a missing one is created.
    """
    username = normalize_username(settings.bootstrap_admin_username)
    if not username:
        return {'ensured': False, 'reason': 'no_bootstrap_admin_username'}
    if not settings.bootstrap_admin_password:
        logger.warning('bootstrap_admin_skipped missing_password username=%s', username)
        return {'ensured': False, 'reason': 'no_bootstrap_admin_password'}

    row = db.query(User).filter(User.username == username).first()
    if row:
        if row.role != Role.ADMIN.value:
            logger.warning('bootstrap_admin_conflict username=%s role=%s', username, row.role)
            return {'ensured': False, 'reason': 'username_taken_by_non_admin'}
        return {'ensured': True, 'inserted': False, 'username': username}

    row = User(
        username=username,
        password_hash=hash_password(settings.bootstrap_admin_password),
        full_name='Super Admin',
        role=Role.ADMIN.value,
    )
    db.add(row)
    db.commit()
    logger.warning('bootstrap_admin_created username=%s', username)
    return {'ensured': True, 'inserted': True, 'username': username}


def run_startup_bootstrap(db: Session) -> dict:
    return {'admin': ensure_bootstrap_admin(db)}
