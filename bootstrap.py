import logging

from alembic import command
from alembic.config import Config

from results_portal.db import SessionLocal
from results_portal.models import District, School, Student
from results_portal.services.bootstrap_service import run_startup_bootstrap


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main():
    # Schema comes from the migrations so a bootstrapped database is already at head.
    command.upgrade(Config('alembic.ini'), 'head')
    db = SessionLocal()
    try:
        result = run_startup_bootstrap(db)
        admin = result['admin']
        if admin.get('inserted'):
            logger.info('bootstrap_admin_inserted username=%s', admin.get('username'))
        elif admin.get('ensured'):
            logger.info('bootstrap_admin_present username=%s', admin.get('username'))
        else:
            logger.warning('bootstrap_admin_skipped reason=%s', admin.get('reason'))
        logger.info(
            'bootstrap_done districts=%s schools=%s students=%s',
            db.query(District).count(),
            db.query(School).count(),
            db.query(Student).count(),
        )
    finally:
        db.close()


if __name__ == '__main__':
    main()
