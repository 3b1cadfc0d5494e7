import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from results_portal.config import settings
from results_portal.request_context import current_endpoint


def _connect_args(database_url: str) -> dict:
    if make_url(database_url).get_backend_name() == 'sqlite':
        return {'check_same_thread': False}
    return {}


engine = create_engine(settings.database_url, connect_args=_connect_args(settings.database_url), pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

_SLOW_QUERY_MS = settings.db_slow_query_ms
_slow_logger = logging.getLogger('results_portal.db.slow_query')


@event.listens_for(engine, 'before_cursor_execute')
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


@event.listens_for(engine, 'after_cursor_execute')
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = getattr(context, '_query_start_time', None)
    if start is None:
        return
    duration_ms = (time.perf_counter() - start) * 1000.0
    if duration_ms >= _SLOW_QUERY_MS:
        endpoint = current_endpoint.get()
        sql_text = (statement or '').replace('\n', ' ').strip()
        _slow_logger.warning(
            'slow_query duration_ms=%.2f endpoint=%s sql=%s',
            duration_ms,
            endpoint,
            sql_text,
        )


def enable_sqlite_foreign_keys(target_engine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless the pragma is set per connection."""
    if target_engine.dialect.name != 'sqlite':
        return

    @event.listens_for(target_engine, 'connect')
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


enable_sqlite_foreign_keys(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Commit everything done inside the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


_UPSERT_CHUNK_SIZE = 200


def _dialect_insert(dialect_name: str):
    if dialect_name == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert

        return insert
    if dialect_name == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert

        return insert
    return None


def upsert_rows(db: Session, model, rows: list[dict], *, conflict_columns: tuple[str, ...], update_columns: tuple[str, ...]) -> None:
    """INSERT ... ON CONFLICT DO UPDATE keyed on a unique constraint.

    Concurrent writers to the same key converge on the last committed row.
    Dialects without native upsert fall back to lookup-then-write.
    """
    if not rows:
        return
    insert = _dialect_insert(db.get_bind().dialect.name)
    if insert is None:
        _upsert_by_lookup(db, model, rows, conflict_columns=conflict_columns, update_columns=update_columns)
        return
    for start in range(0, len(rows), _UPSERT_CHUNK_SIZE):
        stmt = insert(model).values(rows[start:start + _UPSERT_CHUNK_SIZE])
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={column: getattr(stmt.excluded, column) for column in update_columns},
        )
        db.execute(stmt)


def _upsert_by_lookup(db: Session, model, rows: list[dict], *, conflict_columns: tuple[str, ...], update_columns: tuple[str, ...]) -> None:
    for values in rows:
        existing = (
            db.query(model)
            .filter(*[getattr(model, column) == values[column] for column in conflict_columns])
            .with_for_update()
            .first()
        )
        if existing:
            for column in update_columns:
                setattr(existing, column, values[column])
        else:
            db.add(model(**values))
    db.flush()
