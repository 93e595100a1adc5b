from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=_connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def get_db() -> Generator[Session, None, None]:
    """Yield a session and make sure it is closed after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def conflict_insert(db: Session, model):
    """Return a dialect insert supporting ON CONFLICT for the session's backend, or None.

    None means the backend has no conflict-aware insert and callers must use
    the re-check-then-insert fallback.
    """
    bind = db.get_bind()
    factory = _UPSERT_DIALECTS.get(bind.dialect.name)
    if factory is None:
        return None
    return factory(model)


def insert_or_ignore(db: Session, model, values: dict, index_elements: list[str] | None) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True when this call inserted the row.

    ``index_elements=None`` leaves out the conflict target, so a clash on any
    unique constraint of the table is ignored.

    Backends without conflict-aware inserts go through a savepoint and treat an
    IntegrityError as "someone else inserted first". That path narrows the race
    window but relies on the unique constraint to close it.
    """
    stmt = conflict_insert(db, model)
    if stmt is not None:
        result = db.execute(stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements))
        return result.rowcount > 0

    try:
        with db.begin_nested():
            db.add(model(**values))
            db.flush()
    except IntegrityError:
        return False
    return True
