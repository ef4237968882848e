from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def create_db_engine(url: str, **kwargs: Any) -> Engine:
    """Engine with the SQLite pragmas the app relies on.

    File databases get WAL; every SQLite connection enforces foreign keys so
    goal progress rows follow their goal and deleted categories null out.
    """
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args

    eng = create_engine(url, **kwargs)
    if is_sqlite:
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        event.listen(
            eng,
            "connect",
            lambda conn, record: _enable_sqlite_pragmas(conn, wal=not in_memory),
        )
    return eng


def _enable_sqlite_pragmas(dbapi_conn, wal: bool = True) -> None:
    cursor = dbapi_conn.cursor()
    if wal:
        cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine) -> None:
    import models  # noqa: F401

    Base.metadata.create_all(bind)


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
