import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine, event, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


class Slot(Base):
    """One named slot holding a serialized JSON document."""
    __tablename__ = "slots"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc),
                        nullable=False)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA secure_delete=ON;")
    finally:
        cursor.close()


class KeyValueStore:
    """Key-value store on a single SQLite file, with WAL mode and backup support.

    Every ``put``/``delete`` commits on its own unless it runs inside
    ``transaction()``, in which case all writes of the block commit together.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
        )
        event.listen(self.engine, "connect", _set_sqlite_pragma)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False,
                                      expire_on_commit=False)
        # open transaction per thread, so a background writer never joins it
        self._local = threading.local()
        Base.metadata.create_all(bind=self.engine)

    def _active(self) -> Optional[Session]:
        return getattr(self._local, "session", None)

    def get(self, key: str) -> Optional[str]:
        """Return the raw serialized value of a slot, or None if it is empty."""
        session = self._active()
        if session is not None:
            row = session.get(Slot, key)
            return row.value if row else None
        with self._sessions() as s:
            row = s.get(Slot, key)
            return row.value if row else None

    def put(self, key: str, value: str) -> None:
        session = self._active()
        if session is not None:
            self._write(session, key, value)
            session.flush()
            return
        with self._sessions() as s, s.begin():
            self._write(s, key, value)

    def delete(self, key: str) -> None:
        session = self._active()
        if session is not None:
            row = session.get(Slot, key)
            if row is not None:
                session.delete(row)
                session.flush()
            return
        with self._sessions() as s, s.begin():
            row = s.get(Slot, key)
            if row is not None:
                s.delete(row)

    def keys(self) -> List[str]:
        with self._sessions() as s:
            return list(s.scalars(select(Slot.key).order_by(Slot.key)))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so they commit together or roll back together.

        Nested calls join the outer transaction.
        """
        if self._active() is not None:
            yield
            return
        session = self._sessions()
        self._local.session = session
        try:
            yield
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    def backup_to(self, dest_path: str) -> None:
        """Create an online backup to the given path."""
        raw = self.engine.raw_connection()
        try:
            src = raw.driver_connection
            dest = sqlite3.connect(dest_path)
            try:
                with dest:
                    src.backup(dest)
            finally:
                dest.close()
        finally:
            raw.close()

    def close(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()

    @staticmethod
    def _write(session: Session, key: str, value: str) -> None:
        row = session.get(Slot, key)
        if row is None:
            session.add(Slot(key=key, value=value))
        else:
            row.value = value
