"""
Key-value store on top of the kv_store table.

Keys are namespaced ("{namespace}.{key}") so several logical stores can share
one database.
"""
from typing import Any, Protocol

from sqlalchemy.orm import sessionmaker

from subtracker.infrastructure.db.models import KeyValueEntry


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class SqlKeyValueStore:
    """
    Repository for namespaced JSON values

    Errors (sqlalchemy.exc.SQLAlchemyError) are propagated; callers decide
    whether a failure is fatal.
    """

    def __init__(self, session_factory: sessionmaker, namespace: str):
        self.session_factory = session_factory
        self.namespace = namespace

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}.{key}"

    def get(self, key: str) -> Any | None:
        with self.session_factory() as db:
            entry = db.get(KeyValueEntry, self._full_key(key))
            return entry.value_json if entry else None

    def set(self, key: str, value: Any) -> None:
        with self.session_factory() as db:
            entry = db.get(KeyValueEntry, self._full_key(key))
            if entry:
                entry.value_json = value
            else:
                db.add(KeyValueEntry(key=self._full_key(key), value_json=value))
            db.commit()

    def delete(self, key: str) -> None:
        with self.session_factory() as db:
            db.query(KeyValueEntry).filter(
                KeyValueEntry.key == self._full_key(key),
            ).delete()
            db.commit()
