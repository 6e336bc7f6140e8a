"""
Key-value persistence — the local durable store.

KeyValueStore — synchronous, Result-based protocol over JSON-able values.
Every cart mutation persists before returning, so the protocol is sync.

Backends:
- MemoryKeyValueStore: tests, single process
- FileKeyValueStore: one JSON file per key
- SQLAlchemyKeyValueStore: one `kv_entries` table in any SQLAlchemy database
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from kungfu import Error, Ok, Result
from sqlalchemy import DateTime, Engine, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from cartsync.errors import CartError, CartErrors

# ═══════════════════════════════════════════════════════════════════════════════
# KeyValueStore Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class KeyValueStore(Protocol):
    """
    Durable local storage protocol.

    Values are JSON-able (dict / list / str / int / float / bool / None).
    All methods return Result; callers decide whether a failure matters.

    Example — custom backend:

        class RedisKeyValueStore:
            def get(self, key: str) -> Result[Any | None, CartError]:
                try:
                    raw = self.client.get(key)
                    return Ok(json.loads(raw) if raw else None)
                except Exception as e:
                    return Error(CartErrors.storage(str(e), key=key))
            ...
    """

    def get(self, key: str) -> Result[Any | None, CartError]:
        """Read a value. Ok(None) when absent."""
        ...

    def set(self, key: str, value: Any) -> Result[None, CartError]:
        """Write a value, replacing any previous one."""
        ...

    def delete(self, key: str) -> Result[bool, CartError]:
        """Remove a key. Ok(True) if it existed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store — For Testing
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryKeyValueStore:
    """
    In-memory store.

    Values are stored as encoded JSON, so non-serializable values fail the
    same way they would against a real backend.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Result[Any | None, CartError]:
        raw = self._data.get(key)
        if raw is None:
            return Ok(None)
        return Ok(json.loads(raw))

    def set(self, key: str, value: Any) -> Result[None, CartError]:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            return Error(CartErrors.storage(f"Failed to encode: {e}", key=key))
        return Ok(None)

    def delete(self, key: str) -> Result[bool, CartError]:
        return Ok(self._data.pop(key, None) is not None)

    def keys(self) -> list[str]:
        return list(self._data)


# ═══════════════════════════════════════════════════════════════════════════════
# File Store — One JSON File Per Key
# ═══════════════════════════════════════════════════════════════════════════════

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class FileKeyValueStore:
    """
    Directory of `<key>.json` files. Writes go through a temp file and
    `os.replace`, so a crash mid-write leaves the previous value intact.

    Example:
        kv = FileKeyValueStore(Path.home() / ".cartsync")
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{_UNSAFE.sub('_', key)}.json"

    def get(self, key: str) -> Result[Any | None, CartError]:
        path = self._path(key)
        try:
            if not path.exists():
                return Ok(None)
            return Ok(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            return Error(CartErrors.storage(f"Failed to read: {e}", key=key))

    def set(self, key: str, value: Any) -> Result[None, CartError]:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            encoded = json.dumps(value)
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(encoded)
            os.replace(tmp, self._path(key))
            return Ok(None)
        except (OSError, TypeError, ValueError) as e:
            return Error(CartErrors.storage(f"Failed to write: {e}", key=key))

    def delete(self, key: str) -> Result[bool, CartError]:
        try:
            self._path(key).unlink()
            return Ok(True)
        except FileNotFoundError:
            return Ok(False)
        except OSError as e:
            return Error(CartErrors.storage(f"Failed to delete: {e}", key=key))


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Store — Embedded Database
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class KeyValueEntry(Base):
    """One stored value, JSON-encoded."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class SQLAlchemyKeyValueStore:
    """
    `kv_entries` table store.

    Example:
        kv = SQLAlchemyKeyValueStore.from_url("sqlite:///cart.db")
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, url: str = "sqlite:///:memory:", **engine_kw: Any) -> SQLAlchemyKeyValueStore:
        """Create the engine, ensure the table exists, return a store."""
        engine = create_engine(url, **engine_kw)
        return cls.from_engine(engine)

    @classmethod
    def from_engine(cls, engine: Engine) -> SQLAlchemyKeyValueStore:
        Base.metadata.create_all(engine)
        return cls(sessionmaker(engine, expire_on_commit=False))

    def get(self, key: str) -> Result[Any | None, CartError]:
        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(KeyValueEntry).where(KeyValueEntry.key == key)
                ).scalar_one_or_none()
                if row is None:
                    return Ok(None)
                return Ok(json.loads(row.value))
        except Exception as e:
            return Error(CartErrors.storage(f"Failed to get: {e}", key=key))

    def set(self, key: str, value: Any) -> Result[None, CartError]:
        try:
            encoded = json.dumps(value)
            with self._session_factory() as session:
                session.merge(
                    KeyValueEntry(
                        key=key,
                        value=encoded,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                session.commit()
            return Ok(None)
        except Exception as e:
            return Error(CartErrors.storage(f"Failed to set: {e}", key=key))

    def delete(self, key: str) -> Result[bool, CartError]:
        try:
            with self._session_factory() as session:
                row = session.get(KeyValueEntry, key)
                if row is None:
                    return Ok(False)
                session.delete(row)
                session.commit()
                return Ok(True)
        except Exception as e:
            return Error(CartErrors.storage(f"Failed to delete: {e}", key=key))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "KeyValueEntry",
    "SQLAlchemyKeyValueStore",
)
