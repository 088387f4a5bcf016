"""Key-value mirror over the kv_store table.

Writes only stage changes on the session; callers commit together with the
relational rows so both copies move in one transaction.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from models import KVEntry


def get(db: Session, key: str) -> Optional[dict]:
    entry = db.get(KVEntry, key)
    return entry.value if entry else None


def set(db: Session, key: str, value: dict) -> None:
    entry = db.get(KVEntry, key)
    if entry is None:
        db.add(KVEntry(key=key, value=value, updated_at=datetime.utcnow()))
    else:
        entry.value = value
        entry.updated_at = datetime.utcnow()


def delete(db: Session, key: str) -> None:
    entry = db.get(KVEntry, key)
    if entry is not None:
        db.delete(entry)


def get_by_prefix(db: Session, prefix: str) -> list[dict]:
    entries = db.query(KVEntry).filter(KVEntry.key.startswith(prefix)).all()
    return [e.value for e in entries]
