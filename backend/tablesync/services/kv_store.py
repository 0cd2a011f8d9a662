"""
JSON key-value store on top of the local database.
"""
import json
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from tablesync.models.db import get_session
from tablesync.models.tables import KeyValueEntry


class KeyValueStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def get_json(self, key: str, default: Any = None) -> Any:
        with get_session(self.session_factory) as session:
            row = session.execute(
                sa.select(KeyValueEntry.value).where(KeyValueEntry.key == key)
            ).scalar()
        if row is None:
            return default
        return json.loads(row)

    def set_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with get_session(self.session_factory) as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=payload))
            else:
                entry.value = payload
            session.commit()

    def delete(self, key: str) -> bool:
        with get_session(self.session_factory) as session:
            result = session.execute(sa.delete(KeyValueEntry).where(KeyValueEntry.key == key))
            session.commit()
        return bool(result.rowcount)
