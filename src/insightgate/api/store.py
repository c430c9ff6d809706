#
#  Copyright (C) 2017-2025 Dremio Corporation
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#
"""
Store transports for the query executor.

A store runs one parameterized SELECT and hands back rows as dicts. It never
builds SQL itself; the compiler produces the statement and the bound values.
"""

import asyncio
import sqlite3
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from insightgate.config import settings
from insightgate.errors import StoreExecutionError
from insightgate.log import logger


@runtime_checkable
class Store(Protocol):
    # sqlglot dialect the statements are generated for, None for generic SQL
    dialect: Optional[str]

    async def fetch_all(
        self, sql: str, params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]: ...

    async def close(self): ...


class SQLiteStore:
    """Store backed by a sqlite3 database, run off the event loop."""

    dialect = "sqlite"

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(self.path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            logger("store").info("sqlite_connected", path=self.path)
        return self._connection

    def executescript(self, script: str):
        self.connection().executescript(script)

    def executemany(self, sql: str, rows: Sequence[Sequence[Any]]):
        conn = self.connection()
        conn.executemany(sql, rows)
        conn.commit()

    def _fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        cursor = self.connection().execute(sql, tuple(params))
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    async def fetch_all(
        self, sql: str, params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        try:
            async with self._lock:
                return await asyncio.to_thread(self._fetch, sql, params)
        except sqlite3.Error as e:
            raise StoreExecutionError(f"SQLite query failed: {e}") from e

    async def close(self):
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def create_store(cfg: Optional[settings.Store] = None) -> Store:
    """Build the store named by the `store` settings section."""
    if cfg is None:
        cfg = settings.instance().store

    match cfg.kind:
        case settings.StoreKind.flightsql:
            from insightgate.api.transport_flightsql import FlightSQLStore

            if not cfg.uri or not cfg.pat:
                raise ValueError("store.uri and store.pat are required for flightsql")
            return FlightSQLStore(
                cfg.uri,
                cfg.pat,
                str(cfg.project_id) if cfg.project_id else None,
            )
        case _:
            return SQLiteStore(cfg.path or ":memory:")
