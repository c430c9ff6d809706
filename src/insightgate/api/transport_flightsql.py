"""
Flight SQL store implementation.

Runs the compiled, parameterized statements against an Arrow Flight SQL
endpoint through the ADBC driver and materializes rows via pandas.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import adbc_driver_flightsql.dbapi as flight_sql
import pandas as pd

from insightgate.errors import StoreExecutionError
from insightgate.log import logger


def to_flight_uri(uri: str) -> str:
    if uri.startswith("https://"):
        return uri.replace("https://", "grpc+tls://") + ":443"
    elif uri.startswith("http://"):
        return uri.replace("http://", "grpc://")
    return uri


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Rows as plain dicts, with missing values turned into None."""
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


class FlightSQLStore:
    """Store implementation using Apache Arrow Flight SQL."""

    dialect = None

    def __init__(self, uri: str, pat: str, project_id: Optional[str] = None):
        """
        Initialize Flight SQL store.

        Args:
            uri: Endpoint URI (e.g., https://data.example.com)
            pat: Personal Access Token for authentication
            project_id: Optional project ID sent as a routing header
        """
        self.uri = uri
        self.pat = pat
        self.project_id = project_id
        self.flight_uri = to_flight_uri(uri)
        self._connection = None
        self._lock = asyncio.Lock()

        logger("store").info("flightsql_initialized", uri=self.flight_uri)

    def _connect(self):
        if self._connection is None:
            db_kwargs = {
                "adbc.flight.sql.authorization_header": f"Bearer {self.pat}",
            }
            if self.project_id:
                db_kwargs["adbc.flight.sql.rpc.call_header.project_id"] = (
                    self.project_id
                )

            logger("store").info("flightsql_connecting", uri=self.flight_uri)
            self._connection = flight_sql.connect(
                uri=self.flight_uri, db_kwargs=db_kwargs
            )
        return self._connection

    def _fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        cursor = self._connect().cursor()
        try:
            cursor.execute(sql, tuple(params) if params else None)
            try:
                df = cursor.fetch_df()
            except Exception as df_error:
                logger("store").warning("fetch_df_failed", error=str(df_error))
                rows = cursor.fetchall()
                columns = [desc[0] for desc in cursor.description]
                df = pd.DataFrame(rows, columns=columns)
            return frame_to_records(df)
        finally:
            cursor.close()

    async def fetch_all(
        self, sql: str, params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        try:
            async with self._lock:
                rows = await asyncio.to_thread(self._fetch, sql, params)
        except Exception as e:
            raise StoreExecutionError(f"Flight SQL query failed: {e}") from e

        logger("store").debug("flightsql_fetched", rows=len(rows))
        return rows

    async def close(self):
        """Close the Flight SQL connection."""
        if self._connection:
            try:
                self._connection.close()
                logger("store").info("flightsql_closed")
            except Exception as e:
                logger("store").warning("flightsql_close_failed", error=str(e))
            finally:
                self._connection = None
