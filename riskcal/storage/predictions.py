"""
Prediction sources
==================
Read-only access to prediction records filtered by time range.

The recalibration orchestrator only needs ``fetch(start, end)``. A record
falls in the range when its resolution time (or its prediction time, while
still pending) lies within ``[start, end]``.

Usage:
    from riskcal.storage.predictions import SqlitePredictionSource

    source = SqlitePredictionSource("data/predictions.db")
    records = source.fetch(start, end)
"""

import logging
import sqlite3
import threading
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Union

import pandas as pd

from riskcal.exceptions import DataFetchError
from riskcal.schema import Outcome, PredictionRecord

logger = logging.getLogger(__name__)


def _in_range(record: PredictionRecord, start: datetime, end: datetime) -> bool:
    stamp = record.resolved_at or record.predicted_at
    return start <= stamp <= end


class PredictionSource:
    def fetch(self, start: datetime, end: datetime) -> List[PredictionRecord]:
        raise NotImplementedError


class InMemoryPredictionSource(PredictionSource):
    def __init__(self, records: Iterable[PredictionRecord] = ()) -> None:
        self._records: List[PredictionRecord] = list(records)
        self._lock = threading.Lock()

    def add(self, record: PredictionRecord) -> None:
        with self._lock:
            self._records.append(record)

    def resolve(self, prediction_id: str, outcome: Outcome, resolved_at: datetime) -> PredictionRecord:
        with self._lock:
            for index, record in enumerate(self._records):
                if record.id == prediction_id:
                    resolved = record.resolve(outcome, resolved_at)
                    self._records[index] = resolved
                    return resolved
        raise KeyError(prediction_id)

    def fetch(self, start: datetime, end: datetime) -> List[PredictionRecord]:
        with self._lock:
            return [r for r in self._records if _in_range(r, start, end)]


class SqlitePredictionSource(PredictionSource):
    """Predictions stored in a SQLite ``predictions`` table.

    Timestamps are stored as ISO-8601 strings, so range filters compare
    lexicographically. Callers must use one timezone convention throughout.
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS predictions (
            id TEXT PRIMARY KEY,
            algorithm_id TEXT NOT NULL,
            predicted_side TEXT,
            confidence REAL NOT NULL,
            predicted_at TEXT NOT NULL,
            resolved_at TEXT,
            outcome TEXT NOT NULL DEFAULT 'pending'
        )
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and is always closed."""
        with closing(sqlite3.connect(self.db_path)) as conn:
            with conn:
                yield conn

    def ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(self._SCHEMA)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_predictions_time "
                "ON predictions (resolved_at, predicted_at)"
            )

    def insert(self, records: Iterable[PredictionRecord]) -> int:
        rows = [
            (
                r.id,
                r.algorithm_id,
                r.predicted_side,
                float(r.confidence),
                r.predicted_at.isoformat(),
                r.resolved_at.isoformat() if r.resolved_at else None,
                r.outcome.value,
            )
            for r in records
        ]
        with self._connect() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO predictions "
                "(id, algorithm_id, predicted_side, confidence, predicted_at, resolved_at, outcome) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def fetch(self, start: datetime, end: datetime) -> List[PredictionRecord]:
        if not self.db_path.exists():
            raise DataFetchError(str(self.db_path), "database file not found")

        query = """
            SELECT id, algorithm_id, predicted_side, confidence,
                   predicted_at, resolved_at, outcome
            FROM predictions
            WHERE COALESCE(resolved_at, predicted_at) >= ?
              AND COALESCE(resolved_at, predicted_at) <= ?
            ORDER BY predicted_at
        """
        try:
            with self._connect() as conn:
                df = pd.read_sql_query(query, conn, params=(start.isoformat(), end.isoformat()))
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise DataFetchError(str(self.db_path), "query failed", original_error=e) from e

        try:
            df = df.astype(object).where(pd.notna(df), None)
            return [PredictionRecord.from_dict(row) for row in df.to_dict("records")]
        except (KeyError, TypeError, ValueError) as e:
            raise DataFetchError(str(self.db_path), "malformed prediction row", original_error=e) from e
