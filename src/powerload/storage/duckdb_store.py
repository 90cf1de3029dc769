from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import duckdb
import pandas as pd

from powerload.config import LoadTestConfig
from powerload.metrics import AggregateStatistics, RequestOutcome


@dataclass(slots=True)
class Storage:
    db_path: Path

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        return duckdb.connect(str(self.db_path))

    def _init_schema(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS run_meta (
                    run_id TEXT PRIMARY KEY,
                    created_at TIMESTAMP,
                    config_json TEXT
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS request_outcomes (
                    run_id TEXT,
                    success BOOLEAN,
                    status_code INTEGER,
                    elapsed_ms DOUBLE,
                    content_length BIGINT,
                    error_message TEXT,
                    is_timeout BOOLEAN
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS run_summary (
                    run_id TEXT PRIMARY KEY,
                    total_requests INTEGER,
                    successful INTEGER,
                    failed INTEGER,
                    timeouts INTEGER,
                    success_rate DOUBLE,
                    total_time_ms DOUBLE,
                    throughput_rps DOUBLE,
                    min_ms DOUBLE,
                    max_ms DOUBLE,
                    mean_ms DOUBLE,
                    p50_ms DOUBLE,
                    p90_ms DOUBLE,
                    p95_ms DOUBLE,
                    p99_ms DOUBLE,
                    status_codes_json TEXT,
                    top_errors_json TEXT
                );
                """
            )

    def run_exists(self, run_id: str) -> bool:
        with self._connect() as con:
            result = con.execute(
                "SELECT COUNT(*) FROM run_meta WHERE run_id = ?",
                [run_id],
            ).fetchone()
            return bool(result and result[0] > 0)

    def save_run(
        self,
        config: LoadTestConfig,
        run_id: str,
        outcomes: Iterable[RequestOutcome],
        stats: AggregateStatistics,
    ) -> None:
        if self.run_exists(run_id):
            msg = f"Run {run_id} already exists"
            raise ValueError(msg)
        config_json = json.dumps(config.to_metadata())
        with self._connect() as con:
            con.execute(
                "INSERT INTO run_meta VALUES (?, ?, ?)",
                [run_id, datetime.now(timezone.utc), config_json],
            )
            outcomes_df = pd.DataFrame(
                [
                    {
                        "run_id": run_id,
                        "success": o.success,
                        "status_code": o.status_code,
                        "elapsed_ms": o.elapsed_ms,
                        "content_length": o.content_length,
                        "error_message": o.error_message,
                        "is_timeout": o.is_timeout,
                    }
                    for o in outcomes
                ]
            )
            if not outcomes_df.empty:
                con.execute("INSERT INTO request_outcomes SELECT * FROM outcomes_df")
            row = asdict(stats)
            status_codes = row.pop("status_codes")
            top_errors = row.pop("top_errors")
            con.execute(
                "INSERT INTO run_summary VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    run_id,
                    *row.values(),
                    json.dumps({str(code): count for code, count in status_codes.items()}),
                    json.dumps([[message, count] for message, count in top_errors]),
                ],
            )

    def list_runs(self) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                """
                SELECT m.run_id, m.created_at, s.total_requests, s.success_rate, s.throughput_rps, s.p99_ms
                FROM run_meta m LEFT JOIN run_summary s USING (run_id)
                ORDER BY m.created_at DESC
                """
            ).fetchdf()

    def load_run_meta(self, run_id: str) -> dict[str, Any] | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT config_json FROM run_meta WHERE run_id = ?",
                [run_id],
            ).fetchone()
            if not row:
                return None
            return json.loads(row[0])

    def load_outcomes(self, run_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT * FROM request_outcomes WHERE run_id = ?",
                [run_id],
            ).fetchdf()

    def load_summary(self, run_id: str) -> dict[str, Any] | None:
        with self._connect() as con:
            df = con.execute(
                "SELECT * FROM run_summary WHERE run_id = ?",
                [run_id],
            ).fetchdf()
        if df.empty:
            return None
        summary = df.iloc[0].to_dict()
        summary["status_codes"] = {
            int(code): count for code, count in json.loads(summary.pop("status_codes_json")).items()
        }
        summary["top_errors"] = [(message, count) for message, count in json.loads(summary.pop("top_errors_json"))]
        return summary
