"""SQLite-backed simulation record store."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional

from ..domain.models import SimulationRecord
from ..domain.schema import (
    CompoundDefinition,
    EnergyStreamDefinition,
    FlashAlgorithm,
    MaterialStreamDefinition,
    PropertyPackage,
    SystemOfUnits,
    UnitOperationDefinition,
)
from ..domain.status import SimulationStatus
from ..logging import get_logger
from .repository import KEEP, SimulationNotFoundError, StaleWriteError, StoreUnavailableError

logger = get_logger(__name__)

_CHILD_KINDS = {
    "compound": ("compounds", CompoundDefinition),
    "material_stream": ("material_streams", MaterialStreamDefinition),
    "energy_stream": ("energy_streams", EnergyStreamDefinition),
    "unit_operation": ("unit_operations", UnitOperationDefinition),
}


class SqliteSimulationRepository:
    """Durable store keeping the aggregate row and its ordered children."""

    def __init__(self, path: str) -> None:
        self._path = self._prepare_path(path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS simulations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                property_package TEXT NOT NULL,
                flash_algorithm TEXT NOT NULL,
                system_of_units TEXT NOT NULL,
                status TEXT NOT NULL,
                error_message TEXT,
                result_json TEXT,
                job_id TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS simulation_children (
                id TEXT NOT NULL,
                simulation_id TEXT NOT NULL
                    REFERENCES simulations(id) ON DELETE CASCADE,
                kind TEXT NOT NULL,
                position INTEGER NOT NULL,
                payload_json TEXT NOT NULL,
                PRIMARY KEY (simulation_id, kind, id)
            )
            """
        )
        self._conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_simulations_status
            ON simulations(status, updated_at)
            """
        )
        self._conn.commit()

    @staticmethod
    def _prepare_path(path_str: str) -> Path:
        path = Path(path_str).expanduser()
        if not path.is_absolute():
            path = (Path.cwd() / path).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.OperationalError as exc:
                logger.warning("simulation_store.unavailable", reason=str(exc))
                raise StoreUnavailableError(str(exc)) from exc

    def add(self, record: SimulationRecord) -> SimulationRecord:
        now = time.time()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO simulations (
                    id, name, property_package, flash_algorithm, system_of_units,
                    status, error_message, result_json, job_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.name,
                    record.property_package.value,
                    record.flash_algorithm.value,
                    record.system_of_units.value,
                    record.status.value,
                    record.error_message,
                    json.dumps(record.result_payload) if record.result_payload else None,
                    record.job_id,
                    record.created_at,
                    now,
                ),
            )
            self._write_children(conn, record)
        return self.get(record.id)

    def get(self, simulation_id: str) -> SimulationRecord:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM simulations WHERE id = ?", (simulation_id,)
            ).fetchone()
            if row is None:
                raise SimulationNotFoundError(simulation_id)
            children = conn.execute(
                """
                SELECT kind, payload_json FROM simulation_children
                WHERE simulation_id = ? ORDER BY kind, position
                """,
                (simulation_id,),
            ).fetchall()
        return self._deserialize(row, children)

    def save_definition(self, record: SimulationRecord) -> SimulationRecord:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE simulations SET
                    name = ?, property_package = ?, flash_algorithm = ?,
                    system_of_units = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    record.name,
                    record.property_package.value,
                    record.flash_algorithm.value,
                    record.system_of_units.value,
                    time.time(),
                    record.id,
                ),
            )
            if cursor.rowcount == 0:
                raise SimulationNotFoundError(record.id)
            conn.execute("DELETE FROM simulation_children WHERE simulation_id = ?", (record.id,))
            self._write_children(conn, record)
        return self.get(record.id)

    def update_status(
        self,
        simulation_id: str,
        status: SimulationStatus,
        *,
        error_message: Optional[str] = None,
        result_payload: Any = KEEP,
        job_id: Any = KEEP,
        expected_job_id: Any = KEEP,
    ) -> SimulationRecord:
        assignments = ["status = :status", "error_message = :error_message", "updated_at = :now"]
        params: dict[str, Any] = {
            "id": simulation_id,
            "status": status.value,
            "error_message": error_message,
            "now": time.time(),
        }
        if result_payload is not KEEP:
            assignments.append("result_json = :result_json")
            params["result_json"] = (
                json.dumps(result_payload) if result_payload is not None else None
            )
        if job_id is not KEEP:
            assignments.append("job_id = :job_id")
            params["job_id"] = job_id
        condition = "id = :id"
        if expected_job_id is not KEEP:
            condition += " AND job_id IS :expected_job_id"
            params["expected_job_id"] = expected_job_id
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE simulations SET {', '.join(assignments)} WHERE {condition}",
                params,
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT job_id FROM simulations WHERE id = ?", (simulation_id,)
                ).fetchone()
                if row is None:
                    raise SimulationNotFoundError(simulation_id)
                raise StaleWriteError(simulation_id, expected_job_id, row["job_id"])
        return self.get(simulation_id)

    def delete(self, simulation_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM simulations WHERE id = ?", (simulation_id,))
            if cursor.rowcount == 0:
                raise SimulationNotFoundError(simulation_id)

    def find_by_status(
        self, statuses: Iterable[SimulationStatus], *, updated_before: float | None = None
    ) -> List[SimulationRecord]:
        values = [status.value for status in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        query = f"SELECT id FROM simulations WHERE status IN ({placeholders})"
        params: list[Any] = list(values)
        if updated_before is not None:
            query += " AND updated_at < ?"
            params.append(updated_before)
        query += " ORDER BY id"
        with self._transaction() as conn:
            ids = [row["id"] for row in conn.execute(query, params)]
        return [self.get(simulation_id) for simulation_id in ids]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _write_children(conn: sqlite3.Connection, record: SimulationRecord) -> None:
        rows = []
        for kind, (attribute, _model) in _CHILD_KINDS.items():
            for position, item in enumerate(getattr(record, attribute)):
                rows.append(
                    (
                        item.id,
                        record.id,
                        kind,
                        position,
                        json.dumps(item.model_dump(mode="json", by_alias=True)),
                    )
                )
        if rows:
            conn.executemany(
                """
                INSERT INTO simulation_children (id, simulation_id, kind, position, payload_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )

    @staticmethod
    def _deserialize(row: sqlite3.Row, children: list[sqlite3.Row]) -> SimulationRecord:
        record = SimulationRecord(
            id=str(row["id"]),
            name=str(row["name"]),
            property_package=PropertyPackage(row["property_package"]),
            flash_algorithm=FlashAlgorithm(row["flash_algorithm"]),
            system_of_units=SystemOfUnits(row["system_of_units"]),
            status=SimulationStatus(row["status"]),
            error_message=row["error_message"],
            result_payload=json.loads(row["result_json"]) if row["result_json"] else None,
            job_id=row["job_id"],
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )
        for child in children:
            attribute, model = _CHILD_KINDS[child["kind"]]
            getattr(record, attribute).append(model.model_validate(json.loads(child["payload_json"])))
        return record


__all__ = ["SqliteSimulationRepository"]
