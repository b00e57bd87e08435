from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Optional

from protocol.types import (
    AlignmentResult,
    CohortSnapshot,
    FeatureRecord,
    ReferenceReading,
    SynchronyResult,
)
from spectral.bands import Band
from storage.feature_store import FeatureStore
from stream.errors import PersistenceFailure

logger = logging.getLogger("storage")

_BAND_COLUMNS = ", ".join(
    f"power_{band.label} REAL NOT NULL DEFAULT 0, phase_{band.label} REAL" for band in Band
)


class SqliteFeatureStore(FeatureStore):
    def __init__(self, db_path: str | Path = "features.db") -> None:
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._lock = threading.Lock()
        self._init_db()

    # ---------------- private ---------------- #
    def _init_db(self) -> None:
        with self.conn:
            self.conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS features (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    subject_id  INTEGER NOT NULL,
                    channel     TEXT NOT NULL,
                    ts          REAL NOT NULL,
                    {_BAND_COLUMNS},
                    freq_weighted REAL NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_features_ts ON features (ts, subject_id);

                CREATE TABLE IF NOT EXISTS reference_readings (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts        REAL NOT NULL,
                    phases    TEXT NOT NULL,
                    location  TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_reference_ts ON reference_readings (ts);

                CREATE TABLE IF NOT EXISTS cohort_members (
                    cohort_id   INTEGER NOT NULL,
                    subject_id  INTEGER NOT NULL,
                    checked_in  INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (cohort_id, subject_id)
                );

                CREATE TABLE IF NOT EXISTS subjects (
                    subject_id         INTEGER PRIMARY KEY,
                    alignment_enabled  INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS synchrony_results (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    cohort_id    INTEGER NOT NULL,
                    epoch_start  REAL NOT NULL,
                    epoch_end    REAL NOT NULL,
                    group_plv    REAL NOT NULL,
                    constructive REAL NOT NULL,
                    destructive  REAL NOT NULL,
                    net_balance  REAL NOT NULL,
                    payload      TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS alignment_results (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    subject_id   INTEGER NOT NULL,
                    epoch_start  REAL NOT NULL,
                    epoch_end    REAL NOT NULL,
                    constructive REAL NOT NULL,
                    destructive  REAL NOT NULL,
                    net_balance  REAL NOT NULL,
                    payload      TEXT NOT NULL
                );
                """
            )

    def _write(self, sql: str, params: tuple) -> int:
        try:
            with self._lock, self.conn:
                cur = self.conn.execute(sql, params)
                return int(cur.lastrowid or 0)
        except sqlite3.Error as exc:
            logger.error("SQLite write failed: %s", exc, exc_info=True)
            raise PersistenceFailure(str(exc)) from exc

    def _read(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ----------------  writes  ------------------ #
    def append_feature(self, record: FeatureRecord) -> None:
        columns = ["subject_id", "channel", "ts"]
        values: list = [record.subject_id, record.channel, record.window_start_time]
        for band in Band:
            columns += [f"power_{band.label}", f"phase_{band.label}"]
            values += [record.band_power.get(band, 0.0), record.band_phase.get(band)]
        columns.append("freq_weighted")
        values.append(record.frequency_weighted_bandpower)
        self._write(
            f"INSERT INTO features ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            tuple(values),
        )

    def append_reference_reading(self, reading: ReferenceReading) -> int:
        phases = {band.label: reading.phases.get(band) for band in Band}
        reading.reading_id = self._write(
            "INSERT INTO reference_readings (ts, phases, location) VALUES (?, ?, ?)",
            (reading.timestamp, json.dumps(phases), reading.location),
        )
        return reading.reading_id

    def append_synchrony_result(self, result: SynchronyResult) -> None:
        self._write(
            "INSERT INTO synchrony_results (cohort_id, epoch_start, epoch_end, group_plv, "
            "constructive, destructive, net_balance, payload) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.cohort_id, result.epoch_start, result.epoch_end, result.group_plv,
                result.constructive_sum, result.destructive_sum, result.net_balance,
                json.dumps(result.to_payload()),
            ),
        )

    def append_alignment_result(self, result: AlignmentResult) -> None:
        self._write(
            "INSERT INTO alignment_results (subject_id, epoch_start, epoch_end, constructive, "
            "destructive, net_balance, payload) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                result.subject_id, result.epoch_start, result.epoch_end, result.constructive,
                result.destructive, result.net_balance, json.dumps(result.to_payload()),
            ),
        )

    def set_cohort_member(self, cohort_id: int, subject_id: int, checked_in: bool = False) -> None:
        self._write(
            "INSERT INTO cohort_members (cohort_id, subject_id, checked_in) VALUES (?, ?, ?) "
            "ON CONFLICT (cohort_id, subject_id) DO UPDATE SET checked_in = excluded.checked_in",
            (cohort_id, subject_id, int(checked_in)),
        )

    def set_alignment_enabled(self, subject_id: int, enabled: bool = True) -> None:
        self._write(
            "INSERT INTO subjects (subject_id, alignment_enabled) VALUES (?, ?) "
            "ON CONFLICT (subject_id) DO UPDATE SET alignment_enabled = excluded.alignment_enabled",
            (subject_id, int(enabled)),
        )

    # ----------------  reads  ------------------ #
    def fetch_features(self, subject_ids: Iterable[int], start_ms: float, end_ms: float) -> list[FeatureRecord]:
        ids = list(subject_ids)
        if not ids:
            return []
        band_cols = ", ".join(f"power_{b.label}, phase_{b.label}" for b in Band)
        rows = self._read(
            f"SELECT subject_id, channel, ts, {band_cols}, freq_weighted FROM features "
            f"WHERE ts >= ? AND ts < ? AND subject_id IN ({','.join('?' for _ in ids)}) "
            "ORDER BY ts ASC, id ASC",
            (start_ms, end_ms, *ids),
        )
        records = []
        for row in rows:
            subject_id, channel, ts = row[0], row[1], row[2]
            band_values = row[3:-1]
            power = {band: band_values[2 * i] for i, band in enumerate(Band)}
            phase = {band: band_values[2 * i + 1] for i, band in enumerate(Band)}
            records.append(
                FeatureRecord(
                    subject_id=subject_id,
                    channel=channel,
                    window_start_time=ts,
                    band_power=power,
                    band_phase=phase,
                    frequency_weighted_bandpower=row[-1],
                )
            )
        return records

    def fetch_reference_readings(self, start_ms: float, end_ms: float) -> list[ReferenceReading]:
        rows = self._read(
            "SELECT id, ts, phases, location FROM reference_readings "
            "WHERE ts >= ? AND ts < ? ORDER BY ts ASC, id ASC",
            (start_ms, end_ms),
        )
        readings = []
        for reading_id, ts, phases_json, location in rows:
            phases = json.loads(phases_json)
            readings.append(
                ReferenceReading(
                    timestamp=ts,
                    phases={band: phases.get(band.label) for band in Band},
                    location=location,
                    reading_id=reading_id,
                )
            )
        return readings

    def cohort_ids(self) -> list[int]:
        return [row[0] for row in self._read("SELECT DISTINCT cohort_id FROM cohort_members ORDER BY cohort_id")]

    def cohort_snapshot(self, cohort_id: int) -> CohortSnapshot:
        rows = self._read(
            "SELECT subject_id, checked_in FROM cohort_members WHERE cohort_id = ? ORDER BY subject_id",
            (cohort_id,),
        )
        return CohortSnapshot(
            cohort_id=cohort_id,
            member_ids=[subject_id for subject_id, _ in rows],
            checked_in_ids=[subject_id for subject_id, checked_in in rows if checked_in],
        )

    def alignment_subject_ids(self) -> list[int]:
        return [
            row[0] for row in self._read(
                "SELECT subject_id FROM subjects WHERE alignment_enabled = 1 ORDER BY subject_id"
            )
        ]

    def fetch_synchrony_results(self, cohort_id: int) -> list[dict]:
        rows = self._read(
            "SELECT payload FROM synchrony_results WHERE cohort_id = ? ORDER BY id ASC", (cohort_id,)
        )
        return [json.loads(row[0]) for row in rows]

    def fetch_alignment_results(self, subject_id: Optional[int] = None) -> list[dict]:
        if subject_id is None:
            rows = self._read("SELECT payload FROM alignment_results ORDER BY id ASC")
        else:
            rows = self._read(
                "SELECT payload FROM alignment_results WHERE subject_id = ? ORDER BY id ASC", (subject_id,)
            )
        return [json.loads(row[0]) for row in rows]

    def close(self) -> None:
        self.conn.close()
