"""SQLite-backed metadata store.

Uniqueness of live records is a UNIQUE index on
(resource_id, identity_key, kind). Records are hard-deleted by the
compensator and the reconciler, so every row in the table is live.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from surveyx.errors import UniqueViolation
from surveyx.models.submission import MetadataRecord, RecordStatus, SubmissionKind

_COLUMNS = """
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    resource_id TEXT NOT NULL,
    identity TEXT NOT NULL,
    identity_key TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    computation_offset TEXT NOT NULL,
    ciphertext_commitment TEXT NOT NULL,
    ciphertext_hex TEXT NOT NULL,
    ephemeral_public_key_hex TEXT NOT NULL,
    nonce_hex TEXT NOT NULL,
    details TEXT NOT NULL,
    signature TEXT,
    created_utc TEXT NOT NULL,
    updated_utc TEXT NOT NULL
"""


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteMetadataStore:
    """MetadataStore over a SQLite file (or ``:memory:``)."""

    def __init__(self, db_path: str = ":memory:", enforce_unique: bool = True) -> None:
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self.enforce_unique = enforce_unique
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self._conn.execute(f"CREATE TABLE IF NOT EXISTS records ({_COLUMNS})")
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_resource ON records(resource_id)"
            )
            if self.enforce_unique:
                self._conn.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS idx_records_live "
                    "ON records(resource_id, identity_key, kind)"
                )
            self._conn.commit()

    def insert(self, record: MetadataRecord) -> str:
        record_id = record.record_id or f"rec_{uuid4().hex[:12]}"
        created = record.created_utc or datetime.now(timezone.utc)
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO records
                    (record_id, resource_id, identity, identity_key, kind, status,
                     computation_offset, ciphertext_commitment, ciphertext_hex,
                     ephemeral_public_key_hex, nonce_hex, details, signature,
                     created_utc, updated_utc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record_id, record.resource_id, record.identity,
                        record.identity.lower(), record.kind.value, record.status.value,
                        str(record.computation_offset), record.ciphertext_commitment,
                        record.ciphertext_hex, record.ephemeral_public_key_hex,
                        record.nonce_hex, json.dumps(record.details, sort_keys=True, default=str),
                        record.signature, _ts(created), _ts(created),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                if "records.record_id" in str(exc):
                    raise ValueError(f"Record ID already exists: {record_id}") from exc
                raise UniqueViolation(
                    record.resource_id, record.identity, record.kind.value,
                ) from exc
            self._conn.commit()
        return record_id

    def query(
        self,
        resource_id: str,
        identity: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        sql = "SELECT * FROM records WHERE resource_id = ? AND identity_key = ?"
        args: list = [resource_id, identity.lower()]
        if kind is not None:
            sql += " AND kind = ?"
            args.append(kind.value)
        sql += " ORDER BY created_utc DESC, seq DESC"
        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
        return [self._row_to_record(r) for r in rows]

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM records WHERE record_id = ?", (record_id,))
            self._conn.commit()

    def mark_confirmed(
        self,
        record_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> MetadataRecord:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            record = self.get(record_id)
            if record is None:
                raise ValueError(f"Unknown record ID: {record_id}")
            if record.status != RecordStatus.CONFIRMED:
                record.transition_to(RecordStatus.CONFIRMED)
            record.signature = signature
            record.updated_utc = now
            self._conn.execute(
                "UPDATE records SET status = ?, signature = ?, updated_utc = ? "
                "WHERE record_id = ?",
                (record.status.value, signature, _ts(now), record_id),
            )
            self._conn.commit()
            return record

    def get(self, record_id: str) -> Optional[MetadataRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE record_id = ?", (record_id,),
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def list_by_resource(
        self,
        resource_id: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        sql = "SELECT * FROM records WHERE resource_id = ?"
        args: list = [resource_id]
        if kind is not None:
            sql += " AND kind = ?"
            args.append(kind.value)
        sql += " ORDER BY created_utc DESC, seq DESC"
        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
        return [self._row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MetadataRecord:
        return MetadataRecord(
            record_id=row["record_id"],
            resource_id=row["resource_id"],
            identity=row["identity"],
            kind=SubmissionKind(row["kind"]),
            computation_offset=int(row["computation_offset"]),
            ciphertext_commitment=row["ciphertext_commitment"],
            ciphertext_hex=row["ciphertext_hex"],
            ephemeral_public_key_hex=row["ephemeral_public_key_hex"],
            nonce_hex=row["nonce_hex"],
            status=RecordStatus(row["status"]),
            details=json.loads(row["details"]),
            created_utc=datetime.fromisoformat(row["created_utc"]),
            updated_utc=datetime.fromisoformat(row["updated_utc"]),
            signature=row["signature"],
            sequence=row["seq"],
        )
