"""Saved company valuations.

Each save writes a complete CompanyValuationRecord (up to one result per
method) as a JSON payload owned by the saving user. Records are never
partially updated. Timestamps are normalised to epoch seconds here, when
rows and imported documents are decoded, and nowhere else.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from fairvalue.data.contracts import (
    CompanyValuationRecord,
    ValuationMethod,
    ValuationResult,
    normalize_timestamp,
)
from fairvalue.store.auth import Session
from fairvalue.store.db import connect

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store operation was rejected."""


class NotAuthenticatedError(StoreError):
    """The caller has no authenticated session."""


class OwnershipError(StoreError):
    """The record does not exist or belongs to another user."""


def _require_user(session: Session) -> str:
    if not session.is_authenticated or not session.user_id:
        raise NotAuthenticatedError("User is not signed in")
    return session.user_id


def _normalize_document(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a record document with every timestamp as epoch seconds."""
    doc = dict(data)
    doc["timestamp"] = normalize_timestamp(data.get("timestamp"))
    valuations: dict[str, Any] = {}
    for method, result in (data.get("valuations") or {}).items():
        if result is None:
            valuations[method] = None
            continue
        result = dict(result)
        result["timestamp"] = normalize_timestamp(result.get("timestamp"))
        valuations[method] = result
    doc["valuations"] = valuations
    return doc


class ValuationStore:
    """SQLite-backed document store for CompanyValuationRecord bundles.

    Args:
        db_path: Database file (created on first use).
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    def save(
        self,
        session: Session,
        stock_name: str,
        current_price: float,
        results: Mapping[ValuationMethod, ValuationResult | None],
        now: datetime,
    ) -> str:
        """Write a new record holding the given method results.

        Args:
            session: Caller; must be authenticated.
            stock_name: Company the results value.
            current_price: Price at save time.
            results: Method -> result, None for methods not computed.
            now: Save instant.

        Returns:
            The store-assigned record id.

        Raises:
            NotAuthenticatedError: Session is anonymous.
            ValueError: No method has a result.
        """
        user_id = _require_user(session)
        if not any(r is not None for r in results.values()):
            raise ValueError("No valuation results to save")

        record = CompanyValuationRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            stock_name=stock_name,
            current_price=current_price,
            timestamp=now.timestamp(),
            valuations={
                m: (None if r is None else r.with_user(user_id))
                for m, r in results.items()
            },
        )
        self._insert(record)
        logger.info(
            "Saved %s for user %s (%d methods)",
            stock_name,
            user_id,
            len(record.computed()),
        )
        return record.id

    def list_for_user(self, session: Session) -> list[CompanyValuationRecord]:
        """Caller's records, most recent first. Empty when signed out."""
        if not session.is_authenticated:
            return []
        conn = connect(self._db_path)
        try:
            rows = conn.execute(
                "SELECT id, user_id, stock_name, current_price, timestamp, payload "
                "FROM valuations WHERE user_id = ? ORDER BY timestamp DESC",
                (session.user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._decode_row(row) for row in rows]

    def get(self, session: Session, record_id: str) -> CompanyValuationRecord | None:
        """Fetch one of the caller's records, None if absent or foreign."""
        user_id = _require_user(session)
        row = self._fetch_row(record_id)
        if row is None or row["user_id"] != user_id:
            return None
        return self._decode_row(row)

    def delete(self, session: Session, record_id: str) -> None:
        """Delete one of the caller's records.

        Raises:
            NotAuthenticatedError: Session is anonymous.
            OwnershipError: Record missing or owned by someone else.
        """
        user_id = _require_user(session)
        row = self._fetch_row(record_id)
        if row is None or row["user_id"] != user_id:
            raise OwnershipError(
                f"Not allowed to delete valuation {record_id}"
            )
        conn = connect(self._db_path)
        try:
            with conn:
                conn.execute(
                    "DELETE FROM valuations WHERE id = ? AND user_id = ?",
                    (record_id, user_id),
                )
        finally:
            conn.close()
        logger.info("Deleted valuation %s for user %s", record_id, user_id)

    def import_record(self, session: Session, document: Mapping[str, Any]) -> str:
        """Store an exported record document under the caller.

        The document may carry timestamps as epoch seconds, epoch
        milliseconds or ``{"seconds": ...}`` mappings. A new id is
        assigned and ownership is reset to the caller.

        Returns:
            The new record id.
        """
        user_id = _require_user(session)
        doc = _normalize_document(document)
        doc["id"] = uuid.uuid4().hex
        doc["user_id"] = user_id
        record = CompanyValuationRecord.from_dict(doc)
        record = replace(
            record,
            valuations={
                m: (None if r is None else r.with_user(user_id))
                for m, r in record.valuations.items()
            },
        )
        self._insert(record)
        return record.id

    def export_records(self, session: Session) -> list[dict[str, Any]]:
        """Caller's records as JSON-ready documents, most recent first."""
        return [record.to_dict() for record in self.list_for_user(session)]

    def _insert(self, record: CompanyValuationRecord) -> None:
        conn = connect(self._db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO valuations (id, user_id, stock_name, current_price, "
                    "timestamp, payload) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.user_id,
                        record.stock_name,
                        record.current_price,
                        record.timestamp,
                        json.dumps(record.valuations_to_dict()),
                    ),
                )
        finally:
            conn.close()

    def _fetch_row(self, record_id: str) -> Any:
        conn = connect(self._db_path)
        try:
            return conn.execute(
                "SELECT id, user_id, stock_name, current_price, timestamp, payload "
                "FROM valuations WHERE id = ?",
                (record_id,),
            ).fetchone()
        finally:
            conn.close()

    @staticmethod
    def _decode_row(row: Any) -> CompanyValuationRecord:
        doc = _normalize_document({
            "id": row["id"],
            "user_id": row["user_id"],
            "stock_name": row["stock_name"],
            "current_price": row["current_price"],
            "timestamp": row["timestamp"],
            "valuations": json.loads(row["payload"]),
        })
        return CompanyValuationRecord.from_dict(doc)
