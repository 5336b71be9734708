"""
Linked-Record Ledger
====================

An append-only trail of every downstream record (action item, system,
processing activity) spawned from an assessment.  The ledger is
independent of the single-valued ``linked_system_id``/``linked_pa_id``
fields: those cap creation at one per type, while the ledger records what
was created and when.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse

from complio.errors import ValidationError
from complio.store import RecordStore, utcnow

logger = logging.getLogger(__name__)

RECORD_TYPES = ("action_item", "system", "processing_activity")


@dataclass(frozen=True)
class LedgerEntry:
    record_type: str
    record_id: str
    title: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            record_type=data["type"],
            record_id=data["id"],
            title=data.get("title", ""),
            created_at=data.get("created_at", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Stored shape: {"type", "id", "title", "created_at"}
        return {
            "type": self.record_type,
            "id": self.record_id,
            "title": self.title,
            "created_at": self.created_at,
        }


class LinkedRecordLedger:
    """Append/list access to an assessment's ledger through the store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def append(self, assessment_id: str, record_type: str, record_id: str, title: str) -> LedgerEntry:
        if record_type not in RECORD_TYPES:
            raise ValidationError(f"Unknown linked record type: {record_type}")
        entry = LedgerEntry(
            record_type=record_type,
            record_id=record_id,
            title=title,
            created_at=utcnow(),
        )
        self.store.append_ledger_entry(assessment_id, entry.to_dict())
        logger.info("Ledger %s: %s %s", assessment_id, record_type, record_id)
        return entry

    def list(self, assessment_id: str, record_type: Optional[str] = None) -> List[LedgerEntry]:
        """Entries in the order they were appended."""
        entries = [LedgerEntry.from_dict(e) for e in self.store.list_ledger_entries(assessment_id)]
        if record_type is not None:
            entries = [e for e in entries if e.record_type == record_type]
        return entries

    def latest(self, assessment_id: str) -> Optional[LedgerEntry]:
        entries = self.list(assessment_id)
        if not entries:
            return None
        # Ties go to the later append
        _, entry = max(enumerate(entries), key=lambda pair: (isoparse(pair[1].created_at), pair[0]))
        return entry
