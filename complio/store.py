"""
Record Store
============

The persistence collaborator used by the assessment engine.  All logical
operations (assessments, action items, systems, processing activities,
risk configuration, option lists, frameworks) are implemented once in
:class:`RecordStore` on top of two primitives, ``_load_table`` and
``_save_table``:

- :class:`MemoryStore` keeps tables in process memory (tests, demos).
- :class:`JsonFileStore` keeps one JSON document per table in a data
  directory, written atomically.

Every failure surfaces as :class:`~complio.errors.PersistenceError`, or
:class:`~complio.errors.NotFoundError` for missing rows, so callers can
report it and retry.

The linked-record ledger is stored in the assessment's ``metadata`` bag by
default (``metadata["linked_records"]``).  A store backed by a relational
database should override ``append_ledger_entry``/``list_ledger_entries``
with a child table keyed by assessment id.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from complio.config import Settings, get_settings
from complio.errors import NotFoundError, PersistenceError, ValidationError
from complio.framework import Framework, load_framework
from complio.processing_inventory import ProcessingActivity
from complio.records import (
    ActionItem,
    AssessmentRecord,
    SystemRecord,
    VALIDATION_COLUMNS,
)
from complio.risk_scoring import RiskFactor, RiskThresholds, load_risk_factors

logger = logging.getLogger(__name__)

TABLES = (
    "frameworks",
    "assessments",
    "action_items",
    "systems",
    "processing_activities",
    "risk_factors",
    "risk_thresholds",
    "option_lists",
)

ASSESSMENT_COLUMNS = frozenset(AssessmentRecord.__dataclass_fields__)
THRESHOLDS_ROW_ID = "default"


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def default_thresholds(settings: Optional[Settings] = None) -> RiskThresholds:
    """Thresholds from configuration, used until an admin saves a row."""
    settings = settings or get_settings()
    return RiskThresholds(
        high=settings.default_high_threshold,
        medium=settings.default_medium_threshold,
    )


def new_id() -> str:
    return str(uuid.uuid4())


class RecordStore:
    """Base class implementing every store operation over table primitives."""

    def __init__(self, validation_columns: bool = True) -> None:
        # False models a schema without validated_at/validated_by columns
        self.validation_columns = validation_columns
        self._lock = threading.RLock()

    # -- primitives --------------------------------------------------------

    def _load_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def _save_table(self, table: str, rows: Dict[str, Dict[str, Any]]) -> None:
        raise NotImplementedError

    def _get_row(self, table: str, row_id: str, kind: str) -> Dict[str, Any]:
        row = self._load_table(table).get(row_id)
        if row is None:
            raise NotFoundError(f"{kind} not found", {"id": row_id})
        return row

    def _delete_row(self, table: str, row_id: str, kind: str) -> None:
        with self._lock:
            rows = self._load_table(table)
            if rows.pop(row_id, None) is None:
                raise NotFoundError(f"{kind} not found", {"id": row_id})
            self._save_table(table, rows)

    def _insert_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._load_table(table)
            now = utcnow()
            row = dict(row)
            row.setdefault("id", new_id())
            row.setdefault("created_at", now)
            row["updated_at"] = now
            rows[row["id"]] = row
            self._save_table(table, rows)
            return row

    def _update_row(self, table: str, row_id: str, changes: Dict[str, Any], kind: str) -> Dict[str, Any]:
        with self._lock:
            rows = self._load_table(table)
            if row_id not in rows:
                raise NotFoundError(f"{kind} not found", {"id": row_id})
            row = rows[row_id]
            row.update(changes)
            row["updated_at"] = utcnow()
            self._save_table(table, rows)
            return row

    # -- frameworks --------------------------------------------------------

    def save_framework(self, framework: Framework) -> Framework:
        with self._lock:
            rows = self._load_table("frameworks")
            rows[framework.id] = framework.to_dict()
            self._save_table("frameworks", rows)
        return framework

    def get_framework(self, framework_id: str) -> Framework:
        return Framework.from_dict(self._get_row("frameworks", framework_id, "Framework"))

    def list_frameworks(self) -> List[Framework]:
        frameworks = [Framework.from_dict(r) for r in self._load_table("frameworks").values()]
        return sorted(frameworks, key=lambda f: f.name)

    # -- assessments -------------------------------------------------------

    def insert_assessment(self, fields: Dict[str, Any]) -> AssessmentRecord:
        self._check_assessment_columns(fields)
        return AssessmentRecord.from_dict(self._insert_row("assessments", fields))

    def get_assessment(self, assessment_id: str) -> AssessmentRecord:
        return AssessmentRecord.from_dict(self._get_row("assessments", assessment_id, "Assessment"))

    def list_assessments(self) -> List[AssessmentRecord]:
        return [AssessmentRecord.from_dict(r) for r in self._load_table("assessments").values()]

    def update_assessment(self, assessment_id: str, fields: Dict[str, Any]) -> AssessmentRecord:
        self._check_assessment_columns(fields)
        return AssessmentRecord.from_dict(self._update_row("assessments", assessment_id, fields, "Assessment"))

    def _check_assessment_columns(self, fields: Iterable[str]) -> None:
        for name in fields:
            if name not in ASSESSMENT_COLUMNS:
                raise PersistenceError(f'column "{name}" of relation "assessments" does not exist')
            if not self.validation_columns and name in VALIDATION_COLUMNS:
                raise PersistenceError(f'column "{name}" of relation "assessments" does not exist')

    # -- linked-record ledger ----------------------------------------------

    def append_ledger_entry(self, assessment_id: str, entry: Dict[str, Any]) -> None:
        """Append to ``metadata["linked_records"]`` (read-modify-write)."""
        with self._lock:
            record = self.get_assessment(assessment_id)
            metadata = dict(record.metadata)
            linked = list(metadata.get("linked_records") or [])
            linked.append(dict(entry))
            metadata["linked_records"] = linked
            self.update_assessment(assessment_id, {"metadata": metadata})

    def list_ledger_entries(self, assessment_id: str) -> List[Dict[str, Any]]:
        record = self.get_assessment(assessment_id)
        return [dict(e) for e in record.metadata.get("linked_records") or []]

    # -- action items ------------------------------------------------------

    def insert_action_item(self, fields: Dict[str, Any]) -> ActionItem:
        return ActionItem.from_dict(self._insert_row("action_items", fields))

    def get_action_item(self, action_id: str) -> ActionItem:
        return ActionItem.from_dict(self._get_row("action_items", action_id, "Action item"))

    def list_action_items(self, assessment_id: Optional[str] = None) -> List[ActionItem]:
        items = [ActionItem.from_dict(r) for r in self._load_table("action_items").values()]
        if assessment_id is not None:
            items = [i for i in items if i.assessment_id == assessment_id]
        return sorted(items, key=lambda i: i.created_at or "", reverse=True)

    def update_action_item(self, action_id: str, fields: Dict[str, Any]) -> ActionItem:
        return ActionItem.from_dict(self._update_row("action_items", action_id, fields, "Action item"))

    # -- systems -----------------------------------------------------------

    def insert_system(self, fields: Dict[str, Any]) -> SystemRecord:
        return SystemRecord.from_dict(self._insert_row("systems", fields))

    def get_system(self, system_id: str) -> SystemRecord:
        return SystemRecord.from_dict(self._get_row("systems", system_id, "System"))

    def delete_system(self, system_id: str) -> None:
        self._delete_row("systems", system_id, "System")

    def list_systems(self) -> List[SystemRecord]:
        systems = [SystemRecord.from_dict(r) for r in self._load_table("systems").values()]
        return sorted(systems, key=lambda s: s.name.lower())

    # -- processing activities ---------------------------------------------

    def insert_processing_activity(self, fields: Dict[str, Any]) -> ProcessingActivity:
        return ProcessingActivity.from_dict(self._insert_row("processing_activities", fields))

    def get_processing_activity(self, activity_id: str) -> ProcessingActivity:
        return ProcessingActivity.from_dict(
            self._get_row("processing_activities", activity_id, "Processing activity")
        )

    def delete_processing_activity(self, activity_id: str) -> None:
        self._delete_row("processing_activities", activity_id, "Processing activity")

    def list_processing_activities(self) -> List[ProcessingActivity]:
        activities = [ProcessingActivity.from_dict(r) for r in self._load_table("processing_activities").values()]
        return sorted(activities, key=lambda a: (a.function, a.activity))

    # -- risk configuration ------------------------------------------------

    def get_risk_factors(self) -> List[RiskFactor]:
        factors = [RiskFactor.from_dict(r) for r in self._load_table("risk_factors").values()]
        return sorted(factors, key=lambda f: f.display_order)

    def get_risk_factor(self, factor_id: str) -> RiskFactor:
        return RiskFactor.from_dict(self._get_row("risk_factors", factor_id, "Risk factor"))

    def save_risk_factor(self, factor: RiskFactor) -> RiskFactor:
        with self._lock:
            rows = self._load_table("risk_factors")
            row = factor.to_dict()
            row["id"] = factor.factor_id
            row["updated_at"] = utcnow()
            rows[factor.factor_id] = row
            self._save_table("risk_factors", rows)
        return factor

    def get_risk_thresholds(self) -> Optional[RiskThresholds]:
        row = self._load_table("risk_thresholds").get(THRESHOLDS_ROW_ID)
        return RiskThresholds.from_dict(row) if row else None

    def risk_thresholds(self, settings: Optional[Settings] = None) -> RiskThresholds:
        return self.get_risk_thresholds() or default_thresholds(settings)

    def save_risk_thresholds(self, thresholds: RiskThresholds) -> RiskThresholds:
        with self._lock:
            rows = self._load_table("risk_thresholds")
            row = thresholds.to_dict()
            row["id"] = THRESHOLDS_ROW_ID
            row["updated_at"] = utcnow()
            rows[THRESHOLDS_ROW_ID] = row
            self._save_table("risk_thresholds", rows)
        return thresholds

    # -- option lists ------------------------------------------------------

    def get_option_list(self, question_id: str) -> List[Dict[str, Any]]:
        entries = [dict(r) for r in self._load_table("option_lists").values() if r["question_id"] == question_id]
        return sorted(entries, key=lambda e: e["display_order"])

    def add_option(self, question_id: str, label: str, is_default: bool = False) -> Dict[str, Any]:
        label = (label or "").strip()
        if not label:
            raise ValidationError("Option label is required")
        with self._lock:
            existing = self.get_option_list(question_id)
            next_order = existing[-1]["display_order"] + 1 if existing else 1
            return self._insert_row("option_lists", {
                "question_id": question_id,
                "label": label,
                "display_order": next_order,
                "is_default": is_default,
            })

    def update_option(self, option_id: str, label: str) -> Dict[str, Any]:
        label = (label or "").strip()
        if not label:
            raise ValidationError("Option label is required")
        return self._update_row("option_lists", option_id, {"label": label}, "Option")

    def delete_option(self, option_id: str) -> None:
        self._delete_row("option_lists", option_id, "Option")

    # -- seeding -----------------------------------------------------------

    def seed_defaults(
        self,
        framework: Optional[Framework] = None,
        factors: Optional[List[RiskFactor]] = None,
        thresholds: Optional[RiskThresholds] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Install the packaged framework, factors and thresholds if absent."""
        framework = framework or load_framework()
        if framework.id not in self._load_table("frameworks"):
            self.save_framework(framework)
            logger.info("Seeded framework %s", framework.slug)
        if not self._load_table("risk_factors"):
            for factor in factors or load_risk_factors():
                self.save_risk_factor(factor)
            logger.info("Seeded default risk factors")
        if self.get_risk_thresholds() is None:
            self.save_risk_thresholds(thresholds or default_thresholds(settings))
        for question in (q for s in framework.sections for q in s.questions):
            if question.option_source == "list" and not self.get_option_list(question.id):
                for label in question.options:
                    self.add_option(question.id, label, is_default=True)


class MemoryStore(RecordStore):
    """Tables held in memory.  Rows are copied in and out."""

    def __init__(self, validation_columns: bool = True) -> None:
        super().__init__(validation_columns=validation_columns)
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in TABLES}

    def _load_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._tables[table])

    def _save_table(self, table: str, rows: Dict[str, Dict[str, Any]]) -> None:
        self._tables[table] = copy.deepcopy(rows)


class JsonFileStore(RecordStore):
    """One JSON file per table under ``storage_dir``."""

    def __init__(self, storage_dir: str = "data", validation_columns: bool = True) -> None:
        super().__init__(validation_columns=validation_columns)
        self.storage_dir = Path(storage_dir)
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            # Create .gitignore to prevent data files from being committed
            gitignore_path = self.storage_dir / ".gitignore"
            if not gitignore_path.exists():
                gitignore_path.write_text("*\n!.gitignore\n")
        except OSError as e:
            raise PersistenceError(f"Cannot use storage directory {self.storage_dir}: {e}") from e

    def _table_path(self, table: str) -> Path:
        if table not in TABLES:
            raise PersistenceError(f"Unknown table: {table}")
        return self.storage_dir / f"{table}.json"

    def _load_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        file_path = self._table_path(table)
        if not file_path.exists():
            return {}
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read %s: %s", file_path, e)
            raise PersistenceError(f"Failed to read {table}") from e

    def _save_table(self, table: str, rows: Dict[str, Dict[str, Any]]) -> None:
        file_path = self._table_path(table)
        tmp_path = file_path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, file_path)
        except (OSError, TypeError) as e:
            logger.error("Failed to write %s: %s", file_path, e)
            raise PersistenceError(f"Failed to write {table}") from e


# Global store instance
_store: Optional[RecordStore] = None


def get_store(storage_dir: Optional[str] = None, settings: Optional[Settings] = None) -> RecordStore:
    """Get global store instance, seeded with the packaged defaults."""
    global _store
    if _store is None:
        settings = settings or get_settings()
        _store = JsonFileStore(storage_dir or settings.data_dir)
        _store.seed_defaults(settings=settings)
    return _store
