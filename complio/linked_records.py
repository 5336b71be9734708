"""
Linked Records
==============

Creates the downstream records spawned from a finished assessment:

- **Action items**: any number per assessment.
- **System record**: at most one, capped by ``linked_system_id``.
- **Processing activity**: at most one, capped by ``linked_pa_id``.

Each creation is appended to the assessment's ledger.  Fan-out is only
offered once an assessment is ``completed`` or ``validated``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from dateutil.parser import isoparse

from complio.audit import log_audit
from complio.errors import ComplioError, LinkedRecordExistsError, TransitionError, ValidationError
from complio.ledger import LinkedRecordLedger
from complio.processing_inventory import ProcessingActivity
from complio.records import (
    ACTION_PRIORITIES,
    ACTION_STATUSES,
    ActionItem,
    Actor,
    AssessmentRecord,
    AssessmentStatus,
    SystemRecord,
)
from complio.store import RecordStore, utcnow

logger = logging.getLogger(__name__)

FAN_OUT_STATUSES = (AssessmentStatus.COMPLETED.value, AssessmentStatus.VALIDATED.value)
ASSESSMENT_FUNCTION = "Assessment-derived"


def _text(value: Any) -> Optional[str]:
    """Render an answer as a single line, or None when unanswered."""
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or None
    value = str(value).strip()
    return value or None


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if str(v).strip()]
    return [str(value)] if str(value).strip() else []


def parse_due_date(value: Optional[str]) -> Optional[str]:
    """Normalise a due date to ``YYYY-MM-DD``."""
    if value is None or str(value).strip() == "":
        return None
    try:
        return isoparse(str(value).strip()).date().isoformat()
    except ValueError as e:
        raise ValidationError("Due date must be an ISO date", {"due_date": value}) from e


class LinkedRecordService:
    """Fan-out from an assessment to action items, systems and activities."""

    def __init__(self, store: RecordStore, ledger: Optional[LinkedRecordLedger] = None) -> None:
        self.store = store
        self.ledger = ledger or LinkedRecordLedger(store)

    def _fan_out_source(self, action: str, assessment_id: str) -> AssessmentRecord:
        record = self.store.get_assessment(assessment_id)
        if record.status not in FAN_OUT_STATUSES:
            raise TransitionError(
                action,
                record.status,
                f"Linked records can only be created from a completed or validated assessment (status '{record.status}')",
            )
        return record

    def _link(self, assessment_id: str, field: str, record_id: str, rollback: Callable[[str], None]) -> None:
        """Point the assessment at a new record, removing the record if that fails.

        The link field is what caps creation at one, so a record without it
        would be duplicated on retry.
        """
        try:
            self.store.update_assessment(assessment_id, {field: record_id})
        except ComplioError:
            logger.error("Linking %s=%s to assessment %s failed; removing record", field, record_id, assessment_id)
            rollback(record_id)
            raise

    # -- action items ------------------------------------------------------

    def create_action_item(
        self,
        assessment_id: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        due_date: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> ActionItem:
        """Create an action item.  There is no limit per assessment."""
        self._fan_out_source("create_action_item", assessment_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("A title is required", {"field": "title"})
        if priority not in ACTION_PRIORITIES:
            raise ValidationError(f"Unknown priority: {priority}", {"allowed": list(ACTION_PRIORITIES)})
        item = self.store.insert_action_item({
            "assessment_id": assessment_id,
            "title": title,
            "description": (description or "").strip(),
            "priority": priority,
            "status": "pending",
            "due_date": parse_due_date(due_date),
        })
        self.ledger.append(assessment_id, "action_item", item.id, item.title)
        log_audit("create", "action_item", item.id, actor.id if actor else None)
        return item

    def list_action_items(self, assessment_id: str) -> List[ActionItem]:
        return self.store.list_action_items(assessment_id)

    def update_action_status(self, action_id: str, status: str, actor: Optional[Actor] = None) -> ActionItem:
        if status not in ACTION_STATUSES:
            raise ValidationError(f"Unknown status: {status}", {"allowed": list(ACTION_STATUSES)})
        item = self.store.get_action_item(action_id)
        changes: Dict[str, Any] = {"status": status}
        if status == "completed":
            changes["completed_at"] = item.completed_at or utcnow()
        else:
            changes["completed_at"] = None
        updated = self.store.update_action_item(action_id, changes)
        log_audit("update", "action_item", action_id, actor.id if actor else None,
                  {"status": {"old": item.status, "new": status}})
        return updated

    # -- system record -----------------------------------------------------

    def system_prefill(self, record: AssessmentRecord) -> Dict[str, Any]:
        return {
            "name": _text(record.responses.get("VR.1")) or record.title,
            "vendor": _text(record.responses.get("VR.1")),
            "description": f"Created from assessment: {record.title}",
            "personal_data": True,
            "data_types": _text(record.responses.get("DP.1")),
        }

    def create_system_record(
        self,
        assessment_id: str,
        overrides: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
    ) -> SystemRecord:
        """Create the assessment's system record, once."""
        record = self._fan_out_source("create_system", assessment_id)
        if record.linked_system_id:
            raise LinkedRecordExistsError(
                "A system record has already been created for this assessment",
                {"linked_system_id": record.linked_system_id},
            )
        fields = self.system_prefill(record)
        fields.update({k: v for k, v in (overrides or {}).items() if v is not None})
        if not _text(fields.get("name")):
            raise ValidationError("A system name is required", {"field": "name"})
        system = self.store.insert_system(fields)
        self._link(assessment_id, "linked_system_id", system.id, self.store.delete_system)
        self.ledger.append(assessment_id, "system", system.id, system.name)
        log_audit("create", "system", system.id, actor.id if actor else None)
        logger.info("System %s created from assessment %s", system.id, assessment_id)
        return system

    # -- processing activity -----------------------------------------------

    def processing_activity_prefill(self, record: AssessmentRecord) -> Dict[str, Any]:
        return {
            "activity": record.title,
            "function": ASSESSMENT_FUNCTION,
            "purpose": _text(record.responses.get("CN.2")),
            "legal_basis": _as_list(record.responses.get("DP.3")),
            "data_categories": _as_list(record.responses.get("DP.1")),
            "transfer": "To other countries" in _as_list(record.responses.get("E3")),
            "assessment_id": record.id,
        }

    def create_processing_activity(
        self,
        assessment_id: str,
        overrides: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
    ) -> ProcessingActivity:
        """Create the assessment's processing activity, once."""
        record = self._fan_out_source("create_processing_activity", assessment_id)
        if record.linked_pa_id:
            raise LinkedRecordExistsError(
                "A processing activity has already been created for this assessment",
                {"linked_pa_id": record.linked_pa_id},
            )
        fields = self.processing_activity_prefill(record)
        fields.update({k: v for k, v in (overrides or {}).items() if v is not None})
        activity = self.store.insert_processing_activity(fields)
        self._link(assessment_id, "linked_pa_id", activity.id, self.store.delete_processing_activity)
        self.ledger.append(assessment_id, "processing_activity", activity.id, activity.activity)
        log_audit("create", "processing_activity", activity.id, actor.id if actor else None)
        logger.info("Processing activity %s created from assessment %s", activity.id, assessment_id)
        return activity
