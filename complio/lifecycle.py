"""
Assessment Lifecycle
====================

Owns the status of an assessment and orchestrates every transition::

    create ──> draft ──save──> in_progress ──complete──> completed ──validate──> validated
                 │                  ▲                       │                      │
                 └────complete──────┼───────────────────────┘                      │
                                    └──────────reopen───────┘                      │
                                                                     redo ──> new draft

    archive: any non-archived status ──> archived
    copy:    any status ──> new draft (answers kept)

The server is the source of truth for scoring: ``complete`` re-runs the
resolver and the scoring engine on the stored answers and the current
risk configuration before writing ``risk_score``/``risk_classification``.
Scores computed by a client are advisory only (see ``preview_risk``).

Concurrency is last-write-wins on a single record; no locking across
assessments is attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from complio.audit import log_audit
from complio.config import Settings
from complio.errors import (
    ComplioError,
    CompletionError,
    PermissionDeniedError,
    PersistenceError,
    TransitionError,
    ValidationError,
)
from complio.framework import Framework, Question
from complio.module_activation import BASE_MODULES, resolve
from complio.records import Actor, AssessmentRecord, AssessmentStatus
from complio.risk_scoring import FactorContribution, RiskResult, RiskThresholds, score
from complio.store import RecordStore, utcnow

logger = logging.getLogger(__name__)

S = AssessmentStatus

ALLOWED_FROM: Dict[str, FrozenSet[AssessmentStatus]] = {
    "save_responses": frozenset({S.DRAFT, S.IN_PROGRESS}),
    "update_details": frozenset({S.DRAFT, S.IN_PROGRESS, S.COMPLETED, S.VALIDATED}),
    "complete": frozenset({S.DRAFT, S.IN_PROGRESS}),
    "validate": frozenset({S.COMPLETED}),
    "reopen": frozenset({S.COMPLETED}),
    "redo": frozenset({S.VALIDATED}),
    "archive": frozenset({S.DRAFT, S.IN_PROGRESS, S.COMPLETED, S.VALIDATED}),
    "copy": frozenset(S),
}

LINK_FIELDS = ("entity_id", "linked_system_id", "linked_pa_id")
REDO_SUFFIX = " (Redo)"
COPY_SUFFIX = " (Copy)"
RISK_BREAKDOWN_KEY = "risk_factors"
SCORED_STATUSES = frozenset({S.COMPLETED.value, S.VALIDATED.value, S.ARCHIVED.value})


@dataclass
class CompletionResult:
    assessment: AssessmentRecord
    risk: RiskResult
    unanswered: List[Question] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment": self.assessment.to_dict(),
            "risk": self.risk.to_dict(),
            "unanswered": [q.id for q in self.unanswered],
        }


def _clean_links(links: Optional[Dict[str, Optional[str]]]) -> Dict[str, Optional[str]]:
    links = links or {}
    return {name: (links.get(name) or None) for name in LINK_FIELDS}


class AssessmentLifecycleController:
    """Status transitions for assessment instances."""

    def __init__(self, store: RecordStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings

    # -- helpers -----------------------------------------------------------

    def _require(self, action: str, record: AssessmentRecord) -> None:
        if AssessmentStatus(record.status) not in ALLOWED_FROM[action]:
            raise TransitionError(action, record.status)

    def framework_for(self, record: AssessmentRecord) -> Framework:
        return self.store.get_framework(record.framework_id)

    def thresholds(self) -> RiskThresholds:
        return self.store.risk_thresholds(self.settings)

    def resolve_modules(self, record: AssessmentRecord, responses: Dict[str, Any]) -> List[str]:
        return resolve(responses, known_questions=self.framework_for(record).question_ids())

    # -- queries -----------------------------------------------------------

    def get(self, assessment_id: str) -> AssessmentRecord:
        return self.store.get_assessment(assessment_id)

    def list_assessments(self, include_archived: bool = False) -> List[AssessmentRecord]:
        """Assessments by ``sort_order`` (unset last), newest first within."""
        records = self.store.list_assessments()
        if not include_archived:
            records = [r for r in records if r.status != S.ARCHIVED.value]
        records.sort(key=lambda r: r.created_at or "", reverse=True)
        records.sort(key=lambda r: (r.sort_order is None, r.sort_order or 0))
        return records

    def preview_risk(self, assessment_id: str, responses: Dict[str, Any]) -> RiskResult:
        """Advisory score for answers that have not been saved."""
        record = self.get(assessment_id)
        return score(
            responses,
            self.store.get_risk_factors(),
            self.thresholds(),
            known_questions=self.framework_for(record).question_ids(),
        )

    def recorded_risk(self, record: AssessmentRecord) -> RiskResult:
        """The breakdown stored when the assessment was completed.

        Completed and validated assessments report the score they were
        given, not one recomputed against a configuration edited since.
        Anything else is previewed from its current answers.
        """
        stored = record.metadata.get(RISK_BREAKDOWN_KEY)
        if record.status in SCORED_STATUSES and record.risk_score is not None and stored is not None:
            return RiskResult(
                score=record.risk_score,
                classification=record.risk_classification or "",
                factors=[FactorContribution.from_dict(f) for f in stored],
            )
        return self.preview_risk(record.id, record.responses)

    # -- transitions -------------------------------------------------------

    def create(
        self,
        framework_id: str,
        title: str,
        links: Optional[Dict[str, Optional[str]]] = None,
        actor: Optional[Actor] = None,
    ) -> AssessmentRecord:
        """Create a draft assessment seeded with the base modules."""
        title = (title or "").strip()
        if not framework_id:
            raise ValidationError("A framework is required", {"field": "framework_id"})
        if not title:
            raise ValidationError("A title is required", {"field": "title"})
        self.store.get_framework(framework_id)
        fields: Dict[str, Any] = {
            "framework_id": framework_id,
            "title": title,
            "status": S.DRAFT.value,
            "responses": {},
            "activated_modules": list(BASE_MODULES),
        }
        fields.update(_clean_links(links))
        record = self.store.insert_assessment(fields)
        log_audit("create", "assessment", record.id, actor.id if actor else None)
        logger.info("Created assessment %s (%s)", record.id, title)
        return record

    def update_details(
        self,
        assessment_id: str,
        title: str,
        links: Optional[Dict[str, Optional[str]]] = None,
        actor: Optional[Actor] = None,
    ) -> AssessmentRecord:
        title = (title or "").strip()
        if not title:
            raise ValidationError("A title is required", {"field": "title"})
        record = self.get(assessment_id)
        self._require("update_details", record)
        fields: Dict[str, Any] = {"title": title}
        fields.update(_clean_links(links))
        updated = self.store.update_assessment(assessment_id, fields)
        log_audit("update", "assessment", assessment_id, actor.id if actor else None)
        return updated

    def save_responses(self, assessment_id: str, responses: Dict[str, Any]) -> AssessmentRecord:
        """Persist a full response snapshot and its active modules.

        Moves the assessment to ``in_progress``.  Saving the same snapshot
        twice writes nothing the second time.  Risk fields are untouched.
        """
        record = self.get(assessment_id)
        self._require("save_responses", record)
        responses = dict(responses or {})
        modules = self.resolve_modules(record, responses)
        if (
            record.status == S.IN_PROGRESS.value
            and record.responses == responses
            and record.activated_modules == modules
        ):
            return record
        return self.store.update_assessment(assessment_id, {
            "responses": responses,
            "activated_modules": modules,
            "status": S.IN_PROGRESS.value,
        })

    def complete(
        self,
        assessment_id: str,
        responses: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
    ) -> CompletionResult:
        """Save, re-score server-side, then mark completed.

        Partially answered assessments may be completed; the unanswered
        active questions are returned so the caller can warn the user.

        Raises:
            PersistenceError: saving the answers failed; nothing changed.
            CompletionError: the answers were saved but scoring or the
                status write failed.  Re-invoking ``complete`` is safe.
        """
        record = self.get(assessment_id)
        self._require("complete", record)
        previous_status = record.status

        # 1. persist the latest answers; failure aborts the transition
        if responses is None:
            responses = record.responses
        record = self.save_responses(assessment_id, responses)

        # 2-3. recompute from stored answers and current config, then stamp
        try:
            framework = self.framework_for(record)
            risk = score(
                record.responses,
                self.store.get_risk_factors(),
                self.thresholds(),
                known_questions=framework.question_ids(),
            )
            metadata = dict(record.metadata)
            metadata[RISK_BREAKDOWN_KEY] = [f.to_dict() for f in risk.factors]
            now = utcnow()
            completed = self.store.update_assessment(assessment_id, {
                "status": S.COMPLETED.value,
                "risk_score": risk.score,
                "risk_classification": risk.classification,
                "completed_at": now,
                "metadata": metadata,
            })
        except ComplioError as e:
            logger.error("Completing assessment %s failed after save: %s", assessment_id, e.message)
            raise CompletionError(
                f"Responses were saved but the assessment could not be completed: {e.message}",
                {"assessment_id": assessment_id},
            ) from e

        unanswered = framework.unanswered_questions(completed.responses, completed.activated_modules)
        if unanswered:
            logger.info("Assessment %s completed with %d unanswered questions", assessment_id, len(unanswered))
        log_audit("update", "assessment", assessment_id, actor.id if actor else None,
                  {"status": {"old": previous_status, "new": S.COMPLETED.value}})
        return CompletionResult(assessment=completed, risk=risk, unanswered=unanswered)

    def validate(self, assessment_id: str, actor: Optional[Actor]) -> AssessmentRecord:
        """Mark a completed assessment as validated by ``actor``.

        Stores without validation columns get the validator and timestamp
        in the metadata bag instead; the data is never dropped.
        """
        if actor is None or not actor.id:
            raise PermissionDeniedError("Validation requires an authenticated user")
        record = self.get(assessment_id)
        self._require("validate", record)
        now = utcnow()
        try:
            validated = self.store.update_assessment(assessment_id, {
                "status": S.VALIDATED.value,
                "validated_by": actor.id,
                "validated_at": now,
            })
        except PersistenceError as e:
            logger.warning("Validation columns unavailable for %s (%s); using metadata", assessment_id, e.message)
            metadata = dict(self.get(assessment_id).metadata)
            metadata["validated_by"] = actor.id
            metadata["validated_at"] = now
            validated = self.store.update_assessment(assessment_id, {
                "status": S.VALIDATED.value,
                "metadata": metadata,
            })
        log_audit("update", "assessment", assessment_id, actor.id,
                  {"status": {"old": record.status, "new": S.VALIDATED.value}})
        return validated

    def reopen(self, assessment_id: str, actor: Optional[Actor] = None) -> AssessmentRecord:
        """Return a completed assessment to ``in_progress``.  Risk fields stay."""
        record = self.get(assessment_id)
        self._require("reopen", record)
        reopened = self.store.update_assessment(assessment_id, {
            "status": S.IN_PROGRESS.value,
            "completed_at": None,
        })
        log_audit("update", "assessment", assessment_id, actor.id if actor else None)
        return reopened

    def redo(self, assessment_id: str, actor: Optional[Actor] = None) -> AssessmentRecord:
        """Start a fresh draft from a validated assessment.

        Only the framework, the title (marked as a redo) and the three
        links carry over.  The validated original is not touched.
        """
        original = self.get(assessment_id)
        self._require("redo", original)
        fields: Dict[str, Any] = {
            "framework_id": original.framework_id,
            "title": f"{original.title}{REDO_SUFFIX}",
            "status": S.DRAFT.value,
            "responses": {},
            "activated_modules": list(BASE_MODULES),
        }
        fields.update({name: getattr(original, name) for name in LINK_FIELDS})
        record = self.store.insert_assessment(fields)
        log_audit("create", "assessment", record.id, actor.id if actor else None)
        logger.info("Redo of %s created as %s", assessment_id, record.id)
        return record

    def archive(self, assessment_id: str, actor: Optional[Actor] = None) -> AssessmentRecord:
        """Soft delete: flip the status, keep every field."""
        record = self.get(assessment_id)
        self._require("archive", record)
        archived = self.store.update_assessment(assessment_id, {"status": S.ARCHIVED.value})
        log_audit("delete", "assessment", assessment_id, actor.id if actor else None)
        return archived

    def copy(self, assessment_id: str, actor: Optional[Actor] = None) -> AssessmentRecord:
        """Fork a new draft carrying the answers, modules and links."""
        original = self.get(assessment_id)
        self._require("copy", original)
        fields: Dict[str, Any] = {
            "framework_id": original.framework_id,
            "title": f"{original.title}{COPY_SUFFIX}",
            "status": S.DRAFT.value,
            "responses": dict(original.responses),
            "activated_modules": list(original.activated_modules),
        }
        fields.update({name: getattr(original, name) for name in LINK_FIELDS})
        record = self.store.insert_assessment(fields)
        log_audit("create", "assessment", record.id, actor.id if actor else None)
        return record

    def reorder(self, order_map: List[Dict[str, Any]]) -> None:
        """Apply ``[{"id": ..., "sort_order": n}, ...]`` to the listing order."""
        for item in order_map:
            self.store.update_assessment(item["id"], {"sort_order": int(item["sort_order"])})
