"""
complio - Tests for the assessment lifecycle
"""

import logging

import pytest

from complio.errors import (
    CompletionError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    TransitionError,
    ValidationError,
)
from complio.lifecycle import AssessmentLifecycleController
from complio.records import Actor
from complio.risk_scoring import score
from complio.store import MemoryStore

from tests.conftest import FRAMEWORK_ID


class TestCreate:

    def test_create_draft_with_base_modules(self, controller):
        record = controller.create(FRAMEWORK_ID, "  Payroll  ", {"entity_id": "ent-1"})
        assert record.status == "draft"
        assert record.title == "Payroll"
        assert record.responses == {}
        assert record.activated_modules == ["entry", "common_nucleus"]
        assert record.entity_id == "ent-1"
        assert record.risk_score is None

    @pytest.mark.parametrize("framework_id,title", [("", "Title"), (FRAMEWORK_ID, ""), (FRAMEWORK_ID, "   ")])
    def test_missing_fields_rejected(self, controller, store, framework_id, title):
        with pytest.raises(ValidationError):
            controller.create(framework_id, title)
        assert store.list_assessments() == []

    def test_unknown_framework_rejected(self, controller):
        with pytest.raises(NotFoundError):
            controller.create("nope", "Title")


class TestSaveResponses:

    def test_save_moves_to_in_progress(self, controller, make_assessment):
        record = make_assessment()
        saved = controller.save_responses(record.id, {"E2": "Yes", "E4": "Yes"})
        assert saved.status == "in_progress"
        assert "dpia" in saved.activated_modules
        assert "ai_scope_classification" in saved.activated_modules
        assert saved.risk_score is None

    def test_repeated_identical_save_writes_nothing(self, controller, make_assessment):
        record = make_assessment()
        first = controller.save_responses(record.id, {"E2": "Yes"})
        second = controller.save_responses(record.id, {"E2": "Yes"})
        assert second.updated_at == first.updated_at

    def test_answers_for_deactivated_module_are_kept(self, controller, make_assessment):
        record = make_assessment()
        controller.save_responses(record.id, {"E2": "Yes", "DP.1": ["Email"]})
        saved = controller.save_responses(record.id, {"E2": "No", "DP.1": ["Email"]})
        assert "dpia" not in saved.activated_modules
        assert saved.responses["DP.1"] == ["Email"]

    def test_cannot_save_completed(self, controller, completed_assessment):
        with pytest.raises(TransitionError):
            controller.save_responses(completed_assessment.id, {"E2": "No"})


class TestComplete:

    def test_complete_from_draft(self, controller, store, make_assessment):
        record = make_assessment()
        responses = {"E2": "Yes", "E4": "Yes", "DP.10": "High"}
        result = controller.complete(record.id, responses)

        completed = controller.get(record.id)
        assert completed.status == "completed"
        assert completed.completed_at is not None
        expected = score(responses, store.get_risk_factors(), store.get_risk_thresholds())
        assert completed.risk_score == expected.score == result.risk.score
        assert completed.risk_classification == expected.classification

    def test_score_is_recomputed_from_stored_answers(self, controller, make_assessment):
        record = make_assessment()
        controller.save_responses(record.id, {"E2": "Yes"})
        result = controller.complete(record.id)
        assert result.assessment.risk_score == 20
        assert result.assessment.risk_classification == "low"

    def test_partial_answers_return_warnings(self, controller, make_assessment):
        record = make_assessment()
        result = controller.complete(record.id, {"E2": "Yes"})
        unanswered = {q.id for q in result.unanswered}
        assert "E1" in unanswered
        assert "DP.1" in unanswered
        assert "E2" not in unanswered

    def test_uses_current_risk_configuration(self, controller, store, make_assessment):
        factor = store.get_risk_factor("personal_data")
        factor.points = 45
        store.save_risk_factor(factor)
        record = make_assessment()
        result = controller.complete(record.id, {"E2": "Yes"})
        assert result.assessment.risk_score == 45
        assert result.assessment.risk_classification == "medium"

    def test_cannot_complete_twice(self, controller, completed_assessment):
        with pytest.raises(TransitionError):
            controller.complete(completed_assessment.id)

    def test_save_failure_aborts(self, controller, store, make_assessment, monkeypatch):
        record = make_assessment()

        def failing_update(assessment_id, fields):
            raise PersistenceError("connection lost")

        monkeypatch.setattr(store, "update_assessment", failing_update)
        with pytest.raises(PersistenceError) as excinfo:
            controller.complete(record.id, {"E2": "Yes"})
        assert not isinstance(excinfo.value, CompletionError)
        monkeypatch.undo()
        unchanged = controller.get(record.id)
        assert unchanged.status == "draft"
        assert unchanged.risk_score is None

    def test_status_write_failure_keeps_responses(self, controller, store, make_assessment, monkeypatch):
        record = make_assessment()
        original = store.update_assessment

        def fail_on_status(assessment_id, fields):
            if fields.get("status") == "completed":
                raise PersistenceError("timeout")
            return original(assessment_id, fields)

        monkeypatch.setattr(store, "update_assessment", fail_on_status)
        with pytest.raises(CompletionError):
            controller.complete(record.id, {"E2": "Yes"})
        monkeypatch.undo()

        saved = controller.get(record.id)
        assert saved.status == "in_progress"
        assert saved.responses == {"E2": "Yes"}
        assert saved.risk_score is None

        # Retrying succeeds
        assert controller.complete(record.id).assessment.status == "completed"

    def test_scoring_failure_after_save_is_completion_error(self, controller, store, make_assessment, monkeypatch):
        record = make_assessment()

        def corrupt_factors():
            raise ValidationError("Unknown condition kind: regex")

        monkeypatch.setattr(store, "get_risk_factors", corrupt_factors)
        with pytest.raises(CompletionError):
            controller.complete(record.id, {"E2": "Yes"})
        monkeypatch.undo()

        saved = controller.get(record.id)
        assert saved.status == "in_progress"
        assert saved.responses == {"E2": "Yes"}

    def test_audit_records_status_before_save(self, controller, make_assessment, caplog):
        record = make_assessment()
        with caplog.at_level(logging.INFO, logger="complio.audit"):
            controller.complete(record.id, {"E2": "Yes"})
        changes = [r.changes for r in caplog.records if r.name == "complio.audit" and r.changes]
        assert changes[-1]["status"] == {"old": "draft", "new": "completed"}

    def test_breakdown_is_stored_with_score(self, controller, make_assessment):
        record = make_assessment()
        controller.complete(record.id, {"E2": "Yes", "E4": "Yes"})
        stored = controller.get(record.id).metadata["risk_factors"]
        assert [f["question_id"] for f in stored] == ["E2", "E4"]
        assert sum(f["points"] for f in stored) == controller.get(record.id).risk_score


class TestRecordedRisk:

    def test_validated_keeps_breakdown_after_config_edit(self, controller, store, make_assessment, user):
        record = make_assessment()
        controller.complete(record.id, {"E2": "Yes", "E4": "Yes"})
        controller.validate(record.id, user)
        factor = store.get_risk_factor("ai_involvement")
        factor.is_active = False
        store.save_risk_factor(factor)

        validated = controller.get(record.id)
        risk = controller.recorded_risk(validated)
        assert risk.score == validated.risk_score
        assert sum(f.points for f in risk.factors) == validated.risk_score
        assert [f.question_id for f in risk.factors] == ["E2", "E4"]

    def test_in_progress_is_previewed(self, controller, make_assessment):
        record = make_assessment()
        saved = controller.save_responses(record.id, {"E2": "Yes"})
        assert controller.recorded_risk(saved).score == 20


class TestValidate:

    def test_validate_completed(self, controller, completed_assessment, user):
        validated = controller.validate(completed_assessment.id, user)
        assert validated.status == "validated"
        assert validated.validated_by == "user-1"
        assert validated.validated_at is not None

    def test_validate_from_draft_rejected(self, controller, make_assessment, user):
        record = make_assessment()
        with pytest.raises(TransitionError):
            controller.validate(record.id, user)
        assert controller.get(record.id).status == "draft"

    def test_validate_requires_actor(self, controller, completed_assessment):
        with pytest.raises(PermissionDeniedError):
            controller.validate(completed_assessment.id, None)
        assert controller.get(completed_assessment.id).status == "completed"

    def test_metadata_fallback_without_validation_columns(self, user, caplog):
        store = MemoryStore(validation_columns=False)
        store.seed_defaults()
        controller = AssessmentLifecycleController(store)
        record = controller.create(FRAMEWORK_ID, "Legacy schema")
        controller.complete(record.id, {"E2": "Yes"})

        with caplog.at_level(logging.WARNING, logger="complio.lifecycle"):
            validated = controller.validate(record.id, user)

        assert validated.status == "validated"
        assert validated.validated_by is None
        assert validated.metadata["validated_by"] == "user-1"
        assert validated.metadata["validated_at"]
        assert validated.effective_validated_by == "user-1"
        assert "metadata" in caplog.text


class TestReopenRedoArchiveCopy:

    def test_reopen_keeps_risk(self, controller, completed_assessment):
        reopened = controller.reopen(completed_assessment.id)
        assert reopened.status == "in_progress"
        assert reopened.completed_at is None
        assert reopened.risk_score == completed_assessment.risk_score
        assert reopened.risk_classification == completed_assessment.risk_classification

    def test_reopen_only_from_completed(self, controller, make_assessment):
        with pytest.raises(TransitionError):
            controller.reopen(make_assessment().id)

    def test_redo_creates_fresh_draft(self, controller, make_assessment, user):
        record = make_assessment("Vendor review", entity_id="e1", linked_system_id="s1", linked_pa_id="p1")
        controller.complete(record.id, {"E2": "Yes", "E4": "Yes"})
        original = controller.validate(record.id, user)

        redo = controller.redo(record.id)
        assert redo.id != record.id
        assert redo.status == "draft"
        assert redo.title == "Vendor review (Redo)"
        assert redo.responses == {}
        assert redo.activated_modules == ["entry", "common_nucleus"]
        assert redo.risk_score is None
        assert (redo.entity_id, redo.linked_system_id, redo.linked_pa_id) == ("e1", "s1", "p1")
        assert controller.get(record.id) == original

    def test_redo_only_from_validated(self, controller, completed_assessment):
        with pytest.raises(TransitionError):
            controller.redo(completed_assessment.id)

    def test_archive_hides_from_default_listing(self, controller, make_assessment):
        keep = make_assessment("Keep")
        gone = make_assessment("Gone")
        archived = controller.archive(gone.id)
        assert archived.status == "archived"
        assert [r.id for r in controller.list_assessments()] == [keep.id]
        assert {r.id for r in controller.list_assessments(include_archived=True)} == {keep.id, gone.id}
        assert controller.get(gone.id).title == "Gone"

    def test_archive_twice_rejected(self, controller, make_assessment):
        record = make_assessment()
        controller.archive(record.id)
        with pytest.raises(TransitionError):
            controller.archive(record.id)

    def test_copy_duplicates_answers_and_resets_risk(self, controller, completed_assessment):
        copy = controller.copy(completed_assessment.id)
        assert copy.status == "draft"
        assert copy.title == "CRM rollout (Copy)"
        assert copy.responses == completed_assessment.responses
        assert copy.activated_modules == completed_assessment.activated_modules
        assert copy.risk_score is None
        assert copy.completed_at is None
        assert copy.metadata == {}

    def test_copy_of_archived(self, controller, make_assessment):
        record = make_assessment()
        controller.archive(record.id)
        assert controller.copy(record.id).status == "draft"


class TestDetailsAndOrdering:

    def test_update_details(self, controller, make_assessment):
        record = make_assessment()
        updated = controller.update_details(record.id, "Renamed", {"linked_system_id": "sys-9"})
        assert updated.title == "Renamed"
        assert updated.linked_system_id == "sys-9"

    def test_update_details_of_archived_rejected(self, controller, make_assessment):
        record = make_assessment()
        controller.archive(record.id)
        with pytest.raises(TransitionError):
            controller.update_details(record.id, "Renamed")

    def test_reorder(self, controller, make_assessment):
        a = make_assessment("A")
        b = make_assessment("B")
        c = make_assessment("C")
        controller.reorder([{"id": c.id, "sort_order": 1}, {"id": a.id, "sort_order": 2}])
        ids = [r.id for r in controller.list_assessments()]
        assert ids == [c.id, a.id, b.id]

    def test_preview_risk_is_not_persisted(self, controller, make_assessment):
        record = make_assessment()
        preview = controller.preview_risk(record.id, {"E4": "Yes", "E8": "Yes"})
        assert preview.score == 40
        assert preview.classification == "medium"
        assert controller.get(record.id).risk_score is None
