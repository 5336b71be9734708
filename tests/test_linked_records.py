"""
complio - Tests for the linked-record ledger and fan-out
"""

import pytest

from complio.errors import (
    LinkedRecordExistsError,
    NotFoundError,
    PersistenceError,
    TransitionError,
    ValidationError,
)
from complio.ledger import LedgerEntry


class TestLedger:

    def test_append_and_list_in_order(self, ledger, make_assessment):
        record = make_assessment()
        ledger.append(record.id, "action_item", "a1", "First")
        ledger.append(record.id, "system", "s1", "CRM")
        entries = ledger.list(record.id)
        assert [(e.record_type, e.record_id) for e in entries] == [("action_item", "a1"), ("system", "s1")]
        assert all(e.created_at for e in entries)

    def test_filter_by_type(self, ledger, make_assessment):
        record = make_assessment()
        ledger.append(record.id, "action_item", "a1", "First")
        ledger.append(record.id, "system", "s1", "CRM")
        assert [e.record_id for e in ledger.list(record.id, "system")] == ["s1"]

    def test_stored_in_metadata_bag(self, ledger, store, make_assessment):
        record = make_assessment()
        ledger.append(record.id, "processing_activity", "p1", "Payroll")
        stored = store.get_assessment(record.id).metadata["linked_records"]
        assert stored[0]["type"] == "processing_activity"
        assert set(stored[0]) == {"type", "id", "title", "created_at"}

    def test_unknown_type_rejected(self, ledger, make_assessment):
        with pytest.raises(ValidationError):
            ledger.append(make_assessment().id, "invoice", "x", "X")

    def test_latest(self, ledger, make_assessment):
        record = make_assessment()
        assert ledger.latest(record.id) is None
        ledger.append(record.id, "action_item", "a1", "First")
        ledger.append(record.id, "action_item", "a2", "Second")
        assert ledger.latest(record.id).record_id == "a2"

    def test_entry_round_trip(self):
        entry = LedgerEntry("system", "s1", "CRM", "2026-01-01T00:00:00+00:00")
        assert LedgerEntry.from_dict(entry.to_dict()) == entry

    def test_unknown_assessment(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.list("missing")


class TestActionItems:

    def test_many_action_items_all_in_ledger(self, linked, ledger, completed_assessment):
        first = linked.create_action_item(completed_assessment.id, "Sign DPA", priority="high")
        second = linked.create_action_item(completed_assessment.id, "Update privacy notice")
        entries = ledger.list(completed_assessment.id, "action_item")
        assert {e.record_id for e in entries} == {first.id, second.id}
        assert len(linked.list_action_items(completed_assessment.id)) == 2

    def test_due_date_normalised(self, linked, completed_assessment):
        item = linked.create_action_item(completed_assessment.id, "Review", due_date="2026-03-01T09:30:00")
        assert item.due_date == "2026-03-01"

    def test_bad_due_date(self, linked, completed_assessment):
        with pytest.raises(ValidationError):
            linked.create_action_item(completed_assessment.id, "Review", due_date="next week")

    def test_bad_priority(self, linked, completed_assessment):
        with pytest.raises(ValidationError):
            linked.create_action_item(completed_assessment.id, "Review", priority="urgent")

    def test_not_offered_for_drafts(self, linked, make_assessment):
        with pytest.raises(TransitionError):
            linked.create_action_item(make_assessment().id, "Too early")

    def test_status_stamps_completion(self, linked, completed_assessment):
        item = linked.create_action_item(completed_assessment.id, "Review")
        assert item.status == "pending"
        done = linked.update_action_status(item.id, "completed")
        assert done.completed_at is not None
        reopened = linked.update_action_status(item.id, "in_progress")
        assert reopened.completed_at is None

    def test_unknown_status(self, linked, completed_assessment):
        item = linked.create_action_item(completed_assessment.id, "Review")
        with pytest.raises(ValidationError):
            linked.update_action_status(item.id, "blocked")


class TestSystemRecord:

    def test_prefilled_from_answers(self, linked, store, completed_assessment):
        system = linked.create_system_record(completed_assessment.id)
        assert system.name == "Acme Helpdesk"
        assert system.data_types == "Full Name, Email"
        assert store.get_assessment(completed_assessment.id).linked_system_id == system.id

    def test_name_falls_back_to_title(self, controller, linked, make_assessment):
        record = make_assessment("Data lake")
        controller.complete(record.id, {"E2": "No"})
        assert linked.create_system_record(record.id).name == "Data lake"

    def test_second_creation_rejected(self, linked, ledger, completed_assessment):
        linked.create_system_record(completed_assessment.id)
        with pytest.raises(LinkedRecordExistsError):
            linked.create_system_record(completed_assessment.id)
        assert len(ledger.list(completed_assessment.id, "system")) == 1

    def test_allowed_after_validation(self, controller, linked, completed_assessment, user):
        controller.validate(completed_assessment.id, user)
        assert linked.create_system_record(completed_assessment.id).id

    def test_failed_link_removes_system_and_retry_creates_one(self, linked, store, ledger, completed_assessment, monkeypatch):
        original = store.update_assessment
        failures = []

        def fail_link_once(assessment_id, fields):
            if "linked_system_id" in fields and not failures:
                failures.append(fields["linked_system_id"])
                raise PersistenceError("connection lost")
            return original(assessment_id, fields)

        monkeypatch.setattr(store, "update_assessment", fail_link_once)
        with pytest.raises(PersistenceError):
            linked.create_system_record(completed_assessment.id)
        assert store.list_systems() == []
        assert store.get_assessment(completed_assessment.id).linked_system_id is None

        system = linked.create_system_record(completed_assessment.id)
        assert [s.id for s in store.list_systems()] == [system.id]
        assert system.id != failures[0]
        assert [e.record_id for e in ledger.list(completed_assessment.id, "system")] == [system.id]


class TestProcessingActivity:

    def test_prefilled_from_answers(self, linked, store, completed_assessment):
        activity = linked.create_processing_activity(completed_assessment.id)
        assert activity.activity == "CRM rollout"
        assert activity.function == "Assessment-derived"
        assert activity.purpose == "Customer support ticket routing"
        assert activity.legal_basis == ["Contract", "Legitimate Interest"]
        assert activity.assessment_id == completed_assessment.id
        assert store.get_assessment(completed_assessment.id).linked_pa_id == activity.id

    def test_second_creation_rejected(self, linked, completed_assessment):
        linked.create_processing_activity(completed_assessment.id)
        with pytest.raises(LinkedRecordExistsError):
            linked.create_processing_activity(completed_assessment.id)

    def test_overrides(self, linked, completed_assessment):
        activity = linked.create_processing_activity(
            completed_assessment.id, {"retention_period": "6 years", "purpose": None}
        )
        assert activity.retention_period == "6 years"
        assert activity.purpose == "Customer support ticket routing"

    def test_redo_carries_link(self, controller, linked, completed_assessment, user):
        activity = linked.create_processing_activity(completed_assessment.id)
        controller.validate(completed_assessment.id, user)
        redo = controller.redo(completed_assessment.id)
        assert redo.linked_pa_id == activity.id

    def test_failed_link_removes_activity_and_retry_creates_one(self, linked, store, completed_assessment, monkeypatch):
        original = store.update_assessment
        calls = []

        def fail_link_once(assessment_id, fields):
            if "linked_pa_id" in fields:
                calls.append(fields["linked_pa_id"])
                if len(calls) == 1:
                    raise PersistenceError("timeout")
            return original(assessment_id, fields)

        monkeypatch.setattr(store, "update_assessment", fail_link_once)
        with pytest.raises(PersistenceError):
            linked.create_processing_activity(completed_assessment.id)
        assert store.list_processing_activities() == []

        activity = linked.create_processing_activity(completed_assessment.id)
        assert [a.id for a in store.list_processing_activities()] == [activity.id]
        assert store.get_assessment(completed_assessment.id).linked_pa_id == activity.id
