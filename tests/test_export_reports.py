"""
complio - Tests for report exports and the processing inventory
"""

import io

import pytest
from openpyxl import load_workbook

from complio.export_reports import (
    REGISTER_COLUMNS,
    assessments_to_dataframe,
    export_assessment_excel,
    export_assessment_pdf,
    export_register_excel,
    prepare_report_data,
)
from complio.processing_inventory import ROPA_COLUMNS, ProcessingActivity, ProcessingInventory


@pytest.fixture
def report_parts(controller, linked, ledger, completed_assessment):
    linked.create_action_item(completed_assessment.id, "Sign DPA")
    record = controller.get(completed_assessment.id)
    framework = controller.framework_for(record)
    risk = controller.preview_risk(record.id, record.responses)
    return record, framework, risk, ledger.list(record.id)


class TestReportData:

    def test_only_active_sections(self, report_parts):
        data = prepare_report_data(*report_parts)
        section_ids = [s["id"] for s in data["sections"]]
        assert section_ids[:3] == ["entry", "common_nucleus", "dpia"]
        assert "tia" not in section_ids
        assert "vendor_general" in section_ids

    def test_answers_formatted(self, report_parts):
        data = prepare_report_data(*report_parts)
        dpia = next(s for s in data["sections"] if s["id"] == "dpia")
        dp1 = next(q for q in dpia["questions"] if q["id"] == "DP.1")
        assert dp1["answer"] == "Full Name, Email"

    def test_risk_and_ledger(self, report_parts):
        data = prepare_report_data(*report_parts)
        assert data["risk_score"] == 20
        assert [f["question_id"] for f in data["factors"]] == ["E2"]
        assert data["linked_records"][0]["title"] == "Sign DPA"


class TestExports:

    def test_pdf(self, report_parts):
        pdf = export_assessment_pdf(*report_parts)
        assert pdf.startswith(b"%PDF")

    def test_pdf_escapes_markup(self, controller, framework):
        record = controller.create("unified-v1", "R&D <pilot>")
        controller.complete(record.id, {"E1": "Uses <b> & friends"})
        pdf = export_assessment_pdf(controller.get(record.id), framework)
        assert pdf.startswith(b"%PDF")

    def test_excel_sheets(self, report_parts):
        wb = load_workbook(io.BytesIO(export_assessment_excel(*report_parts)))
        assert wb.sheetnames == ["Responses", "Risk Factors", "Linked Records"]
        assert wb["Responses"]["A1"].value == "Section"
        assert wb["Linked Records"]["C2"].value == "Sign DPA"

    def test_register(self, controller, completed_assessment, make_assessment):
        make_assessment("Draft one")
        records = controller.list_assessments()
        df = assessments_to_dataframe(records)
        assert list(df.columns) == REGISTER_COLUMNS
        assert len(df) == 2
        wb = load_workbook(io.BytesIO(export_register_excel(records)))
        ws = wb["Assessments"]
        assert [c.value for c in ws[1]] == REGISTER_COLUMNS
        assert ws[1][0].font.bold

    def test_empty_register(self):
        assert list(assessments_to_dataframe([]).columns) == REGISTER_COLUMNS


class TestProcessingInventory:

    def test_dataframe(self):
        inventory = ProcessingInventory()
        inventory.add_activity(ProcessingActivity(
            id="p1",
            activity="Payroll",
            function="HR",
            legal_basis=["Contract", "Legal Obligation"],
            transfer=True,
            transfer_countries=["Canada"],
            assessment_id="a1",
        ))
        df = inventory.to_dataframe()
        assert list(df.columns) == ROPA_COLUMNS
        row = df.iloc[0]
        assert row["Legal Basis"] == "Contract, Legal Obligation"
        assert row["International Transfer"] == "Yes"
        assert [a.id for a in inventory.derived_from("a1")] == ["p1"]

    def test_empty_inventory_has_columns(self):
        assert list(ProcessingInventory().to_dataframe().columns) == ROPA_COLUMNS

    def test_excel(self, linked, store, completed_assessment):
        linked.create_processing_activity(completed_assessment.id)
        inventory = ProcessingInventory(store.list_processing_activities())
        wb = load_workbook(io.BytesIO(inventory.to_excel()))
        ws = wb["Processing Inventory"]
        assert ws["B2"].value == "CRM rollout"
        assert ws["A1"].font.bold
