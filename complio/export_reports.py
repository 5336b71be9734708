"""
Export Reports module for complio.

Renders a single assessment as a PDF or Excel report (details, risk
score and factor breakdown, answers per active section, linked records)
and the assessment register as a pandas DataFrame or Excel workbook.
"""
from __future__ import annotations
import io
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

import pandas as pd

# PDF generation
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

# Excel generation
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.dataframe import dataframe_to_rows

from complio.framework import Framework, is_empty_answer
from complio.ledger import LedgerEntry
from complio.records import AssessmentRecord
from complio.risk_scoring import RiskResult

REGISTER_COLUMNS = [
    "Title",
    "Status",
    "Risk Score",
    "Classification",
    "Active Modules",
    "Created",
    "Completed",
    "Validated By",
    "Validated",
]

# Row fills keyed by classification/severity
LEVEL_FILLS = {
    "high": "FFE6E6",
    "medium": "FFF2E6",
    "low": "E6FFE6",
}


def format_answer(value: Any) -> str:
    if is_empty_answer(value):
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def _date(value: Optional[str]) -> str:
    return value[:10] if value else ""


def prepare_report_data(
    record: AssessmentRecord,
    framework: Framework,
    risk: Optional[RiskResult] = None,
    linked_records: Optional[Sequence[LedgerEntry]] = None,
) -> Dict[str, Any]:
    """Flatten an assessment into the structure both report formats use.

    Only sections that are active for the record are included; answers
    kept for inactive sections are left out of the report.
    """
    sections = []
    for section in framework.active_sections(record.activated_modules):
        rows = [
            {"id": q.id, "question": q.text, "answer": format_answer(record.responses.get(q.id))}
            for q in section.questions
        ]
        sections.append({"id": section.id, "title": section.title, "questions": rows})
    return {
        "title": record.title,
        "framework": framework.name,
        "status": record.status,
        "risk_score": record.risk_score,
        "risk_classification": record.risk_classification,
        "created_at": record.created_at,
        "completed_at": record.completed_at,
        "validated_by": record.effective_validated_by,
        "validated_at": record.effective_validated_at,
        "factors": [f.to_dict() for f in risk.factors] if risk else [],
        "sections": sections,
        "linked_records": [e.to_dict() for e in linked_records or []],
        "completion_percentage": framework.completion_percentage(record.responses, record.activated_modules),
    }


class AssessmentReportGenerator:
    """Generates assessment reports in PDF and Excel formats."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Set up custom styles for PDF generation."""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=20,
            spaceAfter=20,
            alignment=TA_CENTER,
            textColor=colors.HexColor('#2c3e50')
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=12,
            spaceAfter=6,
            textColor=colors.HexColor('#34495e')
        ))

        self.styles.add(ParagraphStyle(
            name='CustomBody',
            parent=self.styles['Normal'],
            fontSize=10,
            spaceAfter=6,
            alignment=TA_JUSTIFY
        ))

        self.styles.add(ParagraphStyle(
            name='Cell',
            parent=self.styles['Normal'],
            fontSize=9,
            leading=11,
        ))

    def _cell(self, text: Any) -> Paragraph:
        return Paragraph(escape(str(text)), self.styles['Cell'])

    def _grid_table(self, rows: List[List[Any]], col_widths: List[float], header_color: str = '#2c3e50') -> Table:
        table = Table(rows, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(header_color)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f8f9fa')]),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
            ('VALIGN', (0, 0), (-1, -1), 'TOP')
        ]))
        return table

    def generate_assessment_report_pdf(self, report: Dict[str, Any]) -> bytes:
        """Generate an assessment report in PDF format."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=72, leftMargin=72,
            topMargin=72, bottomMargin=18,
            title=report['title'],
        )

        story = []
        story.append(Paragraph(escape(report['title']), self.styles['CustomTitle']))
        story.append(Spacer(1, 20))

        score = report.get('risk_score')
        metadata = [
            ['Report Generated:', datetime.now().strftime('%Y-%m-%d %H:%M:%S')],
            ['Framework:', report.get('framework', '')],
            ['Status:', report.get('status', '').replace('_', ' ').title()],
            ['Risk Score:', f"{score}/100" if score is not None else 'Not scored'],
            ['Classification:', (report.get('risk_classification') or 'n/a').title()],
            ['Completion:', f"{report.get('completion_percentage', 0):.1f}%"],
            ['Completed:', _date(report.get('completed_at')) or '-'],
            ['Validated By:', report.get('validated_by') or '-'],
        ]
        metadata_table = Table(metadata, colWidths=[2*inch, 3.5*inch])
        metadata_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#f8f9fa')),
            ('TEXTCOLOR', (0, 0), (-1, -1), colors.black),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 1, colors.black)
        ]))
        story.append(metadata_table)
        story.append(Spacer(1, 20))

        story.append(Paragraph("Risk Factors", self.styles['CustomHeading']))
        factors = report.get('factors', [])
        if factors:
            rows = [['Factor', 'Points', 'Severity', 'Justification']]
            for factor in factors:
                rows.append([
                    self._cell(factor['label']),
                    str(factor['points']),
                    factor['severity'].title(),
                    self._cell(factor['reason']),
                ])
            story.append(self._grid_table(rows, [1.8*inch, 0.6*inch, 0.8*inch, 2.8*inch], '#3498db'))
        else:
            story.append(Paragraph("No risk factors were triggered.", self.styles['CustomBody']))

        for section in report.get('sections', []):
            story.append(Paragraph(escape(section['title']), self.styles['CustomHeading']))
            rows = [['ID', 'Question', 'Answer']]
            for q in section['questions']:
                rows.append([q['id'], self._cell(q['question']), self._cell(q['answer'] or '-')])
            story.append(self._grid_table(rows, [0.6*inch, 3*inch, 2.4*inch]))

        linked = report.get('linked_records', [])
        if linked:
            story.append(Paragraph("Linked Records", self.styles['CustomHeading']))
            rows = [['Type', 'Title', 'Created']]
            for entry in linked:
                rows.append([
                    entry['type'].replace('_', ' ').title(),
                    self._cell(entry['title']),
                    _date(entry['created_at']),
                ])
            story.append(self._grid_table(rows, [1.5*inch, 3.3*inch, 1.2*inch], '#27ae60'))

        doc.build(story)
        buffer.seek(0)
        return buffer.getvalue()

    def generate_assessment_excel(self, report: Dict[str, Any]) -> bytes:
        """Generate an Excel workbook with Responses, Risk Factors and Linked Records sheets."""
        wb = Workbook()
        wb.remove(wb.active)

        response_rows = [
            [section['title'], q['id'], q['question'], q['answer']]
            for section in report.get('sections', [])
            for q in section['questions']
        ]
        _write_sheet(wb, "Responses", ["Section", "ID", "Question", "Answer"], response_rows)

        factor_rows = [
            [f['label'], f['question_id'], f['points'], f['severity'], f['reason']]
            for f in report.get('factors', [])
        ]
        ws_risk = _write_sheet(wb, "Risk Factors", ["Factor", "Question", "Points", "Severity", "Justification"], factor_rows)
        for row in ws_risk.iter_rows(min_row=2, min_col=4, max_col=4):
            for cell in row:
                fill = LEVEL_FILLS.get(str(cell.value))
                if fill:
                    cell.fill = PatternFill(start_color=fill, end_color=fill, fill_type="solid")
        total_row = ws_risk.max_row + 2
        ws_risk.cell(row=total_row, column=1, value="Total Score").font = Font(bold=True)
        ws_risk.cell(row=total_row, column=3, value=report.get('risk_score'))
        ws_risk.cell(row=total_row, column=4, value=report.get('risk_classification'))

        linked_rows = [
            [e['type'], e['id'], e['title'], e['created_at']]
            for e in report.get('linked_records', [])
        ]
        _write_sheet(wb, "Linked Records", ["Type", "Record ID", "Title", "Created"], linked_rows)

        buffer = io.BytesIO()
        wb.save(buffer)
        buffer.seek(0)
        return buffer.getvalue()


def _write_sheet(wb: Workbook, title: str, headers: List[str], rows: List[List[Any]]):
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="2C3E50", end_color="2C3E50", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    data_alignment = Alignment(horizontal="left", vertical="top", wrap_text=True)
    border = Border(left=Side(style='thin'), right=Side(style='thin'),
                    top=Side(style='thin'), bottom=Side(style='thin'))

    ws = wb.create_sheet(title)
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = border
    for row_index, values in enumerate(rows, 2):
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row_index, column=col, value=value)
            cell.alignment = data_alignment
            cell.border = border

    # Auto-adjust column widths
    for column in ws.columns:
        max_length = max(len(str(cell.value)) for cell in column if cell.value is not None)
        ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 60)
    return ws


def assessments_to_dataframe(records: Sequence[AssessmentRecord]) -> pd.DataFrame:
    """The assessment register as a DataFrame."""
    data = [
        {
            "Title": r.title,
            "Status": r.status,
            "Risk Score": r.risk_score,
            "Classification": r.risk_classification or "",
            "Active Modules": ", ".join(r.activated_modules),
            "Created": _date(r.created_at),
            "Completed": _date(r.completed_at),
            "Validated By": r.effective_validated_by or "",
            "Validated": _date(r.effective_validated_at),
        }
        for r in records
    ]
    return pd.DataFrame(data, columns=REGISTER_COLUMNS)


# Convenience functions for easy integration
def export_assessment_pdf(
    record: AssessmentRecord,
    framework: Framework,
    risk: Optional[RiskResult] = None,
    linked_records: Optional[Sequence[LedgerEntry]] = None,
) -> bytes:
    """Export one assessment as PDF."""
    generator = AssessmentReportGenerator()
    return generator.generate_assessment_report_pdf(prepare_report_data(record, framework, risk, linked_records))


def export_assessment_excel(
    record: AssessmentRecord,
    framework: Framework,
    risk: Optional[RiskResult] = None,
    linked_records: Optional[Sequence[LedgerEntry]] = None,
) -> bytes:
    """Export one assessment as Excel."""
    generator = AssessmentReportGenerator()
    return generator.generate_assessment_excel(prepare_report_data(record, framework, risk, linked_records))


def export_register_excel(records: Sequence[AssessmentRecord]) -> bytes:
    """Export the assessment register as Excel."""
    df = assessments_to_dataframe(records)
    # Unscored rows come back as NaN; write them as empty cells
    df = df.astype(object).where(pd.notnull(df), None)
    wb = Workbook()
    ws = wb.active
    ws.title = "Assessments"
    for row in dataframe_to_rows(df, index=False, header=True):
        ws.append(row)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer.getvalue()
