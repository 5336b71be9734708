"""
RoPA‑style Processing Inventory
===============================

Processing activities form the Record of Processing Activities (RoPA)
under GDPR Art.30.  Each entry captures the business function, the
activity, its purpose and legal bases, the data subjects and categories
involved, recipients, retention, and whether data leaves the EU/EEA.
Activities can be created by hand or spawned from a completed assessment;
the inventory exports to a pandas DataFrame or an Excel workbook.
"""

from __future__ import annotations

import io
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils.dataframe import dataframe_to_rows

ROPA_COLUMNS = [
    "Function",
    "Activity",
    "Purpose",
    "Legal Basis",
    "Data Subjects",
    "Data Categories",
    "Recipients",
    "Retention",
    "International Transfer",
    "Transfer Countries",
    "Role",
    "Source Assessment",
]


@dataclass
class ProcessingActivity:
    """Represents a single processing activity in the inventory."""
    id: str
    activity: str
    function: str = ""
    purpose: Optional[str] = None
    legal_basis: List[str] = field(default_factory=list)
    data_subjects: List[str] = field(default_factory=list)
    data_categories: List[str] = field(default_factory=list)
    recipients: Optional[str] = None
    retention_period: Optional[str] = None
    transfer: bool = False
    transfer_countries: List[str] = field(default_factory=list)
    controller_or_processor: str = "Controller"
    assessment_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingActivity":
        names = {f.name for f in fields(cls)}
        activity = cls(**{k: v for k, v in data.items() if k in names})
        activity.legal_basis = list(activity.legal_basis or [])
        activity.data_subjects = list(activity.data_subjects or [])
        activity.data_categories = list(activity.data_categories or [])
        activity.transfer_countries = list(activity.transfer_countries or [])
        return activity

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProcessingInventory:
    """A collection of processing activities ready for export."""

    def __init__(self, activities: Optional[List[ProcessingActivity]] = None) -> None:
        self.activities: List[ProcessingActivity] = list(activities or [])

    def add_activity(self, activity: ProcessingActivity) -> None:
        """Add a processing activity to the inventory."""
        self.activities.append(activity)

    def derived_from(self, assessment_id: str) -> List[ProcessingActivity]:
        return [a for a in self.activities if a.assessment_id == assessment_id]

    def to_dataframe(self) -> pd.DataFrame:
        """Return the inventory as a pandas DataFrame."""
        data = [
            {
                "Function": a.function,
                "Activity": a.activity,
                "Purpose": a.purpose or "",
                "Legal Basis": ", ".join(a.legal_basis),
                "Data Subjects": ", ".join(a.data_subjects),
                "Data Categories": ", ".join(a.data_categories),
                "Recipients": a.recipients or "",
                "Retention": a.retention_period or "",
                "International Transfer": "Yes" if a.transfer else "No",
                "Transfer Countries": ", ".join(a.transfer_countries),
                "Role": a.controller_or_processor,
                "Source Assessment": a.assessment_id or "",
            }
            for a in self.activities
        ]
        return pd.DataFrame(data, columns=ROPA_COLUMNS)

    def to_excel(self) -> bytes:
        """Export the inventory to an Excel file and return its bytes."""
        df = self.to_dataframe()
        wb = Workbook()
        ws = wb.active
        ws.title = "Processing Inventory"
        for row in dataframe_to_rows(df, index=False, header=True):
            ws.append(row)
        # Bold header
        for cell in ws[1]:
            cell.font = Font(bold=True)
        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        return buf.getvalue()
