"""
complio package.

This package contains the adaptive assessment engine:
- module_activation: Which questionnaire sections apply to the current answers
- risk_scoring: Weighted, explainable risk score and classification
- lifecycle: Assessment status transitions (complete, validate, reopen, redo, archive, copy)
- ledger: Append-only trail of records spawned from an assessment

Supporting modules:
- framework: Questionnaire definitions (sections, questions, option lists)
- store: Persistence collaborator (in-memory and JSON file stores)
- linked_records: Action items, system records and processing activities from an assessment
- processing_inventory: RoPA-style processing inventory with Excel export
- wizard_session: Session-scoped wizard navigation and progress
- autosave: Debounced response saving
- risk_settings: Administrative edits to factors and thresholds
- export_reports: Assessment reports in PDF and Excel
"""

__version__ = "0.1.0"
