"""
Wizard Session State
====================

Session-scoped state for stepping through an assessment questionnaire:
the working response snapshot, the current section, and whether editing
is allowed.  Everything derived (active modules, visible sections,
progress, the advisory risk preview) is recomputed from the snapshot by
the pure resolver and scoring functions, so the state object never goes
stale.  Edits are handed to an optional :class:`DebouncedSaver`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from complio.autosave import DebouncedSaver
from complio.errors import ValidationError
from complio.framework import Framework, Section, is_empty_answer
from complio.module_activation import resolve
from complio.records import AssessmentRecord, AssessmentStatus
from complio.risk_scoring import RiskFactor, RiskResult, RiskThresholds, score

EDITABLE_STATUSES = (AssessmentStatus.DRAFT.value, AssessmentStatus.IN_PROGRESS.value)


@dataclass
class SectionProgress:
    """Progress tracking for one visible section"""
    section_id: str
    title: str
    answered: int = 0
    total: int = 0

    @property
    def percentage(self) -> float:
        if not self.total:
            return 0.0
        return round(self.answered / self.total * 100, 1)

    @property
    def completed(self) -> bool:
        return self.total > 0 and self.answered == self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "title": self.title,
            "answered": self.answered,
            "total": self.total,
            "percentage": self.percentage,
            "completed": self.completed,
        }


@dataclass
class WizardState:
    assessment_id: str
    framework: Framework
    responses: Dict[str, Any] = field(default_factory=dict)
    section_index: int = 0
    read_only: bool = False
    saver: Optional[DebouncedSaver] = None

    @classmethod
    def from_record(
        cls,
        record: AssessmentRecord,
        framework: Framework,
        saver: Optional[DebouncedSaver] = None,
    ) -> "WizardState":
        return cls(
            assessment_id=record.id,
            framework=framework,
            responses=dict(record.responses),
            read_only=record.status not in EDITABLE_STATUSES,
            saver=saver,
        )

    # Derived state
    @property
    def active_modules(self) -> List[str]:
        return resolve(self.responses, known_questions=self.framework.question_ids())

    @property
    def sections(self) -> List[Section]:
        return self.framework.active_sections(self.active_modules)

    @property
    def current_section(self) -> Optional[Section]:
        sections = self.sections
        if not sections:
            return None
        return sections[min(self.section_index, len(sections) - 1)]

    @property
    def is_first(self) -> bool:
        return self.section_index == 0

    @property
    def is_last(self) -> bool:
        return self.section_index >= len(self.sections) - 1

    def _clamp(self) -> None:
        self.section_index = max(0, min(self.section_index, len(self.sections) - 1))

    # Navigation
    def next_section(self) -> Optional[Section]:
        self.section_index += 1
        self._clamp()
        return self.current_section

    def previous_section(self) -> Optional[Section]:
        self.section_index -= 1
        self._clamp()
        return self.current_section

    def go_to(self, section_id: str) -> Section:
        for index, section in enumerate(self.sections):
            if section.id == section_id:
                self.section_index = index
                return section
        raise ValidationError(f"Section {section_id} is not active", {"section_id": section_id})

    # Editing
    def set_answer(self, question_id: str, value: Any) -> None:
        """Record one answer.  An empty value clears it.

        Answers to questions in sections that later deactivate stay in the
        snapshot so reactivating the section brings them back.
        """
        if self.read_only:
            raise ValidationError("This assessment can no longer be edited", {"assessment_id": self.assessment_id})
        if self.framework.get_question(question_id) is None:
            raise ValidationError(f"Unknown question {question_id}", {"question_id": question_id})
        current = self.current_section
        if is_empty_answer(value):
            self.responses.pop(question_id, None)
        else:
            self.responses[question_id] = list(value) if isinstance(value, (list, tuple)) else value
        # Keep the user on the same section when earlier ones appear or vanish
        if current is not None:
            ids = [s.id for s in self.sections]
            if current.id in ids:
                self.section_index = ids.index(current.id)
        self._clamp()
        if self.saver is not None:
            self.saver.schedule(self.assessment_id, self.responses)

    # Progress
    def section_progress(self) -> List[SectionProgress]:
        progress = []
        for section in self.sections:
            answered = sum(1 for q in section.questions if not is_empty_answer(self.responses.get(q.id)))
            progress.append(SectionProgress(section.id, section.title, answered, len(section.questions)))
        return progress

    def completion_percentage(self) -> float:
        return self.framework.completion_percentage(self.responses, self.active_modules)

    def risk_preview(
        self,
        factors: Sequence[RiskFactor],
        thresholds: Optional[RiskThresholds] = None,
    ) -> RiskResult:
        """Advisory score for display; the server recomputes on completion."""
        return score(self.responses, factors, thresholds, known_questions=self.framework.question_ids())

    def to_dict(self) -> Dict[str, Any]:
        current = self.current_section
        return {
            "assessment_id": self.assessment_id,
            "responses": dict(self.responses),
            "active_modules": self.active_modules,
            "section_index": self.section_index,
            "current_section": current.id if current else None,
            "read_only": self.read_only,
            "completion_percentage": self.completion_percentage(),
            "sections": [p.to_dict() for p in self.section_progress()],
        }
