"""
Assessment Frameworks
=====================

A framework is the versioned definition of every section (module) and
question used by one assessment type.  Sections are conditionally
activated by :mod:`complio.module_activation`; this module only knows how
to order them, drop the inactive or empty ones, and measure how much of
the active part of the questionnaire has been answered.

The unified framework shipped in ``complio/data/unified_framework.json``
covers DPIA, TIA, AI Act, vendor, cybersecurity and LIA modules behind a
short triage section.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from complio.errors import ValidationError

QUESTION_TYPES = ("single_select", "multi_select", "text", "long_text")
OPTION_SOURCES = ("static", "list")

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_FRAMEWORK_PATH = DATA_DIR / "unified_framework.json"


def is_empty_answer(value: Any) -> bool:
    """Return True for absent answers: None, blank strings and empty lists."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


@dataclass
class Question:
    """A single question within a section."""
    id: str
    text: str
    type: str = "single_select"
    options: List[str] = field(default_factory=list)
    option_source: str = "static"
    help_text: str = ""
    legal_basis: str = ""
    display_order: int = 0

    def __post_init__(self):
        if self.type not in QUESTION_TYPES:
            raise ValidationError(f"Question {self.id} has unknown type '{self.type}'")
        if self.option_source not in OPTION_SOURCES:
            raise ValidationError(f"Question {self.id} has unknown option source '{self.option_source}'")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            type=data.get("type", "single_select"),
            options=list(data.get("options") or []),
            option_source=data.get("option_source", "static"),
            help_text=data.get("help_text", ""),
            legal_basis=data.get("legal_basis", ""),
            display_order=int(data.get("display_order", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type,
            "options": list(self.options),
            "option_source": self.option_source,
            "help_text": self.help_text,
            "legal_basis": self.legal_basis,
            "display_order": self.display_order,
        }


@dataclass
class Section:
    """A module of questions.  ``trigger_condition`` is a label only."""
    id: str
    title: str
    layer: str = ""
    trigger_condition: str = ""
    display_order: int = 0
    questions: List[Question] = field(default_factory=list)

    def __post_init__(self):
        self.questions = sorted(self.questions, key=lambda q: q.display_order)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Section":
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            layer=data.get("layer", ""),
            trigger_condition=data.get("trigger_condition", ""),
            display_order=int(data.get("display_order", 0)),
            questions=[Question.from_dict(q) for q in data.get("questions") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "layer": self.layer,
            "trigger_condition": self.trigger_condition,
            "display_order": self.display_order,
            "questions": [q.to_dict() for q in self.questions],
        }


@dataclass
class Framework:
    """An immutable (per version) questionnaire definition."""
    id: str
    slug: str
    name: str
    version: str = "1.0"
    description: str = ""
    is_system: bool = False
    sections: List[Section] = field(default_factory=list)

    def __post_init__(self):
        self.sections = sorted(self.sections, key=lambda s: s.display_order)
        seen: Dict[str, str] = {}
        for section in self.sections:
            for question in section.questions:
                if question.id in seen:
                    raise ValidationError(
                        f"Question id '{question.id}' appears in both '{seen[question.id]}' and '{section.id}'",
                        {"question_id": question.id},
                    )
                seen[question.id] = section.id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Framework":
        sections = data.get("sections") or []
        if isinstance(sections, str):
            sections = json.loads(sections)
        return cls(
            id=data.get("id") or data["slug"],
            slug=data["slug"],
            name=data.get("name", data["slug"]),
            version=str(data.get("version", "1.0")),
            description=data.get("description", ""),
            is_system=bool(data.get("is_system", False)),
            sections=[Section.from_dict(s) for s in sections],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "is_system": self.is_system,
            "sections": [s.to_dict() for s in self.sections],
        }

    def question_ids(self) -> set:
        return {q.id for s in self.sections for q in s.questions}

    def get_question(self, question_id: str) -> Optional[Question]:
        for section in self.sections:
            for question in section.questions:
                if question.id == question_id:
                    return question
        return None

    def get_section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def active_sections(self, active_modules: Iterable[str]) -> List[Section]:
        """Sections to show, in the framework's own display order.

        A section is shown only when its id is in ``active_modules`` and it
        has at least one question.
        """
        active = set(active_modules)
        return [s for s in self.sections if s.id in active and s.questions]

    def active_questions(self, active_modules: Iterable[str]) -> List[Question]:
        return [q for s in self.active_sections(active_modules) for q in s.questions]

    def unanswered_questions(self, responses: Dict[str, Any], active_modules: Iterable[str]) -> List[Question]:
        """Questions in active sections without an answer.

        Completing with unanswered questions is allowed; callers use this
        list to warn the user.
        """
        return [q for q in self.active_questions(active_modules) if is_empty_answer(responses.get(q.id))]

    def completion_percentage(self, responses: Dict[str, Any], active_modules: Iterable[str]) -> float:
        """Share of active questions that have an answer, 0-100.

        Answers kept for deactivated sections are not counted.
        """
        questions = self.active_questions(active_modules)
        if not questions:
            return 0.0
        answered = sum(1 for q in questions if not is_empty_answer(responses.get(q.id)))
        return round(answered / len(questions) * 100, 1)


def options_for(question: Question, option_list: Optional[Sequence[Dict[str, Any]]] = None) -> List[str]:
    """Permitted option labels for a question.

    Questions sourced from an editable option list use the list entries
    (in display order) when any exist, and fall back to their static
    options otherwise.
    """
    if question.option_source == "list" and option_list:
        entries = sorted(option_list, key=lambda e: e.get("display_order", 0))
        return [e["label"] for e in entries]
    return list(question.options)


def load_framework(path: Optional[Path] = None) -> Framework:
    """Load a framework definition from a JSON file."""
    path = Path(path) if path else DEFAULT_FRAMEWORK_PATH
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Framework.from_dict(data)
