"""
Record types shared by the store, the lifecycle controller and the API.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from complio.module_activation import BASE_MODULES


class AssessmentStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VALIDATED = "validated"
    ARCHIVED = "archived"


ACTION_PRIORITIES = ("critical", "high", "medium", "low")
ACTION_STATUSES = ("pending", "in_progress", "completed")

# Columns that some deployments do not have; see the validation fallback
VALIDATION_COLUMNS = ("validated_at", "validated_by")


def _from_dict(cls, data: Dict[str, Any]):
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Actor:
    """The user performing an action.  Authentication happens upstream."""
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class AssessmentRecord:
    """An assessment instance.  Never deleted; archived instead."""
    id: str
    framework_id: str
    title: str
    status: str = AssessmentStatus.DRAFT.value
    responses: Dict[str, Any] = field(default_factory=dict)
    activated_modules: List[str] = field(default_factory=lambda: list(BASE_MODULES))
    risk_score: Optional[int] = None
    risk_classification: Optional[str] = None
    entity_id: Optional[str] = None
    linked_system_id: Optional[str] = None
    linked_pa_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    sort_order: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    validated_at: Optional[str] = None
    validated_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentRecord":
        record = _from_dict(cls, data)
        record.responses = dict(record.responses or {})
        record.activated_modules = list(record.activated_modules or BASE_MODULES)
        record.metadata = dict(record.metadata or {})
        return record

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def effective_validated_by(self) -> Optional[str]:
        """Validator, read from the column or from the metadata fallback."""
        return self.validated_by or self.metadata.get("validated_by")

    @property
    def effective_validated_at(self) -> Optional[str]:
        return self.validated_at or self.metadata.get("validated_at")


@dataclass
class ActionItem:
    id: str
    assessment_id: Optional[str]
    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "pending"
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionItem":
        return _from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemRecord:
    """An IT system holding personal data."""
    id: str
    name: str
    vendor: Optional[str] = None
    description: str = ""
    personal_data: bool = True
    data_types: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemRecord":
        return _from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
