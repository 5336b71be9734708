"""
Risk Scoring
============

Computes a weighted, explainable risk score from assessment answers.

Each active :class:`RiskFactor` names a source question, a condition and a
point value.  A factor whose condition holds contributes its points; the
total is the plain sum of contributions, capped at 100.  The score maps to
a ``high``/``medium``/``low`` classification through
:class:`RiskThresholds`, and the breakdown lists every contributing factor
in the configured display order so the result can be explained to a
reviewer.

Conditions are evaluated by small functions registered per condition kind
(``equals``, ``not_equals``, ``includes``, ``variable``).  Adding a new kind
means registering one more evaluator; the scoring loop does not change.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Collection, Dict, List, Optional, Sequence

from complio.errors import ValidationError
from complio.framework import DATA_DIR, is_empty_answer

logger = logging.getLogger(__name__)

SEVERITIES = ("high", "medium", "low")
CLASSIFICATIONS = ("high", "medium", "low")
MAX_SCORE = 100

# Points for "variable" factors, keyed by the self-assessed level
VARIABLE_POINTS: Dict[str, int] = {"Low": 5, "Medium": 15, "High": 25}
VARIABLE_SEVERITY: Dict[str, str] = {"Low": "low", "Medium": "medium", "High": "high"}
HIGHEST_LEVEL = "High"
HIGHEST_LEVEL_NOTE = "Consultation with supervisory authority required (Art.36)."

DEFAULT_FACTORS_PATH = DATA_DIR / "risk_factors.json"


@dataclass
class RiskFactor:
    """A configurable rule mapping one answer to a point contribution.

    ``points`` is ``None`` for ``variable`` factors, whose points come from
    :data:`VARIABLE_POINTS`.
    """
    factor_id: str
    question_id: str
    label: str
    points: Optional[int]
    severity: str
    condition: str
    value: Optional[str] = None
    reason: str = ""
    display_order: int = 0
    is_active: bool = True

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValidationError(f"Factor {self.factor_id} has unknown severity '{self.severity}'")
        if self.condition not in CONDITION_EVALUATORS:
            raise ValidationError(f"Factor {self.factor_id} has unknown condition '{self.condition}'")
        if self.condition != "variable" and self.points is None:
            raise ValidationError(f"Factor {self.factor_id} needs a point value")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskFactor":
        points = data.get("points")
        return cls(
            factor_id=data["factor_id"],
            question_id=data["question_id"],
            label=data.get("label", data["factor_id"]),
            points=int(points) if points is not None else None,
            severity=data.get("severity", "medium"),
            condition=data["condition"],
            value=data.get("value"),
            reason=data.get("reason", ""),
            display_order=int(data.get("display_order", 0)),
            is_active=bool(data.get("is_active", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor_id": self.factor_id,
            "question_id": self.question_id,
            "label": self.label,
            "points": self.points,
            "severity": self.severity,
            "condition": self.condition,
            "value": self.value,
            "reason": self.reason,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


@dataclass
class RiskThresholds:
    """Score >= high is "high"; medium <= score < high is "medium"."""
    high: int = 60
    medium: int = 30

    def __post_init__(self):
        if self.high <= self.medium:
            raise ValidationError(
                "High threshold must be greater than medium threshold",
                {"high": self.high, "medium": self.medium},
            )
        if self.medium < 0:
            raise ValidationError("Thresholds cannot be negative", {"medium": self.medium})

    def classify(self, score: int) -> str:
        if score >= self.high:
            return "high"
        if score >= self.medium:
            return "medium"
        return "low"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskThresholds":
        return cls(high=int(data["high_threshold"]), medium=int(data["medium_threshold"]))

    def to_dict(self) -> Dict[str, int]:
        return {"high_threshold": self.high, "medium_threshold": self.medium}


@dataclass
class FactorContribution:
    label: str
    question_id: str
    points: int
    severity: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "question_id": self.question_id,
            "points": self.points,
            "severity": self.severity,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FactorContribution":
        return cls(
            label=data.get("label", ""),
            question_id=data.get("question_id", ""),
            points=int(data.get("points") or 0),
            severity=data.get("severity", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class RiskResult:
    score: int
    classification: str
    factors: List[FactorContribution] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "classification": self.classification,
            "factors": [f.to_dict() for f in self.factors],
        }


ConditionEvaluator = Callable[[RiskFactor, Any], Optional[FactorContribution]]
CONDITION_EVALUATORS: Dict[str, ConditionEvaluator] = {}


def register_condition(kind: str) -> Callable[[ConditionEvaluator], ConditionEvaluator]:
    """Register the evaluator for a condition kind."""
    def decorator(func: ConditionEvaluator) -> ConditionEvaluator:
        CONDITION_EVALUATORS[kind] = func
        return func
    return decorator


def _fixed(factor: RiskFactor) -> FactorContribution:
    return FactorContribution(
        label=factor.label,
        question_id=factor.question_id,
        points=int(factor.points or 0),
        severity=factor.severity,
        reason=factor.reason,
    )


@register_condition("equals")
def _equals(factor: RiskFactor, answer: Any) -> Optional[FactorContribution]:
    if isinstance(answer, str) and answer == factor.value:
        return _fixed(factor)
    return None


@register_condition("not_equals")
def _not_equals(factor: RiskFactor, answer: Any) -> Optional[FactorContribution]:
    if is_empty_answer(answer) or answer == factor.value:
        return None
    return _fixed(factor)


@register_condition("includes")
def _includes(factor: RiskFactor, answer: Any) -> Optional[FactorContribution]:
    if isinstance(answer, list) and factor.value in answer:
        return _fixed(factor)
    return None


@register_condition("variable")
def _variable(factor: RiskFactor, answer: Any) -> Optional[FactorContribution]:
    if not isinstance(answer, str) or answer not in VARIABLE_POINTS:
        return None
    reason = factor.reason
    if answer == HIGHEST_LEVEL:
        reason = f"{reason} {HIGHEST_LEVEL_NOTE}".strip()
    return FactorContribution(
        label=f"{factor.label}: {answer}",
        question_id=factor.question_id,
        points=VARIABLE_POINTS[answer],
        severity=VARIABLE_SEVERITY[answer],
        reason=reason,
    )


def score(
    responses: Optional[Dict[str, Any]],
    factors: Sequence[RiskFactor],
    thresholds: Optional[RiskThresholds] = None,
    known_questions: Optional[Collection[str]] = None,
) -> RiskResult:
    """Score a response set against a factor configuration.

    Args:
        responses: Mapping of question id to answer.
        factors: The risk factor configuration.  Inactive factors are
            ignored.
        thresholds: Classification thresholds (defaults to 60/30).
        known_questions: Question ids of the current framework.  Factors
            pointing at other questions contribute nothing.

    Returns:
        A :class:`RiskResult` with the capped score, its classification
        and the contributing factors in display order.
    """
    responses = responses or {}
    thresholds = thresholds or RiskThresholds()
    contributions: List[FactorContribution] = []
    total = 0
    for factor in sorted(factors, key=lambda f: f.display_order):
        if not factor.is_active:
            continue
        if known_questions is not None and factor.question_id not in known_questions:
            continue
        answer = responses.get(factor.question_id)
        if is_empty_answer(answer):
            continue
        contribution = CONDITION_EVALUATORS[factor.condition](factor, answer)
        if contribution is None:
            continue
        contributions.append(contribution)
        total += contribution.points
    capped = max(0, min(MAX_SCORE, total))
    return RiskResult(score=capped, classification=thresholds.classify(capped), factors=contributions)


def load_risk_factors(path: Optional[Path] = None) -> List[RiskFactor]:
    """Load a factor table from JSON (the packaged defaults when no path)."""
    path = Path(path) if path else DEFAULT_FACTORS_PATH
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    factors = [RiskFactor.from_dict(d) for d in data]
    ids = [f.factor_id for f in factors]
    if len(ids) != len(set(ids)):
        raise ValidationError("Risk factor ids must be unique", {"path": str(path)})
    logger.debug("Loaded %d risk factors from %s", len(factors), path)
    return factors
