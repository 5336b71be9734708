"""
Module Activation
=================

Decides, from a partial set of answers, which sections of a framework are
relevant.  ``entry`` and ``common_nucleus`` are always active; every other
module is switched on by an :class:`ActivationRule`.

Rules are evaluated in the order they are declared.  A rule with
``requires`` only fires when the named parent module was already
activated by an earlier rule, so dependent modules (vendor AI due
diligence) observe the parent's decision rather than re-testing their own
shortcut.

``resolve`` is pure: it never mutates the responses, so answers recorded
for a module that later deactivates stay in the response set and reappear
unchanged when the module is reactivated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple

BASE_MODULES: Tuple[str, ...] = ("entry", "common_nucleus")

AI_MODULES: Tuple[str, ...] = (
    "ai_scope_classification",
    "ai_prohibited_practices",
    "ai_high_risk_classification",
    "ai_limited_risk_gpai",
)


@dataclass(frozen=True)
class Condition:
    """A test against a single answer.

    ``kind`` is one of:

    * ``equals``   - the answer is a string equal to ``value``
    * ``includes`` - the answer is a list containing ``value``
    * ``mentions`` - the answer is a list with an entry containing
      ``value`` case-insensitively
    """
    question_id: str
    kind: str
    value: str

    def holds(self, responses: Dict[str, Any], known_questions: Optional[Collection[str]] = None) -> bool:
        # Unknown or unanswered questions never satisfy a condition
        if known_questions is not None and self.question_id not in known_questions:
            return False
        answer = responses.get(self.question_id)
        if self.kind == "equals":
            return isinstance(answer, str) and answer == self.value
        if self.kind == "includes":
            return isinstance(answer, list) and self.value in answer
        if self.kind == "mentions":
            needle = self.value.lower()
            return isinstance(answer, list) and any(
                isinstance(v, str) and needle in v.lower() for v in answer
            )
        return False


@dataclass(frozen=True)
class ActivationRule:
    """Activate ``modules`` when any condition holds (and the parent is active)."""
    modules: Tuple[str, ...]
    any_of: Tuple[Condition, ...]
    requires: Optional[str] = None

    def fires(self, responses: Dict[str, Any], active: Sequence[str],
              known_questions: Optional[Collection[str]] = None) -> bool:
        if self.requires is not None and self.requires not in active:
            return False
        return any(c.holds(responses, known_questions) for c in self.any_of)


DEFAULT_RULES: Tuple[ActivationRule, ...] = (
    ActivationRule(("dpia",), (Condition("E2", "equals", "Yes"),)),
    ActivationRule(("tia",), (Condition("E3", "includes", "To other countries"),)),
    ActivationRule(AI_MODULES, (Condition("E4", "equals", "Yes"),)),
    ActivationRule(("vendor_general",), (Condition("E7", "equals", "Yes"),)),
    ActivationRule(
        ("vendor_ai_due_diligence",),
        (Condition("E4", "equals", "Yes"),),
        requires="vendor_general",
    ),
    ActivationRule(
        ("cybersecurity",),
        (Condition("E8", "equals", "Yes"), Condition("E4", "equals", "Yes")),
    ),
    ActivationRule(("lia",), (Condition("DP.3", "mentions", "legitimate"),)),
)


def resolve(
    responses: Optional[Dict[str, Any]],
    rules: Sequence[ActivationRule] = DEFAULT_RULES,
    known_questions: Optional[Collection[str]] = None,
) -> List[str]:
    """Return the active module ids for ``responses``.

    Args:
        responses: Mapping of question id to answer.  Not modified.
        rules: Activation rules, evaluated in order.
        known_questions: Question ids defined by the current framework.
            When given, rules referencing other questions are treated as
            not met.

    Returns:
        Module ids without duplicates, base modules first, then in rule
        order.  Display order comes from the framework, not from this list.
    """
    responses = responses or {}
    active: List[str] = list(BASE_MODULES)
    for rule in rules:
        if rule.fires(responses, active, known_questions):
            for module in rule.modules:
                if module not in active:
                    active.append(module)
    return active
