"""
Administrative edits to the risk-scoring configuration.

Administrators may change a factor's points, severity, justification and
active flag, and the two classification thresholds.  The condition a
factor tests is fixed by the factor table and cannot be edited here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from complio.audit import log_audit
from complio.config import Settings, get_settings
from complio.errors import PermissionDeniedError, ValidationError
from complio.records import Actor
from complio.risk_scoring import SEVERITIES, RiskFactor, RiskThresholds
from complio.store import RecordStore, default_thresholds

logger = logging.getLogger(__name__)


def _require_admin(actor: Optional[Actor]) -> None:
    if actor is None or not actor.is_admin:
        raise PermissionDeniedError("Only administrators can change risk scoring settings")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a whole number", {name: value})
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a whole number", {name: value}) from e


class RiskSettingsService:
    def __init__(self, store: RecordStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def default_thresholds(self) -> RiskThresholds:
        return default_thresholds(self.settings)

    def thresholds(self) -> RiskThresholds:
        return self.store.risk_thresholds(self.settings)

    def factors(self) -> List[RiskFactor]:
        return self.store.get_risk_factors()

    def get_config(self) -> Dict[str, Any]:
        return {
            "factors": [f.to_dict() for f in self.factors()],
            "thresholds": self.thresholds().to_dict(),
        }

    def update_factor(
        self,
        actor: Optional[Actor],
        factor_id: str,
        points: Optional[Any] = None,
        severity: Optional[str] = None,
        is_active: Optional[bool] = None,
        reason: Optional[str] = None,
    ) -> RiskFactor:
        """Apply the given changes to one factor; ``None`` leaves a field as is."""
        _require_admin(actor)
        factor = self.store.get_risk_factor(factor_id)
        changes: Dict[str, Any] = {}
        if points is not None:
            if factor.condition == "variable":
                raise ValidationError("Points of a variable factor come from the answer", {"factor_id": factor_id})
            points = _as_int(points, "points")
            if points < 0:
                raise ValidationError("Points cannot be negative", {"points": points})
            changes["points"] = {"old": factor.points, "new": points}
            factor.points = points
        if severity is not None:
            if severity not in SEVERITIES:
                raise ValidationError(f"Unknown severity: {severity}", {"allowed": list(SEVERITIES)})
            changes["severity"] = {"old": factor.severity, "new": severity}
            factor.severity = severity
        if is_active is not None:
            changes["is_active"] = {"old": factor.is_active, "new": bool(is_active)}
            factor.is_active = bool(is_active)
        if reason is not None:
            changes["reason"] = {"old": factor.reason, "new": reason}
            factor.reason = reason
        self.store.save_risk_factor(factor)
        log_audit("update", "risk_factor", factor_id, actor.id, changes)
        return factor

    def update_thresholds(self, actor: Optional[Actor], high: Any, medium: Any) -> RiskThresholds:
        _require_admin(actor)
        thresholds = RiskThresholds(high=_as_int(high, "high"), medium=_as_int(medium, "medium"))
        previous = self.thresholds()
        self.store.save_risk_thresholds(thresholds)
        log_audit("update", "risk_thresholds", "default", actor.id,
                  {"old": previous.to_dict(), "new": thresholds.to_dict()})
        logger.info("Risk thresholds set to high=%d medium=%d", thresholds.high, thresholds.medium)
        return thresholds
