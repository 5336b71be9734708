"""Audit events for record changes, emitted on the ``complio.audit`` logger."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

audit_logger = logging.getLogger("complio.audit")

AUDIT_ACTIONS = ("create", "update", "delete", "import")


def log_audit(
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    actor_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> None:
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    audit_logger.info(
        "%s %s %s",
        action,
        entity_type,
        entity_id,
        extra={
            "audit_action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor_id": actor_id,
            "changes": changes or {},
        },
    )
