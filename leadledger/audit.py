"""Audit trail for administrative and financial mutations.

Entries are written through the open storage transaction, so an audit row
exists if and only if the change it describes was committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from leadledger.utils import format_datetime, new_id, parse_datetime, utc_now

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class AuditEntry:
    id: str
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.actor_id:
            raise ValueError("Audit entries require an actor")
        if not self.action:
            raise ValueError("Audit entries require an action")
        self.before = dict(self.before or {})
        self.after = dict(self.after or {})
        self.created_at = parse_datetime(self.created_at) or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


def record_audit(
    txn,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AuditEntry:
    """Write an audit entry inside ``txn``."""
    entry = AuditEntry(
        id=new_id(),
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before=before or {},
        after=after or {},
        reason=reason,
        created_at=now,
    )
    txn.save_audit(entry)
    logger.debug(f"Audit: {actor_id} {action} {entity_type}/{entity_id}")
    return entry
