"""
Workflow Hub - Workflow Record Models

Actor, AuditEntry and WorkflowItem are immutable snapshots. A transition
never edits an item in place: it builds a new WorkflowItem with a new history
tuple, so a snapshot handed to the cache or to a notification template can
never change underneath its reader.

Records are stored as plain dicts (snake_case keys) through to_dict/from_dict.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Actor:
    """Identity performing an operation."""
    identity: str
    role: str
    name: Optional[str] = None
    phone: Optional[str] = None
    verified: bool = False

    @property
    def normalized_role(self) -> str:
        return (self.role or "").strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "role": self.role,
            "phone": self.phone,
            "verified": self.verified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        return cls(
            identity=data.get("identity") or data.get("email") or "",
            role=data.get("role") or "",
            name=data.get("name"),
            phone=data.get("phone"),
            verified=bool(data.get("verified", False)),
        )


# Identity used for transitions the engine performs on its own
SYSTEM_ACTOR = Actor(identity="SYSTEM", role="system", name="System")
AUTO_APPROVAL_ACTOR = Actor(identity="SYSTEM_AUTO_APPROVAL", role="system", name="Auto Approval")


@dataclass(frozen=True)
class AuditEntry:
    """One immutable record of a transition (or of the initial submission)."""
    status: str
    timestamp: str
    actor: str
    notes: str
    previous_status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _BASE_KEYS = ("status", "timestamp", "actor", "notes", "previous_status")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "notes": self.notes,
            "previous_status": self.previous_status,
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        extra = {k: v for k, v in data.items() if k not in cls._BASE_KEYS}
        return cls(
            status=data["status"],
            timestamp=data.get("timestamp") or "",
            actor=data.get("actor") or "system",
            notes=data.get("notes") or "",
            previous_status=data.get("previous_status"),
            extra=extra,
        )


@dataclass(frozen=True)
class WorkflowItem:
    """
    An entity under workflow management (a dispute, an order, ...).

    `kind` is the category (e.g. "technical", "ACL") that selects the
    workflow definition and its routing row; `workflow` names the definition.
    """
    id: str
    workflow: str
    kind: str
    status: str
    payload: Dict[str, Any]
    submitted_by: Actor
    history: Tuple[AuditEntry, ...]
    created_at: str
    last_updated: str
    assigned_to: Optional[str] = None
    assigned_at: Optional[str] = None
    resolution: Optional[Dict[str, Any]] = None

    def with_changes(self, **changes) -> "WorkflowItem":
        """Return a new snapshot with the given fields replaced."""
        if "payload" not in changes:
            changes["payload"] = dict(self.payload)
        return replace(self, **changes)

    def copy(self) -> "WorkflowItem":
        """Detached snapshot: nested payload, resolution and history extras are copied."""
        return replace(
            self,
            payload=copy.deepcopy(self.payload),
            resolution=copy.deepcopy(self.resolution),
            history=tuple(replace(entry, extra=copy.deepcopy(entry.extra)) for entry in self.history),
        )

    @property
    def last_entry(self) -> Optional[AuditEntry]:
        return self.history[-1] if self.history else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow": self.workflow,
            "kind": self.kind,
            "status": self.status,
            "payload": dict(self.payload),
            "submitted_by": self.submitted_by.to_dict(),
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at,
            "resolution": self.resolution,
            "history": [entry.to_dict() for entry in self.history],
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowItem":
        return cls(
            id=data["id"],
            workflow=data.get("workflow", ""),
            kind=data.get("kind", ""),
            status=data["status"],
            payload=dict(data.get("payload") or {}),
            submitted_by=Actor.from_dict(data.get("submitted_by") or {}),
            history=tuple(AuditEntry.from_dict(e) for e in data.get("history") or []),
            created_at=data.get("created_at") or "",
            last_updated=data.get("last_updated") or "",
            assigned_to=data.get("assigned_to"),
            assigned_at=data.get("assigned_at"),
            resolution=data.get("resolution"),
        )
