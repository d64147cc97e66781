"""
Workflow Hub - Audit Trail

Append-only transition history attached to every workflow item.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from services.workflow_models import AuditEntry, WorkflowItem


def build_entry(
    status: str,
    timestamp: str,
    actor: str,
    notes: Optional[str] = None,
    previous_status: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return AuditEntry(
        status=status,
        timestamp=timestamp,
        actor=actor or "system",
        notes=notes or f"Status changed to {status}",
        previous_status=previous_status,
        extra=dict(extra or {}),
    )


def append(history: Tuple[AuditEntry, ...], entry: AuditEntry) -> Tuple[AuditEntry, ...]:
    """Return a new history with `entry` appended. The input is never modified."""
    return tuple(history) + (entry,)


def assert_consistent(item: WorkflowItem):
    """
    Check the audit invariant: at least one entry, and the last entry's
    status equals the item's status.
    """
    if not item.history:
        raise AssertionError(f"Item {item.id} has an empty history")
    last = item.history[-1]
    if last.status != item.status:
        raise AssertionError(
            f"Item {item.id} history ends at '{last.status}' but status is '{item.status}'"
        )


def time_in_status(item: WorkflowItem, status: str) -> Optional[float]:
    """Seconds the item spent in `status` on its most recent visit (None if never entered)."""
    enter_time = None
    exit_time = None
    for index, entry in enumerate(item.history):
        if entry.status == status:
            enter_time = entry.timestamp
            exit_time = item.history[index + 1].timestamp if index + 1 < len(item.history) else None

    if enter_time is None:
        return None
    exit_dt = datetime.fromisoformat(exit_time) if exit_time else datetime.now(timezone.utc)
    return (exit_dt - datetime.fromisoformat(enter_time)).total_seconds()
