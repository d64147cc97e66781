"""
Workflow Hub - Access Control

Role-based authorization per workflow operation, driven by a static
permission table. Evaluation is deterministic and deny-by-default:

  - "any" in the operation's role set allows every actor
  - otherwise the actor's role (case-normalized) must be in the set
  - otherwise "assigned_actor" allows the actor the item is assigned to
  - unknown operations are denied

Adding an operation means adding a table row, not code.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from services.workflow_models import Actor, WorkflowItem


ANY_ROLE = "any"
ASSIGNED_ACTOR = "assigned_actor"


class Operation(str, Enum):
    """Operations guarded by the permission table."""
    SUBMIT = "submit"
    ASSIGN = "assign"
    UPDATE_STATUS = "update_status"
    RESOLVE = "resolve"
    VIEW_ALL = "view_all"
    VIEW_ASSIGNED = "view_assigned"


PermissionTable = Mapping[str, FrozenSet[str]]


def build_permission_table(rows: Mapping[str, Iterable[str]]) -> Dict[str, FrozenSet[str]]:
    """Normalize a {operation: roles} mapping (enum keys, mixed-case roles)."""
    table = {}
    for operation, roles in rows.items():
        key = operation.value if isinstance(operation, Enum) else operation
        table[key] = frozenset((role or "").strip().lower() for role in roles)
    return table


DISPUTE_PERMISSIONS = build_permission_table({
    Operation.SUBMIT: [ANY_ROLE],
    Operation.ASSIGN: ["admin", "cro", "bdo"],
    Operation.UPDATE_STATUS: ["admin", "cro", "bdo", ASSIGNED_ACTOR],
    Operation.RESOLVE: ["admin", "cro", "bdo", ASSIGNED_ACTOR],
    Operation.VIEW_ALL: ["admin", "cro"],
    Operation.VIEW_ASSIGNED: [ANY_ROLE],
})

ORDER_PERMISSIONS = build_permission_table({
    Operation.SUBMIT: [ANY_ROLE],
    Operation.ASSIGN: ["admin", "cro"],
    Operation.UPDATE_STATUS: ["admin", "cro", "acl_sr", "ail_sr", ASSIGNED_ACTOR],
    Operation.RESOLVE: ["admin", "cro", ASSIGNED_ACTOR],
    Operation.VIEW_ALL: ["admin", "cro"],
    Operation.VIEW_ASSIGNED: [ANY_ROLE],
})


class AccessControl:
    """Evaluates one permission table. Pure; safe to share."""

    def __init__(self, permissions: PermissionTable):
        self._permissions = dict(permissions)

    def is_allowed(self, actor: Actor, operation, item: Optional[WorkflowItem] = None) -> bool:
        key = operation.value if isinstance(operation, Enum) else operation
        allowed_roles = self._permissions.get(key)
        if not allowed_roles:
            return False

        if ANY_ROLE in allowed_roles:
            return True

        if actor is None:
            return False

        if actor.normalized_role in allowed_roles:
            return True

        if (
            ASSIGNED_ACTOR in allowed_roles
            and item is not None
            and item.assigned_to is not None
            and item.assigned_to == actor.identity
        ):
            return True

        return False

    def roles_for(self, operation) -> FrozenSet[str]:
        key = operation.value if isinstance(operation, Enum) else operation
        return self._permissions.get(key, frozenset())

    def to_dict(self) -> Dict[str, list]:
        return {operation: sorted(roles) for operation, roles in self._permissions.items()}
