"""
Workflow Hub - Workflow Service

Generic orchestrator for one WorkflowDefinition. Every mutating operation
follows the same sequence:

    1. validate input shape
    2. load the item (cache, falling back to the repository)
    3. check AccessControl for the operation
    4. check the StateMachine guard against the item loaded in step 2
    5. build the new snapshot and append an AuditEntry
    6. persist through the repository
    7. update the cache with the persisted snapshot
    8. dispatch notifications (best effort)
    9. return a structured result

Steps 1-4 raise before anything is mutated. A repository failure in step 6
raises PersistenceError and leaves the cache without the unpersisted
snapshot. Notification failures never reach the caller.

Collaborators are passed to the constructor and checked once; a missing one
is a startup error, not a call-time fallback.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Union

from services import audit_trail
from services.access_control import AccessControl, Operation
from services.field_validator import FieldValidator
from services.id_service import IdIssuer
from services.notification_service import (
    ContactDirectory, NotificationDispatcher, NotificationEvent, render_message,
)
from services.repository import RecordNotFound, Repository
from services.workflow_cache import WorkflowCache
from services.workflow_definitions import Assignee, WorkflowDefinition
from services.workflow_errors import (
    AuthorizationError, InvalidTransitionError, NotFoundError, OperationCancelledError,
    PersistenceError, ValidationError,
)
from services.workflow_models import (
    AUTO_APPROVAL_ACTOR, SYSTEM_ACTOR, Actor, WorkflowItem, utc_now,
)

logger = logging.getLogger(__name__)

AutoApprovalPredicate = Callable[[WorkflowItem], bool]

LIST_LIMIT = 500


def _next_timestamp(previous: Optional[str]) -> str:
    """Current UTC time, nudged forward so it is strictly after `previous`."""
    now = datetime.now(timezone.utc)
    if previous:
        try:
            last = datetime.fromisoformat(previous)
        except ValueError:
            last = None
        if last is not None and now <= last:
            now = last + timedelta(microseconds=1)
    return now.isoformat()


class WorkflowService:
    """
    Runs one workflow definition (disputes, orders, ...).

    Usage:
        service = WorkflowService(
            DISPUTE_DEFINITION,
            repository=MongoRepository(db),
            id_issuer=MongoIdIssuer(db, {"disputes": "DSP"}),
            validator=FieldValidator(),
            dispatcher=NotificationDispatcher(transport),
        )
        result = await service.submit(payload, actor)
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        repository: Repository,
        id_issuer: IdIssuer,
        validator: FieldValidator,
        dispatcher: NotificationDispatcher,
        contacts: Optional[ContactDirectory] = None,
        cache: Optional[WorkflowCache] = None,
        auto_approval: Optional[AutoApprovalPredicate] = None,
        notifications_in_background: bool = False,
    ):
        required = {
            "definition": definition,
            "repository": repository,
            "id_issuer": id_issuer,
            "validator": validator,
            "dispatcher": dispatcher,
        }
        missing = [name for name, value in required.items() if value is None]
        if missing:
            raise ValueError(f"WorkflowService missing collaborators: {', '.join(missing)}")
        if definition.approval_routing and auto_approval is None:
            raise ValueError(f"Workflow '{definition.name}' requires an auto-approval predicate")

        self.definition = definition
        self.state_machine = definition.state_machine
        self.access = AccessControl(definition.permissions)
        self.repository = repository
        self.id_issuer = id_issuer
        self.validator = validator
        self.dispatcher = dispatcher
        self.contacts = contacts or ContactDirectory()
        self.cache = cache or WorkflowCache()
        self.auto_approval = auto_approval
        self.notifications_in_background = notifications_in_background
        self._pending_notifications: Set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def label(self) -> str:
        return self.definition.label

    # =========================================================================
    # GUARDS
    # =========================================================================

    def _check_cancelled(self, cancel: Optional[asyncio.Event], operation: str, item_id: Optional[str]):
        if cancel is not None and cancel.is_set():
            logger.info("Operation cancelled: workflow=%s, operation=%s, item=%s", self.name, operation, item_id)
            raise OperationCancelledError(
                f"{operation} cancelled before it was persisted",
                context={"workflow": self.name, "operation": operation, "item_id": item_id},
            )

    def _deny(self, actor: Optional[Actor], operation: Operation, item: Optional[WorkflowItem] = None):
        logger.warning(
            "Access denied: workflow=%s, operation=%s, actor=%s, role=%s, item=%s",
            self.name, operation.value,
            actor.identity if actor else None, actor.role if actor else None,
            item.id if item else None,
        )
        raise AuthorizationError(
            f"Insufficient permissions for {operation.value}",
            context={
                "workflow": self.name,
                "operation": operation.value,
                "item_id": item.id if item else None,
                "actor": actor.identity if actor else None,
                "role": actor.role if actor else None,
                "allowed_roles": sorted(self.access.roles_for(operation)),
            },
        )

    def _authorize(self, actor: Optional[Actor], operation: Operation, item: Optional[WorkflowItem] = None):
        if not self.access.is_allowed(actor, operation, item):
            self._deny(actor, operation, item)

    @staticmethod
    def _require_item_id(item_id: str):
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValidationError(
                "Item id is required",
                code="VALIDATION_MISSING_FIELD",
                context={"field": "id"},
            )

    @staticmethod
    def _require_actor(actor: Optional[Actor], operation: str):
        if actor is None or not actor.identity:
            raise ValidationError(
                f"An acting identity is required for {operation}",
                code="VALIDATION_MISSING_FIELD",
                context={"field": "actor", "operation": operation},
            )

    def _is_open(self, item: WorkflowItem) -> bool:
        return not self.state_machine.is_terminal(item.status) and item.status != self.definition.resolve_status

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _issue_id(self) -> str:
        try:
            return await self.id_issuer.next(self.name)
        except Exception as e:
            fallback = f"{self.definition.id_prefix}-{int(time.time() * 1000)}"
            logger.warning("ID issuer unavailable for %s, using fallback id %s: %s", self.name, fallback, e)
            return fallback

    async def _load(self, item_id: str) -> WorkflowItem:
        cached = self.cache.get(item_id)
        if cached is not None:
            return cached

        try:
            record = await self.repository.find_by_id(self.name, item_id)
        except Exception as e:
            logger.error("Failed to load %s %s: %s", self.name, item_id, e)
            raise PersistenceError(
                f"Failed to load {self.label.lower()}",
                code="DATABASE_QUERY_FAILED",
                context={"workflow": self.name, "item_id": item_id, "error": str(e)},
            ) from e

        if record is None:
            raise NotFoundError(
                f"{self.label} not found: {item_id}",
                context={"workflow": self.name, "item_id": item_id},
            )

        item = WorkflowItem.from_dict(record)
        self.cache.put(item.id, item)
        return item

    async def _find(self, predicate: Dict[str, Any], limit: int) -> List[WorkflowItem]:
        try:
            records = await self.repository.find_where(self.name, predicate, limit=limit)
        except Exception as e:
            logger.error("Failed to query %s with %s: %s", self.name, predicate, e)
            raise PersistenceError(
                f"Failed to query {self.name}",
                code="DATABASE_QUERY_FAILED",
                context={"workflow": self.name, "predicate": predicate, "error": str(e)},
            ) from e
        return [WorkflowItem.from_dict(record) for record in records]

    async def _commit(self, updated: WorkflowItem, operation: str) -> WorkflowItem:
        """Persist a transition of an existing item, then refresh the cache."""
        patch = updated.to_dict()
        patch.pop("id", None)
        try:
            await self.repository.update_where(self.name, "id", updated.id, patch)
        except RecordNotFound as e:
            self.cache.invalidate(updated.id)
            raise NotFoundError(
                f"{self.label} not found: {updated.id}",
                context={"workflow": self.name, "item_id": updated.id, "operation": operation},
            ) from e
        except Exception as e:
            self.cache.invalidate(updated.id)
            logger.error("Failed to persist %s for %s %s: %s", operation, self.name, updated.id, e)
            raise PersistenceError(
                f"Failed to update {self.label.lower()}",
                code="DATABASE_UPDATE_FAILED",
                context={"workflow": self.name, "item_id": updated.id, "operation": operation, "error": str(e)},
            ) from e

        self.cache.put(updated.id, updated)
        return updated

    def _transition(
        self,
        item: WorkflowItem,
        target_status: str,
        actor: Actor,
        notes: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None,
        **changes,
    ) -> WorkflowItem:
        timestamp = timestamp or _next_timestamp(item.last_updated)
        entry = audit_trail.build_entry(
            status=target_status,
            timestamp=timestamp,
            actor=actor.identity,
            notes=notes,
            previous_status=item.status,
            extra=extra,
        )
        updated = item.with_changes(
            status=target_status,
            history=audit_trail.append(item.history, entry),
            last_updated=timestamp,
            **changes,
        )
        if logger.isEnabledFor(logging.DEBUG):
            audit_trail.assert_consistent(updated)
        return updated

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _contact_for(self, identity: Optional[str], actor: Optional[Actor] = None) -> Optional[str]:
        if actor is not None and actor.phone:
            return actor.phone
        return self.contacts.resolve(identity)

    def _recipients(self, event: NotificationEvent, item: WorkflowItem) -> List[str]:
        if event == NotificationEvent.SUBMITTED:
            return list(self.contacts.admin_contacts)
        if event == NotificationEvent.ASSIGNED:
            return [c for c in [self._contact_for(item.assigned_to)] if c]
        candidates = [
            self._contact_for(item.submitted_by.identity, item.submitted_by),
            self._contact_for(item.assigned_to),
        ]
        return [c for c in candidates if c]

    async def _notify(self, event: NotificationEvent, item: WorkflowItem, cancel: Optional[asyncio.Event] = None):
        if cancel is not None and cancel.is_set():
            logger.info("Notification suppressed after cancellation: workflow=%s, item=%s", self.name, item.id)
            return

        try:
            recipients = self._recipients(event, item)
            message = render_message(event, item, self.label)
        except Exception as e:
            logger.error("Failed to prepare %s notification for %s: %s", event.value, item.id, e)
            return

        if self.notifications_in_background:
            task = asyncio.create_task(self.dispatcher.notify(recipients, message))
            self._pending_notifications.add(task)
            task.add_done_callback(self._pending_notifications.discard)
        else:
            await self.dispatcher.notify(recipients, message)

    async def drain(self):
        """Wait for background notifications still in flight (used at shutdown)."""
        if self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications), return_exceptions=True)

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    async def _select_assignee(self, kind: str) -> Assignee:
        """Routing-table candidate with the fewest open assigned items; ties go to list order."""
        candidates = self.definition.candidates_for(kind)
        if len(candidates) == 1:
            return candidates[0]

        workloads = []
        for index, candidate in enumerate(candidates):
            try:
                assigned = await self._find({"assigned_to": candidate.identity}, LIST_LIMIT)
            except PersistenceError:
                logger.warning("Workload lookup failed for %s, using first candidate", candidate.identity)
                return candidates[0]
            workloads.append((sum(1 for i in assigned if self._is_open(i)), index, candidate))

        _, _, selected = min(workloads, key=lambda w: (w[0], w[1]))
        logger.debug("Auto-selected assignee %s for kind %s", selected.identity, kind)
        return selected

    @staticmethod
    def _target_identity(target: Union[None, str, Actor, Assignee]) -> Optional[str]:
        if target is None:
            return None
        if isinstance(target, (Actor, Assignee)):
            return target.identity
        return str(target).strip()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def submit(
        self,
        payload: Dict[str, Any],
        actor: Actor,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Validate and create a new item in the start status."""
        self._require_actor(actor, "submit")
        kind, data = self.definition.parse_payload(payload, self.validator)
        self._authorize(actor, Operation.SUBMIT)

        if self.definition.prepare_payload:
            data = self.definition.prepare_payload(data)

        item_id = await self._issue_id()
        now = utc_now()
        start = self.state_machine.start_status
        item = WorkflowItem(
            id=item_id,
            workflow=self.name,
            kind=kind,
            status=start,
            payload=data,
            submitted_by=actor,
            history=(audit_trail.build_entry(start, now, actor.identity, f"{self.label} submitted"),),
            created_at=now,
            last_updated=now,
        )

        self._check_cancelled(cancel, "submit", item_id)
        try:
            await self.repository.insert(self.name, item.to_dict())
        except Exception as e:
            logger.error("Failed to insert %s %s: %s", self.name, item_id, e)
            raise PersistenceError(
                f"Failed to save {self.label.lower()}",
                code="DATABASE_INSERT_FAILED",
                context={"workflow": self.name, "item_id": item_id, "error": str(e)},
            ) from e
        self.cache.put(item.id, item)

        logger.info(
            "Workflow item submitted: workflow=%s, id=%s, kind=%s, by=%s",
            self.name, item.id, kind, actor.identity
        )
        await self._notify(NotificationEvent.SUBMITTED, item, cancel)

        result = {
            "success": True,
            "id": item.id,
            "status": item.status,
            "kind": item.kind,
            "message": f"{self.label} submitted successfully",
        }
        if "order_number" in item.payload:
            result["order_number"] = item.payload["order_number"]
        if self.definition.processing_estimate:
            result["estimated_processing_time"] = self.definition.processing_estimate(item.payload)
        return result

    async def assign(
        self,
        item_id: str,
        target: Union[None, str, Actor, Assignee],
        by_actor: Actor,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Assign an item, auto-selecting from the routing table when `target` is None."""
        self._require_item_id(item_id)
        self._require_actor(by_actor, "assign")
        identity = self._target_identity(target)
        if target is not None and not identity:
            raise ValidationError(
                "Assignee identity is empty",
                code="VALIDATION_MISSING_FIELD",
                context={"field": "assignee", "item_id": item_id},
            )

        item = await self._load(item_id)
        self._authorize(by_actor, Operation.ASSIGN, item)
        self.state_machine.validate_transition(item.status, self.definition.assign_status, item.id)

        if identity is None:
            identity = (await self._select_assignee(item.kind)).identity

        timestamp = _next_timestamp(item.last_updated)
        updated = self._transition(
            item,
            self.definition.assign_status,
            by_actor,
            notes=f"Assigned to {identity}",
            extra={"assigned_to": identity},
            timestamp=timestamp,
            assigned_to=identity,
            assigned_at=timestamp,
        )

        self._check_cancelled(cancel, "assign", item.id)
        updated = await self._commit(updated, "assign")
        logger.info("Workflow item assigned: workflow=%s, id=%s, to=%s, by=%s",
                    self.name, updated.id, identity, by_actor.identity)
        await self._notify(NotificationEvent.ASSIGNED, updated, cancel)

        return {
            "success": True,
            "id": updated.id,
            "status": updated.status,
            "assigned_to": identity,
            "message": f"{self.label} assigned to {identity}",
        }

    def _reject_dedicated_edge(self, item: WorkflowItem, target_status: str):
        """
        Entering the resolve status, or the assign status without an assignee,
        belongs to resolve() and assign(); those carry their own permission
        rows and record the resolution or assignee.
        """
        if target_status == self.definition.resolve_status:
            operation, code = Operation.RESOLVE, "USE_RESOLVE_OPERATION"
        elif target_status == self.definition.assign_status and not item.assigned_to:
            operation, code = Operation.ASSIGN, "USE_ASSIGN_OPERATION"
        else:
            return
        logger.warning("Status update routed to %s rejected: workflow=%s, id=%s, %s -> %s",
                       operation.value, self.name, item.id, item.status, target_status)
        raise InvalidTransitionError(
            f"Use the {operation.value} operation to move {item.id} to {target_status}",
            code=code,
            context={
                "workflow": self.name,
                "item_id": item.id,
                "current_status": item.status,
                "target_status": target_status,
                "operation": operation.value,
            },
        )

    async def update_status(
        self,
        item_id: str,
        target_status: str,
        actor: Actor,
        notes: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Move an item along any edge of the transition table."""
        self._require_item_id(item_id)
        self._require_actor(actor, "update_status")
        if not isinstance(target_status, str) or not target_status.strip():
            raise ValidationError(
                "Target status is required",
                code="VALIDATION_MISSING_FIELD",
                context={"field": "status", "item_id": item_id},
            )
        target_status = target_status.strip()

        item = await self._load(item_id)
        self._authorize(actor, Operation.UPDATE_STATUS, item)
        self.state_machine.validate_transition(item.status, target_status, item.id)
        self._reject_dedicated_edge(item, target_status)

        previous = item.status
        updated = self._transition(item, target_status, actor, notes=notes)

        self._check_cancelled(cancel, "update_status", item.id)
        updated = await self._commit(updated, "update_status")
        logger.info("Workflow status updated: workflow=%s, id=%s, %s -> %s, by=%s",
                    self.name, updated.id, previous, target_status, actor.identity)
        await self._notify(NotificationEvent.STATUS_CHANGED, updated, cancel)

        return {
            "success": True,
            "id": updated.id,
            "status": updated.status,
            "previous_status": previous,
            "message": f"{self.label} status updated to {target_status}",
        }

    async def resolve(
        self,
        item_id: str,
        resolution_data: Dict[str, Any],
        actor: Actor,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Record a resolution and move the item to the definition's resolve status."""
        self._require_item_id(item_id)
        self._require_actor(actor, "resolve")
        resolution = self.definition.parse_resolution(resolution_data)

        item = await self._load(item_id)
        self._authorize(actor, Operation.RESOLVE, item)
        target = self.definition.resolve_status
        self.state_machine.validate_transition(item.status, target, item.id)

        timestamp = _next_timestamp(item.last_updated)
        resolution.update({"resolved_by": actor.identity, "resolved_at": timestamp})
        updated = self._transition(
            item,
            target,
            actor,
            notes=f"{self.label} {target}: {resolution['summary']}",
            timestamp=timestamp,
            resolution=resolution,
        )

        self._check_cancelled(cancel, "resolve", item.id)
        updated = await self._commit(updated, "resolve")
        logger.info("Workflow item resolved: workflow=%s, id=%s, status=%s, by=%s",
                    self.name, updated.id, target, actor.identity)
        await self._notify(NotificationEvent.RESOLVED, updated, cancel)

        return {
            "success": True,
            "id": updated.id,
            "status": updated.status,
            "resolution": dict(resolution),
            "message": f"{self.label} {target} successfully",
        }

    def _is_auto_approvable(self, item: WorkflowItem) -> bool:
        try:
            return bool(self.auto_approval(item))
        except Exception as e:
            logger.warning("Auto-approval check failed for %s, routing for manual approval: %s", item.id, e)
            return False

    async def route_for_approval(
        self,
        item_id: str,
        actor: Optional[Actor] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Validate a freshly submitted item and route it for approval.

        The item moves to the validated status as the system actor. When the
        auto-approval predicate holds it is approved as SYSTEM_AUTO_APPROVAL;
        otherwise it is assigned to the routed approver. Cancellation is only
        honored before the first write; after that routing runs to completion
        and only notifications are suppressed.
        """
        if not self.definition.approval_routing:
            raise ValidationError(
                f"Workflow '{self.name}' has no approval routing",
                code="APPROVAL_ROUTING_UNSUPPORTED",
                context={"workflow": self.name, "item_id": item_id},
            )
        self._require_item_id(item_id)

        item = await self._load(item_id)
        if actor is not None:
            self._authorize(actor, Operation.ASSIGN, item)

        validated_status = self.definition.validated_status
        if item.status != validated_status:
            self.state_machine.validate_transition(item.status, validated_status, item.id)
            validated = self._transition(
                item, validated_status, SYSTEM_ACTOR,
                notes=f"{self.label} validated and ready for approval routing",
            )
            self._check_cancelled(cancel, "route_for_approval", item.id)
            item = await self._commit(validated, "validate")
            await self._notify(NotificationEvent.STATUS_CHANGED, item, cancel)
        else:
            self._check_cancelled(cancel, "route_for_approval", item.id)

        if self._is_auto_approvable(item):
            target = self.definition.resolve_status
            self.state_machine.validate_transition(item.status, target, item.id)
            timestamp = _next_timestamp(item.last_updated)
            resolution = {
                "summary": "Auto-approved: eligible for automatic approval",
                "actions": [],
                "resolved_by": AUTO_APPROVAL_ACTOR.identity,
                "resolved_at": timestamp,
                "auto_approved": True,
            }
            approved = self._transition(
                item, target, AUTO_APPROVAL_ACTOR,
                notes=resolution["summary"],
                extra={"auto_approved": True},
                timestamp=timestamp,
                resolution=resolution,
            )
            approved = await self._commit(approved, "auto_approve")
            logger.info("Workflow item auto-approved: workflow=%s, id=%s", self.name, approved.id)
            await self._notify(NotificationEvent.RESOLVED, approved, cancel)
            return {
                "success": True,
                "id": approved.id,
                "status": approved.status,
                "auto_approved": True,
                "assigned_to": None,
                "message": f"{self.label} auto-approved",
            }

        target = self.definition.assign_status
        self.state_machine.validate_transition(item.status, target, item.id)
        approver = await self._select_assignee(item.kind)
        timestamp = _next_timestamp(item.last_updated)
        routed = self._transition(
            item, target, SYSTEM_ACTOR,
            notes=f"Routed to {approver.name or approver.identity} for approval",
            extra={"assigned_to": approver.identity, "approver_role": approver.role},
            timestamp=timestamp,
            assigned_to=approver.identity,
            assigned_at=timestamp,
        )
        routed = await self._commit(routed, "route")
        logger.info("Workflow item routed for approval: workflow=%s, id=%s, approver=%s",
                    self.name, routed.id, approver.identity)
        await self._notify(NotificationEvent.ASSIGNED, routed, cancel)

        return {
            "success": True,
            "id": routed.id,
            "status": routed.status,
            "auto_approved": False,
            "assigned_to": approver.identity,
            "message": f"{self.label} routed to {approver.identity} for approval",
        }

    # =========================================================================
    # READS
    # =========================================================================

    async def get_by_id(self, item_id: str, actor: Optional[Actor] = None) -> WorkflowItem:
        """Detached copy of one item. With an actor: view_all, submitter or assignee only."""
        self._require_item_id(item_id)
        item = await self._load(item_id)
        if actor is not None and not self.access.is_allowed(actor, Operation.VIEW_ALL, item):
            if actor.identity not in (item.submitted_by.identity, item.assigned_to):
                self._deny(actor, Operation.VIEW_ALL, item)
        return item.copy()

    async def list_by_status(
        self,
        status: str,
        filters: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
        limit: int = LIST_LIMIT,
    ) -> List[WorkflowItem]:
        if status not in self.state_machine.statuses:
            raise ValidationError(
                f"Unknown status for {self.name}: {status}",
                code="VALIDATION_INVALID_STATUS",
                context={"field": "status", "status": status, "valid_statuses": self.state_machine.statuses},
            )
        if actor is not None:
            self._authorize(actor, Operation.VIEW_ALL)
        predicate = dict(filters or {})
        predicate["status"] = status
        return await self._find(predicate, limit)

    async def list_assigned_to(
        self,
        identity: str,
        filters: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
        limit: int = LIST_LIMIT,
    ) -> List[WorkflowItem]:
        if not isinstance(identity, str) or not identity.strip():
            raise ValidationError(
                "Assignee identity is required",
                code="VALIDATION_MISSING_FIELD",
                context={"field": "assigned_to"},
            )
        if actor is not None:
            self._authorize(actor, Operation.VIEW_ASSIGNED)
            if actor.identity != identity.strip() and not self.access.is_allowed(actor, Operation.VIEW_ALL):
                self._deny(actor, Operation.VIEW_ALL)
        predicate = dict(filters or {})
        predicate["assigned_to"] = identity.strip()
        return await self._find(predicate, limit)

    def describe(self) -> Dict[str, Any]:
        """Definition metadata plus cache stats, for the meta endpoint."""
        info = self.definition.to_dict()
        info["cache"] = self.cache.stats()
        info["pending_notifications"] = len(self._pending_notifications)
        return info
