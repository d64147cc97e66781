"""
Workflow Hub - Workflows Router

HTTP surface over the workflow services: submission, assignment, status
transitions, resolution, approval routing and read queries, one route set
per workflow definition ("disputes", "orders").
"""

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import logging

from routes.auth import get_current_actor
from services import audit_trail
from services.workflow_definitions import definition_for_kind
from services.workflow_errors import WorkflowError
from services.workflow_models import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])

# Workflow services by definition name - set by main app
workflow_services: Dict[str, Any] = {}


def set_dependencies(services: Dict[str, Any]):
    global workflow_services
    workflow_services = services


# ==================== MODELS ====================

class AssignRequest(BaseModel):
    assignee: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    notes: Optional[str] = None


class ResolveRequest(BaseModel):
    summary: Optional[str] = None
    actions: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


# ==================== HELPERS ====================

def _get_service(definition: str):
    service = workflow_services.get(definition)
    if service is None:
        raise HTTPException(status_code=404, detail=f"Unknown workflow: {definition}")
    return service


def _http_error(error: WorkflowError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.to_dict())


# ==================== SUBMISSION ====================

async def _submit(service, payload: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    try:
        result = await service.submit(payload, actor)
    except WorkflowError as e:
        raise _http_error(e)

    if service.definition.approval_routing:
        try:
            result["routing"] = await service.route_for_approval(result["id"])
            result["status"] = result["routing"]["status"]
        except WorkflowError as e:
            logger.error("Approval routing failed for %s %s: %s", service.name, result["id"], e.message)
            result["routing"] = {"success": False, "error": e.to_dict()}

    return result


@router.post("/items")
async def submit_by_kind(
    payload: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
):
    """Submit an item whose workflow is picked from its kind (e.g. "technical", "ACL")."""
    kind = payload.get("kind") or payload.get("type")
    if not kind:
        raise HTTPException(status_code=400, detail="kind is required")
    try:
        definition = definition_for_kind(str(kind))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No workflow handles kind: {kind}")
    return await _submit(_get_service(definition.name), payload, actor)


@router.post("/{definition}/items")
async def submit_item(
    definition: str,
    payload: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
):
    """
    Submit a new item. Workflows with approval routing (orders) are
    validated and routed right after the item is stored.
    """
    return await _submit(_get_service(definition), payload, actor)


# ==================== READS ====================

@router.get("/{definition}/meta")
async def get_workflow_meta(definition: str):
    """States, transitions, kinds and permissions of a workflow."""
    return _get_service(definition).describe()


@router.get("/{definition}/items")
async def list_items(
    definition: str,
    status: str = Query(...),
    kind: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
):
    """List items in a given status."""
    service = _get_service(definition)
    filters = {"kind": kind} if kind else None
    try:
        items = await service.list_by_status(status, filters, actor=actor, limit=limit)
    except WorkflowError as e:
        raise _http_error(e)
    return {"items": [item.to_dict() for item in items], "total": len(items)}


@router.get("/{definition}/assigned/{identity}")
async def list_assigned(
    definition: str,
    identity: str,
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
):
    """List items assigned to an identity."""
    service = _get_service(definition)
    filters = {"status": status} if status else None
    try:
        items = await service.list_assigned_to(identity, filters, actor=actor, limit=limit)
    except WorkflowError as e:
        raise _http_error(e)
    return {"items": [item.to_dict() for item in items], "total": len(items)}


@router.get("/{definition}/items/{item_id}")
async def get_item(definition: str, item_id: str, actor: Actor = Depends(get_current_actor)):
    service = _get_service(definition)
    try:
        item = await service.get_by_id(item_id, actor=actor)
    except WorkflowError as e:
        raise _http_error(e)
    data = item.to_dict()
    data["seconds_in_status"] = audit_trail.time_in_status(item, item.status)
    return data


# ==================== TRANSITIONS ====================

@router.post("/{definition}/items/{item_id}/assign")
async def assign_item(
    definition: str,
    item_id: str,
    request: AssignRequest,
    actor: Actor = Depends(get_current_actor),
):
    """Assign an item. Without an assignee the routing table picks one."""
    service = _get_service(definition)
    try:
        return await service.assign(item_id, request.assignee, actor)
    except WorkflowError as e:
        raise _http_error(e)


@router.post("/{definition}/items/{item_id}/status")
async def update_item_status(
    definition: str,
    item_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
):
    service = _get_service(definition)
    try:
        return await service.update_status(item_id, request.status, actor, notes=request.notes)
    except WorkflowError as e:
        raise _http_error(e)


@router.post("/{definition}/items/{item_id}/resolve")
async def resolve_item(
    definition: str,
    item_id: str,
    request: ResolveRequest,
    actor: Actor = Depends(get_current_actor),
):
    service = _get_service(definition)
    try:
        return await service.resolve(item_id, request.model_dump(exclude_none=True), actor)
    except WorkflowError as e:
        raise _http_error(e)


@router.post("/{definition}/items/{item_id}/route")
async def route_item(definition: str, item_id: str, actor: Actor = Depends(get_current_actor)):
    """Re-run approval routing for an item (orders)."""
    service = _get_service(definition)
    try:
        return await service.route_for_approval(item_id, actor=actor)
    except WorkflowError as e:
        raise _http_error(e)
