"""
Workflow Hub - Workflow Definitions

A WorkflowDefinition bundles everything that differs between business
workflows: transition table, permission table, payload schema, routing
table and message label. The WorkflowService is generic and takes one
definition; the registry below maps each item kind (category) to its
definition.

Definitions:
- disputes: kinds registration / approval / technical / billing / other
- orders: kinds ACL (uom Bags) / AIL (uom MT), with approval routing
"""

import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from services.access_control import DISPUTE_PERMISSIONS, ORDER_PERMISSIONS, PermissionTable
from services.field_validator import FieldValidator
from services.workflow_engine import (
    DISPUTE_STATE_MACHINE, ORDER_STATE_MACHINE,
    DisputeStatus, OrderStatus, StateMachine,
)
from services.workflow_errors import ValidationError


# =============================================================================
# ENUMERATIONS
# =============================================================================

class DisputeType(str, Enum):
    REGISTRATION = "registration"
    APPROVAL = "approval"
    TECHNICAL = "technical"
    BILLING = "billing"
    OTHER = "other"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class BusinessUnit(str, Enum):
    ACL = "ACL"   # Bags
    AIL = "AIL"   # MT


UOM_BUSINESS_UNITS = {"Bags": BusinessUnit.ACL.value, "MT": BusinessUnit.AIL.value}

MAX_IMAGE_BYTES = 5 * 1024 * 1024


# =============================================================================
# PAYLOAD SCHEMAS
# =============================================================================

class DisputePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(max_length=200)
    description: str = Field(max_length=2000)
    priority: DisputePriority


class SiteVisitImage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str
    file_size: int = Field(gt=0, le=MAX_IMAGE_BYTES)
    mime_type: Literal["image/jpeg", "image/png"]


class OrderPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    project_id: str = Field(pattern=r"^PST-[0-9]{6,}$")
    total_sales_volume: float = Field(gt=0)
    uom: Literal["Bags", "MT"]
    detailed_project_address: str = Field(min_length=20)
    dealer_memo: str = Field(min_length=10)
    site_visit_image: Optional[SiteVisitImage] = None
    email_address: str
    engineer_eligible: bool
    delivery_note_slip: Optional[str] = Field(default=None, pattern=r"^[A-Z0-9-]{8,20}$")


class ResolutionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(max_length=1000)
    actions: List[str] = Field(default_factory=list)


# Error code per offending field; anything else is VALIDATION_INVALID_FIELD
FIELD_ERROR_CODES = {
    "title": "VALIDATION_TITLE_TOO_LONG",
    "description": "VALIDATION_DESCRIPTION_TOO_LONG",
    "priority": "VALIDATION_INVALID_PRIORITY",
    "project_id": "INVALID_PROJECT_ID_FORMAT",
    "projectId": "INVALID_PROJECT_ID_FORMAT",
    "uom": "INVALID_UOM",
    "total_sales_volume": "INVALID_SALES_VOLUME",
    "totalSalesVolume": "INVALID_SALES_VOLUME",
    "summary": "VALIDATION_RESOLUTION_SUMMARY_TOO_LONG",
}


def _parse(model, data: Dict[str, Any], entity: str):
    """Validate `data` against a pydantic model, translating the first error."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = str(error["loc"][0]) if error.get("loc") else "payload"
        raise ValidationError(
            f"Invalid value for '{field}': {error['msg']}",
            code=FIELD_ERROR_CODES.get(field, "VALIDATION_INVALID_FIELD"),
            context={"field": field, "entity": entity, "errors": len(exc.errors())},
        ) from exc


def _required_view(model, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Required fields of a model keyed by alias, accepting either alias or field name."""
    view, required = {}, []
    for name, info in model.model_fields.items():
        key = info.alias or name
        view[key] = data.get(key, data.get(name))
        if info.is_required():
            required.append(key)
    return view, required


# =============================================================================
# DEFINITION
# =============================================================================

@dataclass(frozen=True)
class Assignee:
    identity: str
    role: str
    name: Optional[str] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """Everything the generic WorkflowService needs to run one workflow."""
    name: str
    label: str
    id_prefix: str
    kinds: Tuple[str, ...]
    state_machine: StateMachine
    permissions: PermissionTable
    assign_status: str
    resolve_status: str
    routing: Mapping[str, Tuple[Assignee, ...]]
    default_assignee: Assignee
    parse_payload: Callable[[Dict[str, Any], FieldValidator], Tuple[str, Dict[str, Any]]]
    parse_resolution: Callable[[Dict[str, Any]], Dict[str, Any]]
    prepare_payload: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    processing_estimate: Optional[Callable[[Dict[str, Any]], str]] = None
    validated_status: Optional[str] = None
    approval_routing: bool = False

    @property
    def start_status(self) -> str:
        return self.state_machine.start_status

    def candidates_for(self, kind: str) -> Tuple[Assignee, ...]:
        return tuple(self.routing.get(kind) or ()) or (self.default_assignee,)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "kinds": list(self.kinds),
            "start_status": self.start_status,
            "assign_status": self.assign_status,
            "resolve_status": self.resolve_status,
            "state_machine": self.state_machine.to_dict(),
            "permissions": {op: sorted(roles) for op, roles in self.permissions.items()},
        }


# =============================================================================
# DISPUTES
# =============================================================================

def parse_dispute_payload(data: Dict[str, Any], validator: FieldValidator) -> Tuple[str, Dict[str, Any]]:
    data = dict(data or {})
    if "kind" not in data and "type" in data:
        data["kind"] = data["type"]

    validator.assert_required(data, ["kind", "title", "description", "priority"], "Dispute")

    kind = str(data["kind"]).strip().lower()
    valid_types = [t.value for t in DisputeType]
    if kind not in valid_types:
        raise ValidationError(
            f"Invalid dispute type: {data['kind']}",
            code="VALIDATION_INVALID_TYPE",
            context={"field": "kind", "type": data["kind"], "valid_types": valid_types},
        )

    payload = _parse(DisputePayload, data, "Dispute")
    return kind, payload.model_dump(mode="json")


def parse_dispute_resolution(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data or {})
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ValidationError(
            "Resolution summary is required",
            code="VALIDATION_MISSING_RESOLUTION_SUMMARY",
            context={"field": "summary"},
        )
    return _parse(ResolutionPayload, data, "Resolution").model_dump()


DISPUTE_ROUTING = {
    DisputeType.REGISTRATION.value: (Assignee("cro1@anwar.com", "cro"), Assignee("cro2@anwar.com", "cro")),
    DisputeType.APPROVAL.value: (Assignee("bdo1@anwar.com", "bdo"), Assignee("bdo2@anwar.com", "bdo")),
    DisputeType.TECHNICAL.value: (Assignee("tech1@anwar.com", "tech"), Assignee("tech2@anwar.com", "tech")),
    DisputeType.BILLING.value: (Assignee("billing@anwar.com", "billing"),),
    DisputeType.OTHER.value: (Assignee("admin@anwar.com", "admin"),),
}

DISPUTE_DEFINITION = WorkflowDefinition(
    name="disputes",
    label="Dispute",
    id_prefix="DSP",
    kinds=tuple(t.value for t in DisputeType),
    state_machine=DISPUTE_STATE_MACHINE,
    permissions=DISPUTE_PERMISSIONS,
    assign_status=DisputeStatus.ASSIGNED.value,
    resolve_status=DisputeStatus.RESOLVED.value,
    routing=DISPUTE_ROUTING,
    default_assignee=Assignee("admin@anwar.com", "admin"),
    parse_payload=parse_dispute_payload,
    parse_resolution=parse_dispute_resolution,
)


# =============================================================================
# ORDERS
# =============================================================================

def parse_order_payload(data: Dict[str, Any], validator: FieldValidator) -> Tuple[str, Dict[str, Any]]:
    data = dict(data or {})
    view, required = _required_view(OrderPayload, data)
    validator.assert_required(view, required, "Order")

    email = view.get("emailAddress")
    if not validator.is_valid_email(email):
        raise ValidationError(
            "Invalid email address format.",
            code="VALIDATION_INVALID_EMAIL",
            context={"field": "emailAddress"},
        )

    payload = _parse(OrderPayload, data, "Order")
    kind = UOM_BUSINESS_UNITS[payload.uom]

    requested = data.get("kind")
    if requested and str(requested).upper() != kind:
        raise ValidationError(
            f"Business unit {requested} does not match unit of measure {payload.uom}",
            code="VALIDATION_INVALID_BUSINESS_UNIT",
            context={"field": "kind", "kind": requested, "uom": payload.uom},
        )
    return kind, payload.model_dump(mode="json")


def parse_order_approval(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data or {})
    if not data.get("summary"):
        data["summary"] = data.get("notes") or "Order approved"
    return _parse(ResolutionPayload, data, "Approval").model_dump()


def generate_order_number(uom: str) -> str:
    prefix = BusinessUnit.ACL.value if uom == "Bags" else BusinessUnit.AIL.value
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"{prefix}-{timestamp}-{random.randint(0, 999):03d}"


def prepare_order_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    prepared = dict(payload)
    prepared["order_number"] = generate_order_number(payload["uom"])
    return prepared


def estimate_order_processing(payload: Dict[str, Any]) -> str:
    base_hours = 24 if payload.get("uom") == "Bags" else 48
    multiplier = 1.5 if payload.get("total_sales_volume", 0) > 1000 else 1
    return f"{math.ceil(base_hours * multiplier)} hours"


ORDER_ROUTING = {
    BusinessUnit.ACL.value: (Assignee("acl.sr@anwar.com", "acl_sr", "ACL Sales Representative"),),
    BusinessUnit.AIL.value: (Assignee("ail.sr@anwar.com", "ail_sr", "AIL Sales Representative"),),
}

ORDER_DEFINITION = WorkflowDefinition(
    name="orders",
    label="Order",
    id_prefix="ORD",
    kinds=tuple(u.value for u in BusinessUnit),
    state_machine=ORDER_STATE_MACHINE,
    permissions=ORDER_PERMISSIONS,
    assign_status=OrderStatus.PENDING_APPROVAL.value,
    resolve_status=OrderStatus.APPROVED.value,
    routing=ORDER_ROUTING,
    default_assignee=Assignee("cro@anwar.com", "cro", "Customer Relations Officer"),
    parse_payload=parse_order_payload,
    parse_resolution=parse_order_approval,
    prepare_payload=prepare_order_payload,
    processing_estimate=estimate_order_processing,
    validated_status=OrderStatus.VALIDATED.value,
    approval_routing=True,
)


# =============================================================================
# REGISTRY
# =============================================================================

WORKFLOW_DEFINITIONS: Dict[str, WorkflowDefinition] = {
    DISPUTE_DEFINITION.name: DISPUTE_DEFINITION,
    ORDER_DEFINITION.name: ORDER_DEFINITION,
}

KIND_REGISTRY: Dict[str, WorkflowDefinition] = {
    kind: definition
    for definition in WORKFLOW_DEFINITIONS.values()
    for kind in definition.kinds
}


def get_definition(name: str) -> WorkflowDefinition:
    definition = WORKFLOW_DEFINITIONS.get(name)
    if definition is None:
        raise KeyError(f"Unknown workflow: {name}")
    return definition


def definition_for_kind(kind: str) -> WorkflowDefinition:
    definition = KIND_REGISTRY.get(kind) or KIND_REGISTRY.get(str(kind).lower()) or KIND_REGISTRY.get(str(kind).upper())
    if definition is None:
        raise KeyError(f"No workflow handles kind: {kind}")
    return definition


# =============================================================================
# AUTO-APPROVAL
# =============================================================================

def volume_auto_approval(max_volume: float) -> Callable[[Any], bool]:
    """
    Default order auto-approval rule: small volume AND a verified submitter.

    Returns a predicate over a WorkflowItem; the service is handed the
    predicate at construction so deployments can swap the rule.
    """
    def predicate(item) -> bool:
        volume = item.payload.get("total_sales_volume") or 0
        return volume <= max_volume and bool(item.submitted_by.verified)
    return predicate
