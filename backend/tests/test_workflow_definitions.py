"""
Unit tests for workflow definitions: payload schemas, routing tables,
order helpers and the kind registry.
"""
import re

import pytest

from services.field_validator import FieldValidator
from services.workflow_definitions import (
    DISPUTE_DEFINITION,
    ORDER_DEFINITION,
    WORKFLOW_DEFINITIONS,
    definition_for_kind,
    estimate_order_processing,
    generate_order_number,
    get_definition,
    volume_auto_approval,
)
from services.workflow_errors import ValidationError
from services.workflow_models import Actor, WorkflowItem


VALIDATOR = FieldValidator()


def valid_order(**overrides):
    data = {
        "projectId": "PST-123456",
        "totalSalesVolume": 50,
        "uom": "Bags",
        "detailedProjectAddress": "House 12, Road 5, Gulshan, Dhaka",
        "dealerMemo": "Urgent site delivery",
        "emailAddress": "engineer@example.com",
        "engineerEligible": False,
    }
    data.update(overrides)
    return data


class TestDisputePayload:
    """Dispute submissions: required fields, enums, length bounds."""

    def test_valid_payload(self):
        kind, payload = DISPUTE_DEFINITION.parse_payload(
            {"kind": "Technical", "title": "T", "description": "D", "priority": "high"}, VALIDATOR
        )
        assert kind == "technical"
        assert payload == {"title": "T", "description": "D", "priority": "high"}

    def test_type_alias_for_kind(self):
        kind, _ = DISPUTE_DEFINITION.parse_payload(
            {"type": "billing", "title": "T", "description": "D", "priority": "low"}, VALIDATOR
        )
        assert kind == "billing"

    def test_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_payload({"kind": "technical", "title": "T", "priority": "high"}, VALIDATOR)
        assert exc_info.value.code == "VALIDATION_MISSING_FIELD"
        assert exc_info.value.context["field"] == "description"

    def test_invalid_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_payload(
                {"kind": "refund", "title": "T", "description": "D", "priority": "high"}, VALIDATOR
            )
        assert exc_info.value.code == "VALIDATION_INVALID_TYPE"

    def test_invalid_priority(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_payload(
                {"kind": "other", "title": "T", "description": "D", "priority": "asap"}, VALIDATOR
            )
        assert exc_info.value.code == "VALIDATION_INVALID_PRIORITY"

    def test_title_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_payload(
                {"kind": "other", "title": "x" * 201, "description": "D", "priority": "low"}, VALIDATOR
            )
        assert exc_info.value.code == "VALIDATION_TITLE_TOO_LONG"

    def test_description_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_payload(
                {"kind": "other", "title": "T", "description": "x" * 2001, "priority": "low"}, VALIDATOR
            )
        assert exc_info.value.code == "VALIDATION_DESCRIPTION_TOO_LONG"


class TestDisputeResolution:

    def test_summary_required(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_resolution({"summary": "  "})
        assert exc_info.value.code == "VALIDATION_MISSING_RESOLUTION_SUMMARY"

    def test_summary_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            DISPUTE_DEFINITION.parse_resolution({"summary": "x" * 1001})
        assert exc_info.value.code == "VALIDATION_RESOLUTION_SUMMARY_TOO_LONG"

    def test_actions_default(self):
        assert DISPUTE_DEFINITION.parse_resolution({"summary": "fixed"}) == {"summary": "fixed", "actions": []}


class TestOrderPayload:
    """Order submissions: business unit derived from the unit of measure."""

    def test_bags_is_acl(self):
        kind, payload = ORDER_DEFINITION.parse_payload(valid_order(), VALIDATOR)
        assert kind == "ACL"
        assert payload["project_id"] == "PST-123456"
        assert payload["engineer_eligible"] is False

    def test_mt_is_ail(self):
        kind, _ = ORDER_DEFINITION.parse_payload(valid_order(uom="MT"), VALIDATOR)
        assert kind == "AIL"

    def test_snake_case_accepted(self):
        data = {
            "project_id": "PST-1234567",
            "total_sales_volume": 10,
            "uom": "MT",
            "detailed_project_address": "Plot 7, Sector 3, Uttara, Dhaka",
            "dealer_memo": "Deliver before noon",
            "email_address": "dealer@example.com",
            "engineer_eligible": True,
        }
        kind, payload = ORDER_DEFINITION.parse_payload(data, VALIDATOR)
        assert kind == "AIL"
        assert payload["total_sales_volume"] == 10

    def test_false_engineer_flag_is_not_missing(self):
        """A boolean False is a value, not a blank field."""
        ORDER_DEFINITION.parse_payload(valid_order(engineerEligible=False), VALIDATOR)

    def test_missing_field(self):
        data = valid_order()
        del data["dealerMemo"]
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(data, VALIDATOR)
        assert exc_info.value.context["field"] == "dealerMemo"

    def test_bad_project_id(self):
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(valid_order(projectId="PST-12"), VALIDATOR)
        assert exc_info.value.code == "INVALID_PROJECT_ID_FORMAT"

    def test_non_positive_volume(self):
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(valid_order(totalSalesVolume=0), VALIDATOR)
        assert exc_info.value.code == "INVALID_SALES_VOLUME"

    def test_bad_uom(self):
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(valid_order(uom="kg"), VALIDATOR)
        assert exc_info.value.code == "INVALID_UOM"

    def test_bad_email(self):
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(valid_order(emailAddress="not-an-email"), VALIDATOR)
        assert exc_info.value.code == "VALIDATION_INVALID_EMAIL"

    def test_kind_must_match_uom(self):
        with pytest.raises(ValidationError) as exc_info:
            ORDER_DEFINITION.parse_payload(valid_order(kind="AIL"), VALIDATOR)
        assert exc_info.value.code == "VALIDATION_INVALID_BUSINESS_UNIT"

    def test_site_visit_image_limits(self):
        image = {"fileName": "site.jpg", "fileSize": 6 * 1024 * 1024, "mimeType": "image/jpeg"}
        with pytest.raises(ValidationError):
            ORDER_DEFINITION.parse_payload(valid_order(siteVisitImage=image), VALIDATOR)

        image["fileSize"] = 1024
        _, payload = ORDER_DEFINITION.parse_payload(valid_order(siteVisitImage=image), VALIDATOR)
        assert payload["site_visit_image"]["mime_type"] == "image/jpeg"

    def test_delivery_note_slip_format(self):
        with pytest.raises(ValidationError):
            ORDER_DEFINITION.parse_payload(valid_order(deliveryNoteSlip="abc"), VALIDATOR)
        ORDER_DEFINITION.parse_payload(valid_order(deliveryNoteSlip="DN-2026-0001"), VALIDATOR)


class TestOrderHelpers:

    def test_order_number_format(self):
        assert re.match(r"^ACL-\d{6}-\d{3}$", generate_order_number("Bags"))
        assert re.match(r"^AIL-\d{6}-\d{3}$", generate_order_number("MT"))

    def test_prepare_adds_order_number(self):
        payload = ORDER_DEFINITION.prepare_payload({"uom": "MT"})
        assert payload["order_number"].startswith("AIL-")

    @pytest.mark.parametrize("uom,volume,expected", [
        ("Bags", 10, "24 hours"),
        ("MT", 10, "48 hours"),
        ("Bags", 1001, "36 hours"),
        ("MT", 5000, "72 hours"),
    ])
    def test_processing_estimate(self, uom, volume, expected):
        assert estimate_order_processing({"uom": uom, "total_sales_volume": volume}) == expected

    def test_approval_resolution_defaults(self):
        assert ORDER_DEFINITION.parse_resolution({})["summary"] == "Order approved"
        assert ORDER_DEFINITION.parse_resolution({"notes": "ok by CRO"})["summary"] == "ok by CRO"


class TestAutoApprovalPredicate:
    """Volume threshold AND verified submitter; nothing hardcoded."""

    def make_item(self, volume, verified):
        return WorkflowItem(
            id="ORD-000001", workflow="orders", kind="ACL", status="validated",
            payload={"total_sales_volume": volume},
            submitted_by=Actor("dealer@example.com", "dealer", verified=verified),
            history=(), created_at="", last_updated="",
        )

    def test_small_and_verified(self):
        assert volume_auto_approval(100)(self.make_item(100, True)) is True

    def test_unverified_submitter(self):
        assert volume_auto_approval(100)(self.make_item(10, False)) is False

    def test_over_threshold(self):
        assert volume_auto_approval(100)(self.make_item(101, True)) is False


class TestRegistry:

    def test_definitions_by_name(self):
        assert get_definition("disputes") is DISPUTE_DEFINITION
        assert set(WORKFLOW_DEFINITIONS) == {"disputes", "orders"}
        with pytest.raises(KeyError):
            get_definition("leads")

    def test_definition_for_kind(self):
        assert definition_for_kind("technical") is DISPUTE_DEFINITION
        assert definition_for_kind("acl") is ORDER_DEFINITION
        with pytest.raises(KeyError):
            definition_for_kind("unknown")

    def test_routing_candidates(self):
        assert [a.identity for a in DISPUTE_DEFINITION.candidates_for("registration")] == \
            ["cro1@anwar.com", "cro2@anwar.com"]
        assert ORDER_DEFINITION.candidates_for("AIL")[0].role == "ail_sr"
        assert DISPUTE_DEFINITION.candidates_for("missing")[0].identity == "admin@anwar.com"

    def test_to_dict(self):
        data = ORDER_DEFINITION.to_dict()
        assert data["kinds"] == ["ACL", "AIL"]
        assert data["resolve_status"] == "approved"
        assert "submit" in data["permissions"]
