"""
Unit tests for notification transports, templates and the dispatcher.
"""
import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from services.notification_service import (
    ContactDirectory,
    MockNotificationTransport,
    NotificationDispatcher,
    NotificationEvent,
    NotificationProvider,
    NotificationTransport,
    WhatsAppTransport,
    create_transport,
    mask_contact,
    render_message,
)
from services.workflow_errors import NotificationError
from services.workflow_models import Actor, WorkflowItem


def make_item(**changes):
    item = WorkflowItem(
        id="DSP-000007",
        workflow="disputes",
        kind="technical",
        status="submitted",
        payload={"title": "Login fails", "description": "D", "priority": "high"},
        submitted_by=Actor("dealer@example.com", "dealer", name="Dealer One"),
        history=(),
        created_at="2026-01-01T00:00:00+00:00",
        last_updated="2026-01-01T00:00:00+00:00",
    )
    return item.with_changes(**changes) if changes else item


class FlakyTransport(NotificationTransport):
    """Fails for selected recipients, hangs for others."""

    def __init__(self, failing=(), hanging=()):
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.attempted = []

    async def send(self, contact, message):
        self.attempted.append(contact)
        if contact in self.failing:
            raise NotificationError("provider rejected", code="API_WHATSAPP_SEND_FAILED")
        if contact in self.hanging:
            await asyncio.sleep(10)
        return f"id-{contact}"


class TestMaskContact:

    def test_masks_all_but_last_four(self):
        assert mask_contact("+8801700000001") == "**********0001"

    def test_short_and_empty(self):
        assert mask_contact("123") == "****"
        assert mask_contact("") == ""


class TestRenderMessage:
    """Templates are pure functions of the snapshot."""

    def test_submission(self):
        message = render_message(NotificationEvent.SUBMITTED, make_item(), "Dispute")
        assert "New Dispute Submitted" in message
        assert "ID: DSP-000007" in message
        assert "Priority: HIGH" in message
        assert "Submitted by: Dealer One" in message

    def test_assignment(self):
        message = render_message(
            NotificationEvent.ASSIGNED, make_item(status="assigned", assigned_to="tech1@anwar.com"), "Dispute"
        )
        assert "Dispute Assigned to You" in message
        assert "Assigned to: tech1@anwar.com" in message

    def test_status_change(self):
        message = render_message(NotificationEvent.STATUS_CHANGED, make_item(status="in-review"), "Dispute")
        assert "New Status: IN-REVIEW" in message

    def test_resolution(self):
        item = make_item(status="resolved", resolution={"summary": "fixed", "resolved_by": "tech1@anwar.com"})
        message = render_message(NotificationEvent.RESOLVED, item, "Dispute")
        assert "Dispute Resolved" in message
        assert "Summary: fixed" in message

    def test_order_title_falls_back_to_order_number(self):
        item = make_item(payload={"order_number": "ACL-123456-001"}, kind="ACL")
        message = render_message(NotificationEvent.SUBMITTED, item, "Order")
        assert "Title: ACL-123456-001" in message
        assert "Priority" not in message

    def test_same_snapshot_same_message(self):
        item = make_item()
        assert render_message(NotificationEvent.SUBMITTED, item) == render_message(NotificationEvent.SUBMITTED, item)


class TestMockTransport:

    @pytest.mark.asyncio
    async def test_records_messages(self):
        transport = MockNotificationTransport()
        message_id = await transport.send("+8801700000001", "hello")
        assert message_id.startswith("mock_")
        sent = transport.get_sent_messages()
        assert sent[0]["to"] == "+8801700000001"
        transport.clear_sent_messages()
        assert transport.get_sent_messages() == []

    @pytest.mark.asyncio
    async def test_logs_to_database(self):
        db = MagicMock()
        db.notification_logs.insert_one = AsyncMock()
        transport = MockNotificationTransport(db=db)
        await transport.send("+8801700000001", "hello")
        db.notification_logs.insert_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_failure_does_not_fail_send(self):
        db = MagicMock()
        db.notification_logs.insert_one = AsyncMock(side_effect=RuntimeError("down"))
        transport = MockNotificationTransport(db=db)
        assert await transport.send("+8801700000001", "hello")


class TestWhatsAppTransport:
    """Maytapi transport over httpx, exercised with httpx.MockTransport."""

    def make_transport(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WhatsAppTransport("https://api.maytapi.test/send", "key-123", rate_limit_seconds=0, client=client)

    @pytest.mark.asyncio
    async def test_successful_send(self):
        captured = {}

        def handler(request):
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "data": {"msgId": "abc"}})

        transport = self.make_transport(handler)
        assert await transport.send("+8801700000001", "hello") == "abc"
        assert captured["headers"]["x-maytapi-key"] == "key-123"
        assert captured["body"] == {"to_number": "+8801700000001", "type": "text", "message": "hello"}

    @pytest.mark.asyncio
    async def test_http_error(self):
        transport = self.make_transport(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(NotificationError) as exc_info:
            await transport.send("+8801700000001", "hello")
        assert exc_info.value.code == "API_HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_provider_reports_failure(self):
        transport = self.make_transport(lambda request: httpx.Response(200, json={"success": False, "message": "no"}))
        with pytest.raises(NotificationError) as exc_info:
            await transport.send("+8801700000001", "hello")
        assert exc_info.value.code == "API_WHATSAPP_SEND_FAILED"

    @pytest.mark.asyncio
    async def test_invalid_phone_rejected_before_request(self):
        handler = MagicMock()
        transport = self.make_transport(handler)
        with pytest.raises(NotificationError) as exc_info:
            await transport.send("call me", "hello")
        assert exc_info.value.code == "VALIDATION_INVALID_PHONE_FORMAT"
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_too_long(self):
        transport = self.make_transport(MagicMock())
        with pytest.raises(NotificationError) as exc_info:
            await transport.send("+8801700000001", "x" * 4097)
        assert exc_info.value.code == "VALIDATION_MESSAGE_TOO_LONG"

    def test_missing_configuration_fails_fast(self):
        with pytest.raises(ValueError):
            WhatsAppTransport("", "key")
        with pytest.raises(ValueError):
            create_transport("whatsapp", api_url="https://x", api_key="")


class TestCreateTransport:

    def test_mock_provider(self):
        assert isinstance(create_transport(NotificationProvider.MOCK.value), MockNotificationTransport)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_transport("carrier-pigeon")


class TestContactDirectory:

    def test_resolve_case_insensitive(self):
        contacts = ContactDirectory({"Tech1@Anwar.com": "+8801700000001"}, ["+8801900000000"])
        assert contacts.resolve("tech1@anwar.com") == "+8801700000001"
        assert contacts.resolve("unknown@anwar.com") is None
        assert contacts.resolve(None) is None
        assert contacts.admin_contacts == ["+8801900000000"]


class TestDispatcher:
    """Per-recipient isolation; notify never raises."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self):
        transport = FlakyTransport(failing={"+1"})
        outcomes = await NotificationDispatcher(transport).notify(["+1", "+2"], "hello")
        assert sorted(transport.attempted) == ["+1", "+2"]
        by_recipient = {o.recipient: o for o in outcomes}
        assert by_recipient["+1"].success is False
        assert "API_WHATSAPP_SEND_FAILED" in by_recipient["+1"].error
        assert by_recipient["+2"].success is True

    @pytest.mark.asyncio
    async def test_timeout_is_a_delivery_failure(self):
        transport = FlakyTransport(hanging={"+1"})
        outcomes = await NotificationDispatcher(transport, timeout_seconds=0.05).notify(["+1", "+2"], "hello")
        by_recipient = {o.recipient: o for o in outcomes}
        assert by_recipient["+1"].success is False
        assert "timed out" in by_recipient["+1"].error
        assert by_recipient["+2"].success is True

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_caught(self):
        transport = MagicMock()
        transport.send = AsyncMock(side_effect=RuntimeError("socket closed"))
        outcomes = await NotificationDispatcher(transport).notify(["+1"], "hello")
        assert outcomes[0].success is False
        assert "RuntimeError" in outcomes[0].error

    @pytest.mark.asyncio
    async def test_duplicates_and_blanks_skipped(self):
        transport = FlakyTransport()
        outcomes = await NotificationDispatcher(transport).notify(["+1", None, "+1", ""], "hello")
        assert transport.attempted == ["+1"]
        assert len(outcomes) == 1

    @pytest.mark.asyncio
    async def test_no_recipients(self):
        assert await NotificationDispatcher(FlakyTransport()).notify([], "hello") == []

    def test_outcome_to_dict(self):
        outcome = asyncio.run(NotificationDispatcher(FlakyTransport()).notify(["+1"], "hi"))[0]
        data = outcome.to_dict()
        assert data["recipient"] == "+1"
        assert data["message_id"] == "id-+1"
        assert data["timestamp"]
