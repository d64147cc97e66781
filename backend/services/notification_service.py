"""
Workflow Hub - Notification Service

Best-effort chat notifications for workflow transitions, with a transport
interface that can be swapped between providers (Mock, WhatsApp via Maytapi).

Delivery is per recipient: one recipient failing (error or timeout) never
stops the others and never propagates to the workflow operation. Failures
are logged with the (masked) recipient and the reason.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx

from services.field_validator import PHONE_PATTERN
from services.workflow_errors import NotificationError
from services.workflow_models import WorkflowItem

logger = logging.getLogger(__name__)

WHATSAPP_MAX_MESSAGE_LENGTH = 4096


class NotificationProvider(str, Enum):
    """Supported notification providers."""
    MOCK = "mock"
    WHATSAPP = "whatsapp"


class NotificationEvent(str, Enum):
    """Transition types that have a message template."""
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    RESOLVED = "resolved"


@dataclass
class DeliveryOutcome:
    """Result of delivering one message to one recipient."""
    recipient: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def mask_contact(contact: str) -> str:
    """Keep only the last 4 characters of a phone number for logs."""
    if not contact:
        return ""
    contact = str(contact)
    if len(contact) <= 4:
        return "****"
    return "*" * (len(contact) - 4) + contact[-4:]


# =============================================================================
# TRANSPORTS
# =============================================================================

class NotificationTransport:
    """Interface: send(contact, message) -> provider message id, raising on failure."""

    async def send(self, contact: str, message: str) -> str:
        raise NotImplementedError

    async def close(self):
        pass


class MockNotificationTransport(NotificationTransport):
    """
    Mock transport for development and testing.

    Keeps sent messages in memory and, when a database is given, stores them
    in the 'notification_logs' collection for verification.
    """

    def __init__(self, db=None):
        self.db = db
        self._sent_messages: List[Dict[str, Any]] = []

    async def send(self, contact: str, message: str) -> str:
        message_id = f"mock_{uuid.uuid4().hex[:12]}"
        record = {
            "message_id": message_id,
            "provider": NotificationProvider.MOCK.value,
            "to": contact,
            "message": message,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "status": "sent",
        }

        logger.info("[MOCK NOTIFICATION] To: %s | ID: %s", mask_contact(contact), message_id)
        self._sent_messages.append(record)

        if self.db is not None:
            try:
                await self.db.notification_logs.insert_one(dict(record))
            except Exception as e:
                logger.warning("Failed to log notification to MongoDB: %s", e)

        return message_id

    def get_sent_messages(self) -> List[Dict[str, Any]]:
        return list(self._sent_messages)

    def clear_sent_messages(self):
        self._sent_messages.clear()


class WhatsAppTransport(NotificationTransport):
    """
    WhatsApp messages through the Maytapi HTTP API.

    Messages to the same transport are spaced at least `rate_limit_seconds`
    apart. Retries and backoff are left to the caller of the API.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        rate_limit_seconds: float = 1.0,
        request_timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_url:
            raise ValueError("MAYTAPI_URL not configured")
        if not api_key:
            raise ValueError("MAYTAPI_API_KEY not configured")
        self.api_url = api_url
        self.api_key = api_key
        self.rate_limit_seconds = rate_limit_seconds
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._owns_client = client is None
        self._last_sent = 0.0
        self._rate_lock = asyncio.Lock()

    def _validate(self, contact: str, message: str):
        if not contact or not isinstance(contact, str) or not contact.strip():
            raise NotificationError("Phone number is required", code="VALIDATION_INVALID_PHONE")
        if not PHONE_PATTERN.match(contact.strip()):
            raise NotificationError(
                "Phone number contains invalid characters",
                code="VALIDATION_INVALID_PHONE_FORMAT",
                context={"phone": mask_contact(contact)},
            )
        if not message or not message.strip():
            raise NotificationError("Message is required", code="VALIDATION_INVALID_MESSAGE")
        if len(message) > WHATSAPP_MAX_MESSAGE_LENGTH:
            raise NotificationError(
                f"Message exceeds maximum length of {WHATSAPP_MAX_MESSAGE_LENGTH} characters",
                code="VALIDATION_MESSAGE_TOO_LONG",
                context={"message_length": len(message)},
            )

    async def _apply_rate_limit(self):
        async with self._rate_lock:
            loop = asyncio.get_running_loop()
            wait = self.rate_limit_seconds - (loop.time() - self._last_sent)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_sent = loop.time()

    async def send(self, contact: str, message: str) -> str:
        self._validate(contact, message)
        await self._apply_rate_limit()

        payload = {"to_number": contact.strip(), "type": "text", "message": message}
        try:
            response = await self._client.post(
                self.api_url,
                json=payload,
                headers={"x-maytapi-key": self.api_key},
            )
        except httpx.TimeoutException as e:
            raise NotificationError(
                "WhatsApp API request timed out",
                code="API_TIMEOUT",
                context={"phone": mask_contact(contact)},
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(
                f"WhatsApp API request failed: {e}",
                code="API_REQUEST_FAILED",
                context={"phone": mask_contact(contact)},
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            raise NotificationError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                code="API_HTTP_ERROR",
                context={"phone": mask_contact(contact), "status_code": response.status_code},
            )

        result = response.json()
        if not result.get("success"):
            raise NotificationError(
                f"WhatsApp API returned error: {result.get('message', 'Unknown error')}",
                code="API_WHATSAPP_SEND_FAILED",
                context={"phone": mask_contact(contact)},
            )

        message_id = str(result.get("message_id") or result.get("data", {}).get("msgId") or "unknown")
        logger.info("WhatsApp message sent: to=%s, id=%s", mask_contact(contact), message_id)
        return message_id

    async def close(self):
        if self._owns_client:
            await self._client.aclose()


def create_transport(provider: str, db=None, **options) -> NotificationTransport:
    """Build the configured transport. Fails fast on missing configuration."""
    provider_type = NotificationProvider(provider.lower())
    if provider_type == NotificationProvider.WHATSAPP:
        return WhatsAppTransport(
            api_url=options.get("api_url", ""),
            api_key=options.get("api_key", ""),
            rate_limit_seconds=options.get("rate_limit_seconds", 1.0),
        )
    return MockNotificationTransport(db=db)


# =============================================================================
# CONTACTS
# =============================================================================

class ContactDirectory:
    """Resolves actor identities (emails) to chat contacts (phone numbers)."""

    def __init__(self, contacts: Optional[Dict[str, str]] = None, admin_contacts: Optional[Iterable[str]] = None):
        self._contacts = {k.strip().lower(): v for k, v in (contacts or {}).items()}
        self.admin_contacts = list(admin_contacts or [])

    def resolve(self, identity: Optional[str]) -> Optional[str]:
        if not identity:
            return None
        return self._contacts.get(identity.strip().lower())


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

def _upper(value: Any) -> str:
    return str(value or "").upper()


def render_message(event: NotificationEvent, item: WorkflowItem, label: str = "Item") -> str:
    """Render the message for a transition. Pure function of the item snapshot."""
    payload = item.payload
    title = payload.get("title") or payload.get("order_number") or payload.get("project_id") or item.id

    if event == NotificationEvent.SUBMITTED:
        lines = [
            f"New {label} Submitted",
            "",
            f"ID: {item.id}",
            f"Type: {_upper(item.kind)}",
        ]
        if payload.get("priority"):
            lines.append(f"Priority: {_upper(payload['priority'])}")
        lines += [
            f"Title: {title}",
            f"Submitted by: {item.submitted_by.name or item.submitted_by.identity}",
            f"Time: {item.created_at}",
        ]
    elif event == NotificationEvent.ASSIGNED:
        lines = [
            f"{label} Assigned to You",
            "",
            f"ID: {item.id}",
            f"Type: {_upper(item.kind)}",
        ]
        if payload.get("priority"):
            lines.append(f"Priority: {_upper(payload['priority'])}")
        lines += [
            f"Title: {title}",
            f"Assigned to: {item.assigned_to}",
            "Please review and take action.",
        ]
    elif event == NotificationEvent.RESOLVED:
        resolution = item.resolution or {}
        lines = [
            f"{label} {item.status.replace('-', ' ').title()}",
            "",
            f"ID: {item.id}",
            f"Title: {title}",
            f"Summary: {resolution.get('summary', '')}",
            f"By: {resolution.get('resolved_by', '')}",
        ]
    else:
        lines = [
            f"{label} Status Updated",
            "",
            f"ID: {item.id}",
            f"Title: {title}",
            f"New Status: {_upper(item.status)}",
            f"Updated: {item.last_updated}",
        ]
    return "\n".join(lines)


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    """
    Fire-and-forget fan-out of one message to many recipients.

    Usage:
        dispatcher = NotificationDispatcher(MockNotificationTransport())
        outcomes = await dispatcher.notify(["+8801700000001"], "hello")
    """

    def __init__(self, transport: NotificationTransport, timeout_seconds: float = 5.0):
        self.transport = transport
        self.timeout_seconds = timeout_seconds

    async def _deliver(self, recipient: str, message: str) -> DeliveryOutcome:
        try:
            message_id = await asyncio.wait_for(
                self.transport.send(recipient, message),
                timeout=self.timeout_seconds,
            )
            return DeliveryOutcome(recipient=recipient, success=True, message_id=message_id)
        except asyncio.TimeoutError:
            reason = f"timed out after {self.timeout_seconds}s"
        except NotificationError as e:
            reason = f"{e.code}: {e.message}"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"

        logger.error("Notification delivery failed: recipient=%s, reason=%s", mask_contact(recipient), reason)
        return DeliveryOutcome(recipient=recipient, success=False, error=reason)

    async def notify(self, recipients: Iterable[str], message: str) -> List[DeliveryOutcome]:
        """Attempt every distinct recipient independently; never raises."""
        unique = []
        for recipient in recipients:
            if recipient and recipient not in unique:
                unique.append(recipient)
        if not unique:
            logger.debug("Notification skipped: no recipients")
            return []

        outcomes = await asyncio.gather(*(self._deliver(r, message) for r in unique))

        delivered = sum(1 for o in outcomes if o.success)
        logger.info("Notification dispatched: delivered=%d, failed=%d", delivered, len(outcomes) - delivered)
        return list(outcomes)
