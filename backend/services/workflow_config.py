"""
Workflow Hub - Workflow Engine Configuration

All tunables for the workflow engine are read from environment variables
(a local .env file is loaded first). Module-level constants hold the
process defaults; load_settings() snapshots them into a WorkflowSettings
object that server.py hands to the services it builds.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


def _env_json(name: str, default):
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return default


# =============================================================================
# DATABASE
# =============================================================================

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "workflow_hub")

# =============================================================================
# CACHE
# =============================================================================

CACHE_TTL_SECONDS = float(os.environ.get("WORKFLOW_CACHE_TTL_SECONDS", "300"))
CACHE_CAPACITY = int(os.environ.get("WORKFLOW_CACHE_CAPACITY", "100"))

# =============================================================================
# NOTIFICATIONS
# =============================================================================

NOTIFICATION_PROVIDER = os.environ.get("NOTIFICATION_PROVIDER", "mock").lower()
NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "5"))
NOTIFICATIONS_IN_BACKGROUND = _env_bool("NOTIFICATIONS_IN_BACKGROUND", "false")

MAYTAPI_URL = os.environ.get("MAYTAPI_URL", "")
MAYTAPI_API_KEY = os.environ.get("MAYTAPI_API_KEY", "")
WHATSAPP_RATE_LIMIT_SECONDS = float(os.environ.get("WHATSAPP_RATE_LIMIT_SECONDS", "1"))

# Comma separated phone numbers notified on every new submission
ADMIN_CONTACTS = [c.strip() for c in os.environ.get("ADMIN_PHONE", "").split(",") if c.strip()]

# {"tech1@anwar.com": "+8801700000001", ...}
CONTACT_DIRECTORY = _env_json("WORKFLOW_CONTACTS", {})

# =============================================================================
# ORDER APPROVAL
# =============================================================================

AUTO_APPROVAL_MAX_VOLUME = float(os.environ.get("AUTO_APPROVAL_MAX_VOLUME", "100"))

# =============================================================================
# AUTH
# =============================================================================

JWT_SECRET = os.environ.get("JWT_SECRET", "workflow-hub-secret-key")
JWT_TTL_SECONDS = int(os.environ.get("JWT_TTL_SECONDS", "86400"))

# [{"username": "admin", "password": "admin", "identity": "admin@anwar.com",
#   "name": "Hub Admin", "role": "admin"}]
AUTH_USERS = _env_json("WORKFLOW_USERS", [
    {
        "username": "admin",
        "password": "admin",
        "identity": "admin@anwar.com",
        "name": "Hub Admin",
        "role": "admin",
    },
])


@dataclass
class WorkflowSettings:
    """Snapshot of the engine configuration."""
    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    cache_capacity: int = CACHE_CAPACITY
    notification_provider: str = NOTIFICATION_PROVIDER
    notification_timeout_seconds: float = NOTIFICATION_TIMEOUT_SECONDS
    notifications_in_background: bool = NOTIFICATIONS_IN_BACKGROUND
    maytapi_url: str = MAYTAPI_URL
    maytapi_api_key: str = MAYTAPI_API_KEY
    whatsapp_rate_limit_seconds: float = WHATSAPP_RATE_LIMIT_SECONDS
    admin_contacts: List[str] = field(default_factory=lambda: list(ADMIN_CONTACTS))
    contact_directory: Dict[str, str] = field(default_factory=lambda: dict(CONTACT_DIRECTORY))
    auto_approval_max_volume: float = AUTO_APPROVAL_MAX_VOLUME


def load_settings() -> WorkflowSettings:
    settings = WorkflowSettings()
    logger.info(
        "Workflow settings loaded: cache_ttl=%s, cache_capacity=%s, notifications=%s, background=%s",
        settings.cache_ttl_seconds, settings.cache_capacity,
        settings.notification_provider, settings.notifications_in_background
    )
    return settings
