"""
Workflow Hub - Main Server

Entry point. Routes are organized in /routes/, engine services in /services/.
"""

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from contextlib import asynccontextmanager
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ==================== ROUTERS ====================
from routes import auth, workflows

# ==================== SERVICES ====================
from services.field_validator import FieldValidator
from services.id_service import MongoIdIssuer
from services.notification_service import ContactDirectory, NotificationDispatcher, create_transport
from services.repository import MongoRepository
from services.workflow_cache import WorkflowCache
from services.workflow_config import DB_NAME, MONGO_URL, WorkflowSettings, load_settings
from services.workflow_definitions import WORKFLOW_DEFINITIONS, volume_auto_approval
from services.workflow_service import WorkflowService

db = None
mongo_client = None
transport = None
workflow_services = {}


def build_workflow_services(database, settings: WorkflowSettings, notification_transport) -> dict:
    """One WorkflowService per registered definition, sharing the collaborators."""
    repository = MongoRepository(database)
    id_issuer = MongoIdIssuer(
        database, {name: d.id_prefix for name, d in WORKFLOW_DEFINITIONS.items()}
    )
    validator = FieldValidator()
    dispatcher = NotificationDispatcher(notification_transport, settings.notification_timeout_seconds)
    contacts = ContactDirectory(settings.contact_directory, settings.admin_contacts)
    auto_approval = volume_auto_approval(settings.auto_approval_max_volume)

    services = {}
    for name, definition in WORKFLOW_DEFINITIONS.items():
        services[name] = WorkflowService(
            definition,
            repository=repository,
            id_issuer=id_issuer,
            validator=validator,
            dispatcher=dispatcher,
            contacts=contacts,
            cache=WorkflowCache(settings.cache_ttl_seconds, settings.cache_capacity),
            auto_approval=auto_approval if definition.approval_routing else None,
            notifications_in_background=settings.notifications_in_background,
        )
    return services


# ==================== LIFESPAN ====================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global db, mongo_client, transport, workflow_services

    # Startup
    logger.info("Starting Workflow Hub...")
    settings = load_settings()

    # Connect to MongoDB
    mongo_client = AsyncIOMotorClient(MONGO_URL)
    db = mongo_client[DB_NAME]

    # Collaborators are built once; a misconfigured transport fails startup
    transport = create_transport(
        settings.notification_provider,
        db=db,
        api_url=settings.maytapi_url,
        api_key=settings.maytapi_api_key,
        rate_limit_seconds=settings.whatsapp_rate_limit_seconds,
    )
    workflow_services = build_workflow_services(db, settings, transport)
    workflows.set_dependencies(workflow_services)

    # Create indexes
    await MongoRepository(db).create_indexes(list(WORKFLOW_DEFINITIONS))

    logger.info("Workflow Hub started: workflows=%s", ", ".join(workflow_services))

    yield

    # Shutdown
    logger.info("Shutting down Workflow Hub...")
    for service in workflow_services.values():
        await service.drain()
    if transport:
        await transport.close()
    if mongo_client:
        mongo_client.close()


# ==================== APP SETUP ====================
app = FastAPI(
    title="Workflow Hub",
    description="Dispute and order workflows with audited state transitions",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API Router with /api prefix
api_router = APIRouter(prefix="/api")
api_router.include_router(auth.router)
api_router.include_router(workflows.router)
app.include_router(api_router)


# ==================== ROOT ENDPOINTS ====================
@app.get("/")
async def root():
    return {
        "service": "Workflow Hub",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/api/health")
async def health():
    return {
        "status": "healthy",
        "service": "workflow-hub",
        "workflows": {name: service.cache.stats() for name, service in workflow_services.items()},
    }
