"""
Firearm Licence & Application Tracker API
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from utils import config
from utils.database import client, RecordStore, get_default_store
from utils.errors import TrackerError
from utils.helpers import Clock, error_messages, get_monitor, utc_now
from utils.storage import load_applications, load_firearms, load_notification_settings
from routes import firearms_router, applications_router, notifications_router
from services.notification_capability import NotificationCapability, create_capability
from services.notification_scheduler import NotificationScheduler
from services.server_monitor import ServerStatusMonitor
from services.status_fetcher import StatusFetcher

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============== ERROR HANDLERS ==============

async def tracker_error_handler(request: Request, exc: TrackerError):
    content = {"detail": exc.message, "kind": exc.kind}
    errors = getattr(exc, "errors", None)
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = error_messages(exc)
    return JSONResponse(
        status_code=422,
        content={"detail": errors[0]["message"] if errors else "Invalid request", "kind": "validation", "errors": errors}
    )


# ============== CORE ROUTES ==============

api_router = APIRouter()


@api_router.get("/")
async def root():
    return {"message": "Firearm Licence & Application Tracker API", "status": "running"}


@api_router.get("/health")
async def health(request: Request):
    capability: NotificationCapability = request.app.state.capability
    return {
        "status": "healthy",
        "notifications_available": capability.available,
        "monitor_running": request.app.state.monitor.running,
    }


@api_router.get("/server-status")
async def server_status(refresh: bool = False, monitor: ServerStatusMonitor = Depends(get_monitor)):
    """Latest SAPS reachability result; ?refresh=true probes immediately"""
    status = await monitor.check_now() if refresh or monitor.status.last_checked is None else monitor.status
    return status.model_dump(mode="json")


# ============== LIFECYCLE ==============

async def startup(app: FastAPI):
    # The persisted schedule is only a cache of the records; rebuild it
    store = app.state.store
    try:
        results = await app.state.scheduler.reconcile(
            await load_firearms(store),
            await load_applications(store),
            await load_notification_settings(store)
        )
        logger.info(
            f"Startup reconcile: {results['firearms'].reminders} firearm and "
            f"{results['applications'].reminders} application reminders"
        )
    except TrackerError as e:
        logger.error(f"Startup reconcile failed: {e}")

    if app.state.run_background:
        app.state.monitor.start()
        await app.state.capability.start()


async def shutdown(app: FastAPI):
    await app.state.monitor.stop()
    await app.state.capability.stop()
    if app.state.owns_client:
        client.close()


# ============== APP FACTORY ==============

def create_app(
    store: RecordStore = None,
    capability: NotificationCapability = None,
    fetcher: StatusFetcher = None,
    monitor: ServerStatusMonitor = None,
    clock: Clock = utc_now,
    run_background: bool = True
) -> FastAPI:
    """
    Build the API with its services. Tests pass their own store, capability
    and fetcher; run_background=False keeps the polling loops off.
    """
    owns_client = store is None
    store = store if store is not None else get_default_store()
    capability = capability if capability is not None else create_capability(clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup(app)
        yield
        await shutdown(app)

    app = FastAPI(title="Firearm Licence & Application Tracker", lifespan=lifespan)
    app.state.run_background = run_background
    app.state.owns_client = owns_client
    app.state.store = store
    app.state.capability = capability
    app.state.scheduler = NotificationScheduler(store, capability, clock=clock)
    app.state.fetcher = fetcher if fetcher is not None else StatusFetcher(clock=clock)
    app.state.monitor = monitor if monitor is not None else ServerStatusMonitor(clock=clock)
    app.state.clock = clock

    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Include routers with /api prefix
    app.include_router(api_router, prefix="/api")
    app.include_router(firearms_router, prefix="/api")
    app.include_router(applications_router, prefix="/api")
    app.include_router(notifications_router, prefix="/api")

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
