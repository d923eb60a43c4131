"""
Order fulfillment service
Order placement, deferred delivery pricing, invoicing and payment ledger

Run with ``uvicorn fulfillment.main:create_app --factory``.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fulfillment import __version__
from fulfillment.api.errors import register_error_handlers
from fulfillment.api.invoice_routes import router as invoice_router
from fulfillment.api.product_routes import router as product_router
from fulfillment.api.routes import router as order_router
from fulfillment.application import InventoryService, InvoiceService, OrderWorkflowService
from fulfillment.application.ports import ClientDirectory, EventBus, Notifier, PersistenceStore
from fulfillment.core_settings import Settings, get_settings
from fulfillment.infrastructure import (
    EmailNotifier,
    InProcessEventBus,
    SqlAlchemyStore,
    SqlClientDirectory,
    build_engine,
    build_sessionmaker,
    init_models,
)
from shared.core import RequestLoggingMiddleware, get_logger, setup_logging

SERVICE_DESCRIPTION = "Merchant order workflow and invoicing service"

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[PersistenceStore] = None,
    clients: Optional[ClientDirectory] = None,
    notifier: Optional[Notifier] = None,
    events_bus: Optional[EventBus] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(service_name=settings.SERVICE_NAME, level=settings.LOG_LEVEL)

    engine = None
    if store is None or clients is None:
        engine = build_engine(settings.database_url)
        session_factory = build_sessionmaker(engine)
        store = store or SqlAlchemyStore(session_factory)
        clients = clients or SqlClientDirectory(session_factory)
    notifier = notifier or EmailNotifier(settings)
    events_bus = events_bus or InProcessEventBus()

    order_service = OrderWorkflowService(store, clients, notifier, events_bus, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management"""
        logger.info(f"Starting {settings.SERVICE_NAME} version {__version__}")
        if engine is not None:
            try:
                init_models(engine)
                logger.info("Database models initialized")
            except Exception as e:
                logger.error(f"Failed to initialize database models: {e}")
                raise

        yield

        logger.info(f"Shutting down {settings.SERVICE_NAME}")
        await order_service.wait_for_notifications()
        if engine is not None:
            engine.dispose()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    app.state.settings = settings
    app.state.events = events_bus
    app.state.order_service = order_service
    app.state.invoice_service = InvoiceService(store, clients, notifier, events_bus, settings)
    app.state.inventory_service = InventoryService(store, events_bus, settings)

    app.include_router(order_router)
    app.include_router(invoice_router)
    app.include_router(product_router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": settings.SERVICE_NAME,
            "version": __version__,
            "status": "running",
            "docs": "/api/docs",
        }

    return app
