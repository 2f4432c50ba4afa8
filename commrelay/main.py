from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from commrelay.core.config import app_logger, settings
from commrelay.core.db import AsyncSessionLocal, dispose_db, init_db
from commrelay.core.enums import DedupFailurePolicy, TraceService
from commrelay.core.exceptions.handlers import (
    database_exception_handler,
    exception_schema,
    general_exception_handler,
    not_found_exception_handler,
)
from commrelay.core.exceptions.types import (
    AppException,
    DatabaseException,
    NotFoundException,
)
from commrelay.core.services import (
    BrevoService,
    ChannelRouter,
    DeduplicationGate,
    RedisService,
    StatusStore,
    TraceCorrelator,
    TwilioService,
    build_dedup_backend,
    build_event_log,
)
from commrelay.infrastructure.messaging import MessagePublisher, start_consumers
from commrelay.infrastructure.messaging.connection import close_connection, get_connection
from commrelay.infrastructure.messaging.consumer import DeliveryExecutor
from commrelay.routers import messages_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting application...")
    running_consumers = None

    app_logger.info("Initializing database...")
    await init_db()
    app_logger.info("Database initialized successfully.")

    if settings.DEDUP_BACKEND == "redis":
        app_logger.info("Initializing Redis service...")
        await RedisService.init(settings.REDIS_URL)
        app_logger.info("Redis service initialized successfully.")

    app_logger.info(f"Starting event log ({settings.EVENT_LOG_BACKEND})...")
    event_log = build_event_log(settings)
    await event_log.start()
    app_logger.info("Event log started successfully.")

    app_logger.info("Connecting to RabbitMQ...")
    connection = await get_connection()
    publisher = MessagePublisher(connection)
    app_logger.info("RabbitMQ connected successfully.")

    status_store = StatusStore(AsyncSessionLocal)
    app.state.status_store = status_store
    app.state.channel_router = ChannelRouter(
        gate=DeduplicationGate(
            build_dedup_backend(settings.DEDUP_BACKEND),
            ttl=settings.DEDUP_TTL_SECONDS,
            failure_policy=DedupFailurePolicy(settings.DEDUP_FAILURE_POLICY),
        ),
        publisher=publisher,
        correlator=TraceCorrelator(TraceService.ROUTER, event_log),
        max_retries=settings.DELIVERY_MAX_RETRIES,
    )

    # Start delivery consumers in-process (only if enabled)
    if settings.ENABLE_MESSAGING:
        if settings.DELIVERY_MODE == "live":
            app_logger.info("Initializing provider clients...")
            await BrevoService.init(
                api_key=settings.BREVO_API_KEY,
                sender_email=settings.BREVO_SENDER_EMAIL,
                sender_name=settings.BREVO_SENDER_NAME,
            )
            await TwilioService.init(
                account_sid=settings.TWILIO_ACCOUNT_SID,
                auth_token=settings.TWILIO_AUTH_TOKEN,
            )
            app_logger.info("Provider clients initialized successfully.")

        app_logger.info("Starting message consumers...")
        executor = DeliveryExecutor(
            status_store=status_store,
            correlator=TraceCorrelator(TraceService.DELIVERY, event_log),
        )
        running_consumers = await start_consumers(connection, executor)
        app_logger.info("Message consumers started successfully.")
    else:
        app_logger.info("Messaging disabled via ENABLE_MESSAGING setting.")

    yield

    app_logger.info("Shutting down application...")

    if running_consumers is not None:
        app_logger.info("Stopping message consumers...")
        await running_consumers.stop()

    await publisher.close()
    await close_connection()
    app_logger.info("RabbitMQ connection closed successfully.")

    await event_log.close()
    await BrevoService.aclose()
    await TwilioService.aclose()

    app_logger.info("Closing Redis service...")
    await RedisService.aclose()
    app_logger.info("Redis service closed successfully.")

    await dispose_db()
    app_logger.info("Database disposed successfully.")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    debug=settings.DEBUG,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    responses=exception_schema,
)

# Register exception handlers (order matters - more specific first)
app.add_exception_handler(NotFoundException, not_found_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(DatabaseException, database_exception_handler)  # type: ignore[arg-type]
# Generic fallback
app.add_exception_handler(AppException, general_exception_handler)  # type: ignore[arg-type]

app.include_router(messages_router, tags=["Messages"])


@app.get("/", include_in_schema=False)
async def root(request: Request):
    base_url = request.base_url._url.rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "documentations": {
            "swagger": f"{base_url}/docs",
            "redoc": f"{base_url}/redoc",
        },
        "version": settings.APP_VERSION,
    }
