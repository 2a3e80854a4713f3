from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from marketplace.config import get_settings
from marketplace.core.exceptions import PaymentError
from marketplace.core.logging import configure_logging
from marketplace.core.scheduler import setup_scheduler, start_scheduler, stop_scheduler
from marketplace.database import Database
from marketplace.routes.payment.dependencies import set_notifier
from marketplace.routes.payment.payment_routes import router as payment_router
from marketplace.routes.payment.webhook_routes import router as webhook_router
from marketplace.services.notification.notification_service import MongoOutboxSink, NotificationTrigger
from marketplace.utils.response import payment_error_response, validation_error_response

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the application"""
    # Startup
    configure_logging(settings.log_level)
    await Database.connect_db()

    notifier = NotificationTrigger(MongoOutboxSink(Database.get_db()))
    await notifier.start()
    set_notifier(notifier)

    if settings.scheduler_enabled:
        setup_scheduler(settings.reconcile_interval_minutes)
        start_scheduler()

    yield
    # Shutdown
    stop_scheduler()
    await notifier.stop()
    set_notifier(None)
    await Database.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Coach marketplace payment settlement API (Razorpay)",
    lifespan=lifespan
)

# CORS middleware
# In development, allow all origins for easier testing
cors_origins = [
    settings.frontend_url,
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if not settings.debug else ["*"],
    allow_credentials=not settings.debug,  # Can't use credentials with wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return payment_error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {
        ".".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
        for error in exc.errors()
    }
    return validation_error_response(message="Validation error", errors=errors)


# Include routers with /api prefix
app.include_router(payment_router, prefix="/api")  # Payment operations
app.include_router(webhook_router, prefix="/api")  # Payment webhooks


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.app_name} API",
        "version": settings.app_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
