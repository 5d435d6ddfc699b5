# sync_wubook/main.py

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sync_wubook.dependencies import get_settings
from sync_wubook.logging_config import setup_logging
from sync_wubook.middleware import RequestIDMiddleware
from sync_wubook.routes.cron import router as cron_router
from sync_wubook.routes.health import router as health_router
from sync_wubook.routes.metrics import router as metrics_router
from sync_wubook.routes.reservations import router as reservations_router
from sync_wubook.routes.sync import router as sync_router

# Initialize structured logging
setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="WuBook Sync API",
    description="Reservation import, enrichment, host actions and FX linking for WuBook",
    version="1.0.0",
)

allowed_origins = get_settings().allowed_origins

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins if "*" not in allowed_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)

# Register routers
app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(sync_router, tags=["Sync"])
app.include_router(reservations_router, tags=["Reservations"])
app.include_router(cron_router, tags=["Cron"])
