"""NEMT Dispatch API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from nemt.core.config import get_settings
from nemt.core.logging import configure_logging, logger
from nemt.routers import billing, confirmations, dash_cameras, dispatch, farmouts, fleet, payroll, reports, trips

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, json_output=not settings.is_demo_mode())
    logger.info(
        "NEMT API starting",
        version=VERSION,
        app_mode=settings.normalized_app_mode(),
        db_path=settings.nemt_db_path,
        telephony_configured=settings.telephony_configured(),
    )
    yield
    logger.info("NEMT API shutting down")


app = FastAPI(
    title="NEMT Dispatch API",
    description="Dispatch, billing, payroll and safety backend for non-emergency medical transportation",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trips.router)
app.include_router(dispatch.router)
app.include_router(fleet.router)
app.include_router(billing.router)
app.include_router(payroll.router)
app.include_router(reports.router)
app.include_router(confirmations.router)
app.include_router(dash_cameras.router)
app.include_router(farmouts.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "NEMT Dispatch API",
        "version": VERSION,
        "endpoints": {
            "trips": "/trips",
            "dispatch": "/dispatch",
            "fleet": "/fleet",
            "billing": "/billing",
            "payroll": "/payroll",
            "reports": "/reports",
            "confirmations": "/confirmations",
            "dash_cameras": "/dash-cameras",
            "farmouts": "/farmouts",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "mode": get_settings().normalized_app_mode()}
