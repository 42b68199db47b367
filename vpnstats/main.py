import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from vpnstats.config import get_settings
from vpnstats.database import SessionLocal
from vpnstats.openvpn.registry import StatsRegistry
from vpnstats.routers import statistics
from vpnstats.services.statistics import DatabaseSink

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = StatsRegistry(
        settings.status_log_path,
        sink=DatabaseSink(SessionLocal),
        debounce=settings.status_debounce_ms / 1000,
        health_interval=settings.watch_health_interval,
    )
    app.state.stats_registry = registry
    try:
        registry.start()
    except Exception as e:
        # The API still serves history; live statistics stay empty.
        logger.warning("Live statistics disabled: %s", e)
    try:
        yield
    finally:
        registry.close()


app = FastAPI(title="VPN Statistics API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(statistics.router)


@app.get("/")
def root():
    return {"message": "VPN Statistics API", "docs": "/docs"}
