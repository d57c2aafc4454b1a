"""
RankLens
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from ranklens.config import get_settings
from ranklens.utils.logger import log
from ranklens.utils.cache import close_cache_store, init_cache_store
from ranklens import __version__

# Import routers
from ranklens.api import cache, health, page_metrics, projects, rankings
from ranklens.api.deps import build_services

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from ranklens.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    store = await init_cache_store(settings)
    services = build_services(store)
    app.state.services = services

    if settings.enable_cache_warming:
        try:
            from ranklens.scheduler import start_scheduler
            start_scheduler(services.warmer)
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if settings.enable_cache_warming:
        from ranklens.scheduler import stop_scheduler
        stop_scheduler()
    await services.connector.close()
    await close_cache_store()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Search ranking time-series service

    - Daily page metrics (position, impressions, clicks) per tracked URL
    - Keyword rank histories merged, gap filled and rolled up per URL
    - 7/30/90-day trend deltas and top-N drop detection
    - Read-through cache with forced refresh and bulk warming
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(page_metrics.router)
app.include_router(rankings.router)
app.include_router(projects.router)
app.include_router(cache.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ranklens.main:app", host=settings.api_host, port=settings.api_port)
