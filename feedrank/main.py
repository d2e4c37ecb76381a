"""
feedrank API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect to Redis (per-user feed cache)
  4. Wire the ranking core (tagger, profiler, trust, watch, metrics, ranking)
  5. Expose Prometheus /metrics endpoint

Shutdown waits for in-flight background analytics before closing pools.
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from feedrank.config import settings
from feedrank.database import create_engine, create_session_factory, init_db
from feedrank.telemetry import setup_tracing, instrument_app
from feedrank.clients.redis_client import close_redis, init_redis
from feedrank.routers import admin, creators, feed, maintenance, posts, watch
from feedrank.services import build_services
from feedrank.store import Store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting feedrank API (env=%s)", settings.environment)

    engine = create_engine()
    await init_db(engine)
    redis = await init_redis()

    services = build_services(Store(create_session_factory(engine)), redis)
    app.state.services = services

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await services.dispatcher.drain()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="feedrank",
    description=(
        "Content ranking and creator trust: watch analytics, interest "
        "profiles, distribution phases and personalized feeds."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
# watch first so /posts/watch-batch is matched before /posts/{post_id}/...
app.include_router(watch.router, prefix="/posts", tags=["Watch"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(creators.router, prefix="/creators", tags=["Creators"])
app.include_router(maintenance.router, prefix="/maintenance", tags=["Maintenance"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
