"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the feed, the watch pipeline and creator trust

Both are initialised once at startup; the FastAPI app is instrumented after
it is created.
"""
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Histogram

from feedrank.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "End-to-end latency of personalized feed generation",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

FEED_CACHE_REQUESTS = Counter(
    "feed_cache_requests_total",
    "Per-user feed cache lookups",
    ["result"],  # 'hit' or 'miss'
)

FEED_CANDIDATES_TOTAL = Counter(
    "feed_candidates_total",
    "Candidate posts scored per feed request",
    ["feed_type"],
)

WATCH_EVENTS_TOTAL = Counter(
    "watch_events_total",
    "Watch events persisted",
    ["mode"],  # 'single' or 'batch'
)

ANALYTICS_TASK_FAILURES = Counter(
    "analytics_task_failures_total",
    "Background analytics tasks that raised (logged, never surfaced)",
    ["task"],
)

PHASE_TRANSITIONS_TOTAL = Counter(
    "distribution_phase_transitions_total",
    "Distribution phase changes applied by metrics recompute",
    ["from_phase", "to_phase"],
)

SHADOW_BANS_TOTAL = Counter(
    "shadow_bans_total",
    "Shadow bans applied",
    ["source"],  # 'score' or 'admin'
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.tracing_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument the storage clients so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)
