"""FastAPI server implementation for the Analytics Service."""

from contextlib import asynccontextmanager
from typing import Optional

from confluent_kafka.admin import AdminClient
from fastapi import FastAPI, Query
from fulfillment_service.config import load_settings
from fulfillment_service.consumer import ConsumerRuntime, RetryPolicy
from fulfillment_service.producer import DeadLetterPublisher, KafkaPublisher

from .engine import AnalyticsEngine, Punctuator
from .logger import logger
from .registry import analytics_publisher, build_subscriptions
from .schemas import AnalyticsRecord, AnalyticsType


class AnalyticsState:
    """Class to manage analytics service state."""

    def __init__(self):
        self.settings = load_settings()
        self.engine = AnalyticsEngine()
        self.publisher: Optional[KafkaPublisher] = None
        self.runtime: Optional[ConsumerRuntime] = None
        self.punctuator: Optional[Punctuator] = None


state = AnalyticsState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the analytics consumers and the window punctuator; stop them on shutdown."""
    settings = state.settings
    state.publisher = KafkaPublisher(settings.bootstrap_servers, client_id="analytics-service")
    state.publisher.start_polling()
    state.engine.publish = analytics_publisher(state.publisher)

    state.runtime = ConsumerRuntime(
        build_subscriptions(state.engine),
        settings.bootstrap_servers,
        DeadLetterPublisher(state.publisher),
        retry=RetryPolicy(settings.max_handler_attempts, settings.retry_backoff_seconds),
    )
    state.runtime.start()
    if settings.analytics_punctuate_seconds > 0:
        state.punctuator = Punctuator(state.engine, settings.analytics_punctuate_seconds)
        state.punctuator.start()
    logger.info("Analytics consumers started")

    yield

    logger.info("Shutting down analytics service...")
    if state.punctuator is not None:
        state.punctuator.stop()
    state.runtime.stop()
    state.publisher.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Analytics Service", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "analytics-service"}


@app.get("/health/ready")
async def readiness_check():
    """Check if the service is ready to handle requests."""
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.bootstrap_servers})
        if admin.list_topics(timeout=10) is not None:
            return {"status": "ready", "kafka": "connected"}
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
    return {"status": "not ready", "kafka": "disconnected"}


@app.get("/analytics", response_model=list[AnalyticsRecord])
async def list_analytics(
    record_type: Optional[AnalyticsType] = Query(None, alias="type"), limit: int = Query(100, ge=1, le=500)
):
    """Most recent analytics records, newest first.

    Args:
        record_type: Optional record type to filter by (query parameter ``type``)
        limit: Maximum number of records returned

    Returns:
        list[AnalyticsRecord]: Matching records
    """
    return state.engine.recent_records(record_type, limit)


@app.get("/analytics/state")
async def analytics_state():
    """Checkpoint of the engine's state stores."""
    return state.engine.snapshot()
