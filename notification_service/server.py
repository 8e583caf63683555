"""FastAPI server implementation for the Notification Service."""

from contextlib import asynccontextmanager
from typing import Optional

from confluent_kafka.admin import AdminClient
from fastapi import FastAPI, HTTPException
from fulfillment_service.config import load_settings
from fulfillment_service.consumer import ConsumerRuntime, RetryPolicy
from fulfillment_service.policies import NoDelay, SeededRandom, SystemDelay
from fulfillment_service.producer import DeadLetterPublisher, KafkaPublisher
from fulfillment_service.schemas import Notification

from .consumer import NotificationConsumer, NotificationStore
from .handler import EmailNotificationChannel, NotificationHandler, SMSNotificationChannel
from .logger import logger


class NotificationState:
    """Class to manage notification service state."""

    def __init__(self):
        """Initialize notification state."""
        self.settings = load_settings()
        self.store = NotificationStore()
        self.runtime: Optional[ConsumerRuntime] = None
        self.publisher: Optional[KafkaPublisher] = None


state = NotificationState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    settings = state.settings
    handler = NotificationHandler(
        {
            "EMAIL": EmailNotificationChannel(),
            "SMS": SMSNotificationChannel(settings.sms_api_url, settings.sms_api_key),
        }
    )
    consumer = NotificationConsumer(
        handler,
        SeededRandom(settings.random_seed),
        SystemDelay() if settings.simulate_latency else NoDelay(),
        store=state.store,
    )

    state.publisher = KafkaPublisher(settings.bootstrap_servers, client_id="notification-service")
    state.publisher.start_polling()
    state.runtime = ConsumerRuntime(
        consumer.subscriptions(),
        settings.bootstrap_servers,
        DeadLetterPublisher(state.publisher),
        retry=RetryPolicy(settings.max_handler_attempts, settings.retry_backoff_seconds),
    )
    state.runtime.start()
    logger.info("Notification consumer started")

    yield

    logger.info("Shutting down notification service...")
    state.runtime.stop()
    state.publisher.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Notification Service", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """Check if the service is ready to handle requests."""
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.bootstrap_servers})
        cluster_metadata = admin.list_topics(timeout=10)
        if cluster_metadata is not None:
            return {"status": "ready", "kafka": "connected"}
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
    return {"status": "not ready", "kafka": "disconnected"}


@app.get("/notifications/{notification_id}", response_model=Notification)
async def get_notification(notification_id: str):
    """Get a specific notification by ID.

    Args:
        notification_id: The ID of the notification to retrieve

    Returns:
        Notification: The notification information

    Raises:
        HTTPException: If the notification is not found
    """
    notification = state.store.get_notification(notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@app.get("/notifications", response_model=list[Notification])
async def list_notifications(customer_id: Optional[str] = None, notification_type: Optional[str] = None):
    """List all notifications, optionally filtered.

    Args:
        customer_id: Optional customer ID to filter by
        notification_type: Optional notification type to filter by

    Returns:
        list[Notification]: List of matching notifications
    """
    return state.store.list_notifications(customer_id, notification_type)
