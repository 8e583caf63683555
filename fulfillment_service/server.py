"""FastAPI server for the fulfillment service: order ingress plus the stage consumers."""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from confluent_kafka.admin import AdminClient
from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .consumer import ConsumerRuntime, RetryPolicy
from .logger import logger
from .pricing import example_order, high_value_order, price_order
from .producer import DeadLetterPublisher, KafkaPublisher, OrderRelay
from .registry import build_pipeline
from .schemas import Order, utcnow


class FulfillmentState:
    """Process-wide objects of the fulfillment service."""

    def __init__(self):
        self.settings: Settings = load_settings()
        self.publisher: Optional[KafkaPublisher] = None
        self.relay: Optional[OrderRelay] = None
        self.runtime: Optional[ConsumerRuntime] = None


state = FulfillmentState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the producer poller and the stage consumers; stop them on shutdown."""
    settings = state.settings
    state.publisher = KafkaPublisher(settings.bootstrap_servers, client_id="fulfillment-service")
    state.publisher.start_polling()
    state.relay = OrderRelay(state.publisher)

    pipeline = build_pipeline(state.publisher, settings)
    state.runtime = ConsumerRuntime(
        pipeline.subscriptions(),
        settings.bootstrap_servers,
        DeadLetterPublisher(state.publisher),
        retry=RetryPolicy(settings.max_handler_attempts, settings.retry_backoff_seconds),
    )
    state.runtime.start()
    logger.info("Fulfillment stages started")

    yield

    logger.info("Shutting down fulfillment service...")
    state.runtime.stop()
    state.publisher.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Order Fulfillment Service", lifespan=lifespan)
router = APIRouter()


@router.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "fulfillment-service"}


@router.get("/health/ready")
def readiness_check():
    """Check if the service is ready to accept traffic.

    Returns:
        dict: Service readiness status and Kafka connection status.
    """
    kafka_ok = _check_kafka_connection()
    return {"status": "ready" if kafka_ok else "not_ready", "kafka": kafka_ok}


@router.get("/health/consumers")
def consumer_status():
    """Per-worker consumer statistics."""
    return state.runtime.status() if state.runtime else {}


@router.post("/api/orders", status_code=201)
def create_order(order: Order):
    """Price a new order and publish it to ``order.created``.

    Args:
        order (Order): The order data; ``tax_amount`` and ``shipping_cost`` are defaulted when absent.

    Returns:
        dict: Order id, status and total, or an error payload with status 500.
    """
    try:
        price_order(
            order,
            tax_given="tax_amount" in order.model_fields_set,
            shipping_given="shipping_cost" in order.model_fields_set,
        )
        logger.info(
            f"Creating new order | order_id={order.order_id} | customer={order.customer_name} | total={order.total_amount}"
        )
        if state.relay is None:
            raise RuntimeError("Order relay is not initialised")

        future = state.relay.send_order_created(order)
        if future.done() and not future.result().ok:
            raise RuntimeError(future.result().reason)
    except Exception as e:
        logger.error(f"Error creating order: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to create order", "message": str(e)})

    return {
        "order_id": order.order_id,
        "status": order.status.value,
        "total_amount": str(order.total_amount),
        "message": "Order created successfully and sent for processing",
        "estimated_delivery": (utcnow() + timedelta(days=5)).isoformat(),
    }


@router.get("/api/orders/example", response_model=Order)
def get_example_order():
    """Sample order payload for ``POST /api/orders``."""
    return example_order()


@router.get("/api/orders/example/high-value", response_model=Order)
def get_high_value_order():
    """Sample order above the manual-approval payment threshold."""
    return high_value_order()


def _check_kafka_connection() -> bool:
    """Check if Kafka connection is available.

    Returns:
        bool: True if Kafka is accessible, False otherwise.
    """
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.bootstrap_servers})
        return bool(admin.list_topics(timeout=5))
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
        return False


app.include_router(router)
