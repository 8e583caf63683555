"""Kafka consumer runtime shared by the fulfillment, notification and analytics services."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException
from logging_utils import record_context
from pydantic import BaseModel, ValidationError

from .errors import DeserializationError
from .logger import kafka_logger as logger
from .policies import Delay, SystemDelay
from .producer import DeadLetterPublisher

DEFAULT_CONSUMER_CONFIG = {
    "auto.offset.reset": "earliest",
    "enable.auto.commit": False,
    "session.timeout.ms": 30000,
    "max.poll.interval.ms": 300000,
}


@dataclass(frozen=True)
class Subscription:
    """One row of a service's registration table.

    Attributes:
        name: Stage name, used for thread names and logs
        topic: Topic to consume
        group_id: Consumer group; every stage reads under its own group
        schema: Pydantic model each record value is decoded into
        handler: ``handler(payload, msg)``, or ``handler(payloads, msgs)`` for batches
        concurrency: Number of worker threads, each with its own consumer
        batch: Deliver records to the handler in batches
        batch_size: Maximum records per batch
    """

    name: str
    topic: str
    group_id: str
    schema: type[BaseModel]
    handler: Callable
    concurrency: int = 1
    batch: bool = False
    batch_size: int = 100


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff before a record is dead-lettered."""

    max_attempts: int = 3
    backoff_seconds: float = 0.5
    multiplier: float = 2.0

    def backoff(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failed attempt (1-based)."""
        return self.backoff_seconds * (self.multiplier ** (attempt - 1))


def decode(msg, schema: type[BaseModel]) -> BaseModel:
    """Decode a record value into ``schema``.

    Raises:
        DeserializationError: If the value is empty, not JSON, or does not fit the schema.
    """
    value = msg.value()
    if not value:
        raise DeserializationError(msg.topic(), "empty record value")
    try:
        return schema.model_validate_json(value)
    except ValidationError as e:
        raise DeserializationError(msg.topic(), f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}") from e


class StageConsumer:
    """A single worker consuming one subscription.

    Offsets are committed after a record has been handled or dead-lettered, so
    delivery is at-least-once and a crash mid-handler causes a redelivery.
    """

    def __init__(
        self,
        subscription: Subscription,
        bootstrap_servers: str,
        dead_letters: DeadLetterPublisher,
        retry: RetryPolicy = RetryPolicy(),
        delay: Optional[Delay] = None,
        consumer: Optional[Consumer] = None,
        worker_id: int = 0,
    ):
        """Initialize the worker.

        Args:
            subscription: What to consume and how to handle it
            bootstrap_servers: Kafka bootstrap servers
            dead_letters: Where poison and exhausted records go
            retry: Retry policy for handler failures
            delay: Sleeps between retries (tests pass ``NoDelay``)
            consumer: Pre-built consumer (tests inject a mock here)
            worker_id: Index of this worker within the subscription
        """
        self.subscription = subscription
        self.dead_letters = dead_letters
        self.retry = retry
        self.delay = delay if delay is not None else SystemDelay()
        self.worker_id = worker_id
        self.stats = {"messages_processed": 0, "dead_lettered": 0, "retries": 0, "errors": 0, "start_time": time.time()}
        self._running = threading.Event()

        if consumer is None:
            logger.info(
                f"Initializing consumer | bootstrap_servers={bootstrap_servers} | group_id={subscription.group_id} | "
                f"worker={subscription.name}-{worker_id}"
            )
            config = DEFAULT_CONSUMER_CONFIG.copy()
            config.update({"bootstrap.servers": bootstrap_servers, "group.id": subscription.group_id})
            consumer = Consumer(config)
        self.consumer = consumer

    def subscribe(self) -> None:
        """Subscribe to the subscription's topic."""
        logger.info(f"Subscribing to topics: {[self.subscription.topic]}")
        self.consumer.subscribe([self.subscription.topic])

    def process_messages(self) -> None:
        """Poll and handle records until ``stop`` is called."""
        logger.info(f"Starting message processing loop | worker={self.subscription.name}-{self.worker_id}")
        self._running.set()
        try:
            while self._running.is_set():
                if self.subscription.batch:
                    messages = self.consumer.consume(num_messages=self.subscription.batch_size, timeout=1.0)
                    if messages:
                        self.process_batch(messages)
                else:
                    self.process_message(self.consumer.poll(timeout=1.0))
        except KeyboardInterrupt:
            logger.info("Shutting down consumer...")
        finally:
            self._log_status()
            self.close()

    def _is_usable(self, msg) -> bool:
        if msg is None:
            return False
        error = msg.error()
        if error:
            if error.code() == KafkaError._PARTITION_EOF:
                logger.debug("Reached end of partition")
            else:
                logger.error(f"Kafka error: {error}")
                self.stats["errors"] += 1
            return False
        return True

    def process_message(self, msg) -> bool:
        """Decode and handle a single record.

        Returns:
            bool: True if the handler succeeded, False if the record was skipped or dead-lettered.
        """
        if not self._is_usable(msg):
            return False

        logger.debug(f"Received message | {record_context(msg)}")
        schema = self.subscription.schema
        try:
            decode(msg, schema)
        except DeserializationError as e:
            logger.error(f"Failed to decode message | error={e.reason} | {record_context(msg)}")
            self._dead_letter(msg, e.reason, 0, type(e).__name__)
            self._commit(msg)
            return False

        # Decode again on every attempt: handlers mutate the order they receive.
        handled = self._call_with_retry(
            [msg], lambda: self.subscription.handler(decode(msg, schema), msg)
        )
        self._commit(msg)
        return handled

    def process_batch(self, messages: list) -> bool:
        """Decode and handle a batch of records; poison records are dead-lettered individually."""
        usable = [msg for msg in messages if self._is_usable(msg)]
        decoded = []
        for msg in usable:
            try:
                decoded.append((decode(msg, self.subscription.schema), msg))
            except DeserializationError as e:
                logger.error(f"Failed to decode message | error={e.reason} | {record_context(msg)}")
                self._dead_letter(msg, e.reason, 0, type(e).__name__)

        handled = True
        if decoded:
            payloads = [payload for payload, _ in decoded]
            batch = [msg for _, msg in decoded]
            handled = self._call_with_retry(batch, lambda: self.subscription.handler(payloads, batch))
        if usable:
            self._commit(usable[-1])
        return handled

    def _call_with_retry(self, messages: list, call: Callable[[], None]) -> bool:
        attempts = self.retry.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                call()
                self.stats["messages_processed"] += len(messages)
                return True
            except Exception as e:
                logger.opt(exception=e).error(
                    f"Error processing message | attempt={attempt}/{attempts} | error={e} | "
                    f"error_type={type(e).__name__} | {record_context(messages[0])}"
                )
                if attempt < attempts:
                    self.stats["retries"] += 1
                    self.delay(self.retry.backoff(attempt))
                else:
                    for msg in messages:
                        self._dead_letter(msg, str(e), attempts, type(e).__name__)
        return False

    def _dead_letter(self, msg, reason: str, attempts: int, error_type: str) -> None:
        self.dead_letters.send(msg, reason, attempts, error_type)
        self.stats["dead_lettered"] += 1

    def _commit(self, msg) -> None:
        try:
            self.consumer.commit(message=msg, asynchronous=False)
        except KafkaException as e:
            logger.error(f"Offset commit failed | error={e} | {record_context(msg)}")
            self.stats["errors"] += 1

    def _log_status(self) -> None:
        """Log consumer status and statistics."""
        runtime = time.time() - self.stats["start_time"]
        msg_rate = self.stats["messages_processed"] / runtime if runtime > 0 else 0
        logger.info(
            f"Consumer status | worker={self.subscription.name}-{self.worker_id} | "
            f"messages_processed={self.stats['messages_processed']} | retries={self.stats['retries']} | "
            f"dead_lettered={self.stats['dead_lettered']} | errors={self.stats['errors']} | "
            f"runtime_seconds={runtime:.2f} | messages_per_second={msg_rate:.2f}"
        )

    def stop(self) -> None:
        """Ask the processing loop to exit after the current poll."""
        self._running.clear()

    def close(self) -> None:
        """Close the consumer connection."""
        self.consumer.close()
        logger.info(f"Consumer closed | worker={self.subscription.name}-{self.worker_id}")


ConsumerFactory = Callable[[Subscription, int], Optional[Consumer]]


class ConsumerRuntime:
    """Starts ``concurrency`` worker threads for every subscription of a registration table."""

    def __init__(
        self,
        subscriptions: list[Subscription],
        bootstrap_servers: str,
        dead_letters: DeadLetterPublisher,
        retry: RetryPolicy = RetryPolicy(),
        delay: Optional[Delay] = None,
        consumer_factory: Optional[ConsumerFactory] = None,
    ):
        self.subscriptions = subscriptions
        self.bootstrap_servers = bootstrap_servers
        self.dead_letters = dead_letters
        self.retry = retry
        self.delay = delay
        self.consumer_factory = consumer_factory
        self.workers: list[StageConsumer] = []
        self._threads: list[threading.Thread] = []

    def build_workers(self) -> list[StageConsumer]:
        """Create and subscribe one worker per (subscription, worker index)."""
        workers = []
        for subscription in self.subscriptions:
            for worker_id in range(subscription.concurrency):
                consumer = self.consumer_factory(subscription, worker_id) if self.consumer_factory else None
                worker = StageConsumer(
                    subscription,
                    self.bootstrap_servers,
                    self.dead_letters,
                    retry=self.retry,
                    delay=self.delay,
                    consumer=consumer,
                    worker_id=worker_id,
                )
                worker.subscribe()
                workers.append(worker)
        return workers

    def start(self) -> None:
        """Start every worker in a daemon thread."""
        self.workers = self.build_workers()
        for worker in self.workers:
            thread = threading.Thread(
                target=worker.process_messages,
                name=f"{worker.subscription.name}-{worker.worker_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info(f"Consumer runtime started | workers={len(self.workers)}")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop all workers and wait for their threads."""
        for worker in self.workers:
            worker.stop()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Consumer runtime stopped")

    def status(self) -> dict[str, dict]:
        """Per-worker statistics keyed by thread name."""
        return {
            f"{worker.subscription.name}-{worker.worker_id}": {
                key: value for key, value in worker.stats.items() if key != "start_time"
            }
            for worker in self.workers
        }
