"""
Solace PubSub+ Stream Publisher
Sends chunked batches or per-row messages for tracked tables to Solace
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from solace.messaging.messaging_service import MessagingService
from solace.messaging.resources.topic import Topic
from solace.messaging.publisher.direct_message_publisher import PublishFailureListener
from solace.messaging.errors.pubsubplus_client_error import PubSubPlusClientError
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .config import SolaceConfig
from .errors import PublishError
from .models import MessagePart, StreamMessage

logger = logging.getLogger(__name__)

# Solace partition key property
PARTITION_KEY_PROPERTY = "JMSXGroupID"


class PublishFailureHandler(PublishFailureListener):
    """Handle asynchronous publish failures (direct delivery mode)"""

    def __init__(self, stats: "PublishStats"):
        self._stats = stats

    def on_failed_publish(self, failed_publish_event):
        self._stats.record_failure()
        logger.error(
            f"Publish failed: {failed_publish_event.get_exception()} "
            f"for topic: {failed_publish_event.get_destination()}"
        )


@dataclass
class PublishStats:
    """Track publishing statistics"""
    messages_sent: int = 0
    messages_failed: int = 0
    bytes_sent: int = 0
    batches_sent: int = 0
    start_time: float = 0.0

    def __post_init__(self):
        if not self.start_time:
            self.start_time = time.time()

    def record_success(self, message_size: int) -> None:
        self.messages_sent += 1
        self.bytes_sent += message_size

    def record_failure(self) -> None:
        self.messages_failed += 1

    def get_rate(self) -> float:
        elapsed = time.time() - self.start_time
        if elapsed > 0:
            return self.messages_sent / elapsed
        return 0.0

    def get_summary(self) -> dict:
        elapsed = time.time() - self.start_time
        return {
            "messages_sent": self.messages_sent,
            "messages_failed": self.messages_failed,
            "bytes_sent": self.bytes_sent,
            "batches_sent": self.batches_sent,
            "elapsed_seconds": round(elapsed, 2),
            "rate_per_second": round(self.get_rate(), 2)
        }


class StreamPublisher:
    """Solace publisher shared by all table sync loops"""

    def __init__(self, config: SolaceConfig, messaging_service: Optional[MessagingService] = None):
        self.config = config
        self._messaging_service = messaging_service
        self._publisher = None
        self._connected = False
        # One batch at a time keeps a batch's parts contiguous on the topic
        self._lock = threading.Lock()
        self.stats = PublishStats()

    @property
    def persistent(self) -> bool:
        return self.config.delivery_mode == "persistent"

    def connect(self) -> bool:
        """Connect to Solace broker"""
        try:
            if self._messaging_service is None:
                broker_props = {
                    "solace.messaging.transport.host": f"tcp://{self.config.host}:{self.config.port}",
                    "solace.messaging.service.vpn-name": self.config.vpn,
                    "solace.messaging.authentication.scheme.basic.username": self.config.username,
                    "solace.messaging.authentication.scheme.basic.password": self.config.password,
                    "solace.messaging.transport.connection-retries": self.config.reconnect_retries,
                    "solace.messaging.transport.reconnection-attempts": self.config.reconnect_retries,
                    "solace.messaging.transport.reconnection-attempts-wait-interval": self.config.reconnect_retry_wait_ms,
                    "solace.messaging.transport.connection-retries-per-host": 3,
                }

                self._messaging_service = MessagingService.builder() \
                    .from_properties(broker_props) \
                    .build()

            self._messaging_service.connect()
            logger.info(f"Connected to Solace at {self.config.host}:{self.config.port}")

            if self.persistent:
                self._publisher = self._messaging_service.create_persistent_message_publisher_builder() \
                    .build()
            else:
                self._publisher = self._messaging_service.create_direct_message_publisher_builder() \
                    .on_back_pressure_reject(buffer_capacity=50000) \
                    .build()
                self._publisher.set_publish_failure_listener(PublishFailureHandler(self.stats))

            self._publisher.start()

            self._connected = True
            logger.info(f"Solace {self.config.delivery_mode} publisher started")
            return True

        except PubSubPlusClientError as e:
            logger.error(f"Failed to connect to Solace: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from Solace broker"""
        try:
            if self._publisher:
                self._publisher.terminate()
                logger.info("Publisher terminated")

            if self._messaging_service:
                self._messaging_service.disconnect()
                logger.info("Disconnected from Solace")

        except PubSubPlusClientError as e:
            logger.error(f"Error during disconnect: {e}")
        finally:
            self._connected = False

    def publish(self, table_name: str, parts: Sequence[MessagePart]) -> None:
        """Publish the parts of one chunked payload in part order"""
        messages = [
            StreamMessage(
                value=part.payload,
                key=table_name,
                headers=part.headers(),
                message_id=f"{part.schema_id}/{part.part_number}",
            )
            for part in sorted(parts, key=lambda p: p.part_number)
        ]
        self.send(table_name, messages)

    def publish_rows(self, table_name: str, payloads: Sequence[bytes]) -> None:
        """Publish one message per serialized row, without chunking headers"""
        self.send(table_name, [StreamMessage(value=p, key=table_name) for p in payloads])

    def send(self, table_name: str, messages: List[StreamMessage], topic_name: Optional[str] = None) -> None:
        """Send messages in order; raises PublishError if any send ultimately fails.

        Messages before the failing one may already have been delivered.
        """
        if not self._connected:
            raise PublishError("Not connected to Solace")

        topic_name = topic_name or self.config.get_topic(table_name)
        topic = Topic.of(topic_name)
        retry_config = self.config.publish_retry
        retryer = Retrying(
            stop=stop_after_attempt(max(retry_config.max_attempts, 1)),
            wait=wait_exponential(
                multiplier=retry_config.initial_delay_ms / 1000.0,
                max=retry_config.max_delay_ms / 1000.0,
                exp_base=retry_config.multiplier,
            ),
            retry=retry_if_exception_type(PubSubPlusClientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        with self._lock:
            for index, message in enumerate(messages):
                try:
                    retryer(self._send_one, topic, message)
                except PubSubPlusClientError as e:
                    self.stats.record_failure()
                    raise PublishError(
                        f"Publish to {topic_name} failed at message {index + 1}/{len(messages)}: {e}"
                    ) from e
                self.stats.record_success(len(message.value))
            self.stats.batches_sent += 1

        logger.debug(f"Published {len(messages)} messages to {topic_name}")

    def _send_one(self, topic: Topic, message: StreamMessage) -> None:
        builder = self._messaging_service.message_builder()
        if message.key:
            builder = builder.with_property(PARTITION_KEY_PROPERTY, message.key)
        for name, value in message.headers.items():
            builder = builder.with_property(name, value)
        if message.message_id:
            builder = builder.with_application_message_id(message.message_id)
        outbound = builder.build(bytearray(message.value))

        if self.persistent:
            self._publisher.publish_await_acknowledgement(
                outbound, topic, time_out=self.config.ack_timeout_ms
            )
        else:
            self._publisher.publish(outbound, topic)

    def is_connected(self) -> bool:
        """Check if connected to Solace"""
        return self._connected

    def get_stats(self) -> dict:
        """Get publishing statistics"""
        return self.stats.get_summary()

    def reset_stats(self) -> None:
        """Reset statistics"""
        self.stats = PublishStats()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
