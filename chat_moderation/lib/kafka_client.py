"""
Kafka transport for the moderation engine.

Three topics:

* ``chat-stream`` - candidate chat messages awaiting a verdict
* ``moderation-events`` - state transitions, keyed by channel so each
  channel stays in one partition and keeps its order
* ``dlq-stream`` - records that could not be processed, with the error
"""
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError

logger = logging.getLogger(__name__)

CHAT_TOPIC = 'chat-stream'
EVENTS_TOPIC = 'moderation-events'
DLQ_TOPIC = 'dlq-stream'

RecordHandler = Callable[[Dict[str, Any]], Any]


def _encode_value(value: Dict[str, Any]) -> bytes:
    return json.dumps(value, default=str).encode('utf-8')


def _encode_key(key: Optional[str]) -> Optional[bytes]:
    return key.encode('utf-8') if key else None


def _decode_value(raw: bytes) -> Dict[str, Any]:
    return json.loads(raw.decode('utf-8'))


class MessageBroker:
    """
    Producer and consumers for the moderation topics.

    The producer connects on first publish. Every publish is bounded by
    send_timeout_seconds: both the wait for cluster metadata (max_block_ms)
    and the wait for the broker acknowledgement share that budget, so a
    caller never blocks longer than roughly twice the timeout.
    """

    def __init__(self, bootstrap_servers: str = 'localhost:9092', send_timeout_seconds: float = 2.0):
        self.bootstrap_servers = bootstrap_servers
        self.send_timeout_seconds = send_timeout_seconds
        self.producer: Optional[KafkaProducer] = None
        self.consumers: List[KafkaConsumer] = []

    @classmethod
    def from_settings(cls, settings) -> "MessageBroker":
        return cls(settings.kafka_bootstrap_servers, settings.kafka_send_timeout_seconds)

    def _get_producer(self) -> KafkaProducer:
        if self.producer is None:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=_encode_value,
                key_serializer=_encode_key,
                acks='all',
                retries=3,
                max_block_ms=int(self.send_timeout_seconds * 1000),
                # One request in flight keeps per-key order across retries
                max_in_flight_requests_per_connection=1,
            )
            logger.info(f"Kafka producer connected to {self.bootstrap_servers}")
        return self.producer

    def publish(self, topic: str, message: Dict[str, Any], key: Optional[str] = None) -> bool:
        """Send one record and wait for the acknowledgement; False on any Kafka failure."""
        try:
            metadata = self._get_producer().send(topic, value=message, key=key).get(
                timeout=self.send_timeout_seconds
            )
        except KafkaError as e:
            logger.error(f"Publish to {topic} failed: {e}")
            return False
        logger.debug(f"{topic}[{metadata.partition}]@{metadata.offset}")
        return True

    def publish_event(self, event: Dict[str, Any]) -> bool:
        return self.publish(EVENTS_TOPIC, event, key=event.get('channel'))

    def publish_dlq(self, original_message: Dict[str, Any], error: str) -> bool:
        return self.publish(DLQ_TOPIC, {
            'original_message': original_message,
            'error': error,
            'timestamp': time.time(),
        })

    def consume(self, topic: str, group_id: str, handler: RecordHandler, auto_offset_reset: str = 'latest'):
        """
        Block, feeding each record on topic to handler. A record whose
        handler raises is sent to the dead letter topic and consumption
        continues.
        """
        consumer = KafkaConsumer(
            topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=group_id,
            value_deserializer=_decode_value,
            auto_offset_reset=auto_offset_reset,
            enable_auto_commit=True,
            auto_commit_interval_ms=1000,
        )
        self.consumers.append(consumer)
        logger.info(f"Consuming {topic} as {group_id}")

        for record in consumer:
            try:
                handler(record.value)
            except Exception as e:
                logger.error(f"Handler failed on {topic}[{record.partition}]@{record.offset}: {e}")
                self.publish_dlq(record.value, str(e))

    def consume_chat_stream(self, handler: RecordHandler):
        self.consume(CHAT_TOPIC, 'moderation-engine', handler)

    def consume_events(self, handler: RecordHandler, group_id: str = 'moderation-dashboard'):
        self.consume(EVENTS_TOPIC, group_id, handler)

    def close(self):
        if self.producer is not None:
            self.producer.close()
        for consumer in self.consumers:
            consumer.close()
        logger.info("Kafka connections closed")
