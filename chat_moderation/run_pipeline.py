"""
Stream pipeline - consumes candidate chat messages from Kafka and runs them
through the moderation service

    python -m chat_moderation.run_pipeline          # moderate chat-stream
    python -m chat_moderation.run_pipeline events   # tail moderation-events
"""
import asyncio
import logging
import sys
import threading
import time
from datetime import datetime
from typing import Dict, Any, Optional

from chat_moderation.lib.config import Settings
from chat_moderation.lib.kafka_client import MessageBroker
from chat_moderation.lib.metrics import metrics
from chat_moderation.models.content import ModerationVerdict
from chat_moderation.models.realtime import ChatMessage, ModerationEvent
from chat_moderation.services.moderation_service import ModerationService
from chat_moderation.services.realtime_service import ModerationEventHandler

logger = logging.getLogger(__name__)


def parse_chat_message(message_data: Dict[str, Any]) -> ChatMessage:
    """Build a ChatMessage from a chat-stream record"""
    fields = {
        "user_id": message_data.get("user_id"),
        "anonymous_token": message_data.get("anonymous_token"),
        "channel_id": message_data.get("channel_id"),
        "text": str(message_data.get("content") or message_data.get("text") or ""),
    }
    if message_data.get("message_id"):
        fields["id"] = message_data["message_id"]
    if message_data.get("timestamp") is not None:
        fields["timestamp"] = datetime.utcfromtimestamp(float(message_data["timestamp"]))
    return ChatMessage(**fields)


class Pipeline:
    """Chat-stream consumer"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        service: Optional[ModerationService] = None,
        message_broker: Optional[MessageBroker] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.broker = message_broker or MessageBroker.from_settings(self.settings)
        self.service = service or ModerationService.from_settings(self.settings, self.broker)
        self.loop = asyncio.new_event_loop()
        logger.info("Pipeline initialized")

    def handle_chat(self, message_data: Dict[str, Any]) -> Optional[ModerationVerdict]:
        """
        Evaluate one chat message.
        Malformed or failing messages go to the dead letter queue.
        """
        try:
            start_time = time.time()
            message = parse_chat_message(message_data)

            verdict = self.loop.run_until_complete(
                self.service.evaluate_message(message.text, message.identity(), message.metadata())
            )

            latency_ms = (time.time() - start_time) * 1000
            logger.debug(
                f"Chat message {message.id} processed in {latency_ms:.2f}ms: "
                f"allowed={verdict.allowed} flagged={verdict.flagged} score={verdict.total_score}"
            )
            return verdict

        except Exception as e:
            logger.error(f"Error processing chat message: {e}")
            self.broker.publish_dlq(message_data, str(e))
            return None

    def start(self):
        """Start consuming from the chat stream"""
        metrics.start(self.settings.metrics_port)
        logger.info("Starting pipeline consumer...")

        chat_thread = threading.Thread(
            target=self.broker.consume_chat_stream,
            args=(self.handle_chat,),
            daemon=True
        )
        chat_thread.start()

        logger.info("Pipeline consumer started")

        # Keep main thread alive
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Shutting down pipeline...")
            self.broker.close()


def watch_events(message_broker: Optional[MessageBroker] = None):
    """Log moderation events from the events topic, skipping redeliveries"""
    message_broker = message_broker or MessageBroker.from_settings(Settings.from_env())

    def log_event(event: ModerationEvent):
        logger.info(f"[{event.channel}#{event.sequence}] {event.event_type.value}: {event.payload}")

    handler = ModerationEventHandler(log_event)
    message_broker.consume_events(handler.handle)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if len(sys.argv) > 1 and sys.argv[1] == 'events':
        watch_events()
    else:
        Pipeline().start()


if __name__ == '__main__':
    main()
