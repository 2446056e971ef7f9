"""
Kafka producer for post lifecycle events
"""
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import json
import logging

from .config import settings
from .schemas import PostEvent

logger = logging.getLogger(__name__)


class KafkaProducerManager:
    """
    Publishes post events keyed by post id.

    Publishing is best effort: when Kafka is disabled or down, events are
    dropped and the request that produced them still succeeds.
    """

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        """Start Kafka producer"""
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka is disabled, post events will not be published")
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8"),
        )
        try:
            await producer.start()
        except KafkaError as e:
            logger.error(f"Kafka producer could not connect to {settings.KAFKA_BOOTSTRAP_SERVERS}: {e}")
            return

        self.producer = producer
        logger.info(f"Kafka producer connected to {settings.KAFKA_BOOTSTRAP_SERVERS}")

    async def stop(self):
        """Stop Kafka producer"""
        if self.producer:
            await self.producer.stop()
            self.producer = None
            logger.info("Kafka producer stopped")

    async def _publish(
        self,
        topic: str,
        event_type: str,
        post_id: str,
        user_id: str,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        if not self.producer:
            logger.debug(f"Dropping {event_type} for post {post_id}: no producer")
            return False

        event = PostEvent(
            event_type=event_type,
            post_id=post_id,
            user_id=user_id,
            data=data or {},
            timestamp=datetime.now(timezone.utc).isoformat()
        )
        try:
            await self.producer.send_and_wait(topic, value=event.model_dump(), key=post_id)
        except KafkaError as e:
            logger.error(f"Failed to publish {event_type} for post {post_id}: {e}")
            return False

        logger.info(f"Published {event_type} for post {post_id} to '{topic}'")
        return True

    async def publish_post_created(self, post_id: str, user_id: str, data: Dict[str, Any]) -> bool:
        """Post uploaded by user_id"""
        return await self._publish(settings.KAFKA_TOPIC_POST_CREATED, "post_created", post_id, user_id, data)

    async def publish_post_liked(self, post_id: str, post_owner_id: str, liker_id: str, liked: bool) -> bool:
        """Like or unlike; user_id is the post owner so consumers can notify them"""
        return await self._publish(
            settings.KAFKA_TOPIC_POST_LIKED,
            "post_liked" if liked else "post_unliked",
            post_id,
            post_owner_id,
            {"liker_id": liker_id}
        )

    async def publish_post_deleted(self, post_id: str, user_id: str) -> bool:
        """Post removed by its owner"""
        return await self._publish(settings.KAFKA_TOPIC_POST_DELETED, "post_deleted", post_id, user_id)


# Global Kafka producer instance
kafka_producer = KafkaProducerManager()


async def get_kafka_producer() -> KafkaProducerManager:
    """Dependency for getting Kafka producer instance"""
    return kafka_producer
