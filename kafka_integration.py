# Kafka Event Bus Integration
# File: kafka_integration.py

"""
Forwards drone status notifications and simulator lifecycle events to Kafka
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

from kafka import KafkaProducer
from kafka.errors import KafkaError

from drone_simulator import StatusSubscriber

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ============================================================================
# KAFKA TOPICS
# ============================================================================

class KafkaTopics:
    """Kafka topic definitions"""

    VEHICLE_STATUS = "vehicle.status.updates"
    SIMULATOR_EVENTS = "simulator.system.events"

# ============================================================================
# KAFKA PRODUCER
# ============================================================================

class KafkaStatusProducer:
    """Publishes simulator traffic to Kafka"""

    def __init__(self, bootstrap_servers: List[str], client_id: str = "tello-sim-producer",
                 max_block_ms: int = 5000):
        """
        Initialize Kafka producer

        Args:
            bootstrap_servers: List of Kafka broker addresses
            client_id: Client identifier for this producer
            max_block_ms: Longest a send may wait on broker metadata
        """
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.max_block_ms = max_block_ms
        self.producer = None
        self._connect()

    def _connect(self):
        """Establish connection to Kafka brokers"""
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                client_id=self.client_id,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',
                retries=3,
                max_in_flight_requests_per_connection=1,  # keeps per-drone ordering
                max_block_ms=self.max_block_ms
            )
            logger.info(f"Kafka producer connected: {self.bootstrap_servers}")
        except KafkaError as e:
            logger.error(f"Failed to connect Kafka producer: {e}")
            raise

    def publish_vehicle_status(self, drone: Dict[str, Any]):
        """
        Publish one status snapshot, keyed by drone id

        Args:
            drone: Snapshot as broadcast to observers
        """
        message = {
            'vehicle_id': drone['id'],
            'drone': drone,
            'timestamp': datetime.now().isoformat()
        }
        self._send(KafkaTopics.VEHICLE_STATUS, message, key=drone['id'])
        logger.debug(f"Published status: {drone['id']} -> {drone['status']}")

    def publish_simulator_event(self, event_type: str, data: Dict):
        message = {
            'event_type': event_type,
            'data': data,
            'timestamp': datetime.now().isoformat()
        }
        self._send(KafkaTopics.SIMULATOR_EVENTS, message)

    def _send(self, topic: str, message: Dict, key: Optional[str] = None):
        try:
            self.producer.send(topic, value=message, key=key)
        except KafkaError as e:
            logger.error(f"Failed to send message to {topic}: {e}")

    def flush(self, timeout: int = None):
        if self.producer:
            self.producer.flush(timeout=timeout)
            logger.debug("Producer flushed")

    def close(self):
        if self.producer:
            self.producer.close()
            self.producer = None
            logger.info("Kafka producer closed")

# ============================================================================
# PUBLISHER BRIDGE
# ============================================================================

class KafkaStatusSubscriber(StatusSubscriber):
    """Notification subscriber that mirrors status messages to Kafka"""

    def __init__(self, producer: KafkaStatusProducer):
        self.producer = producer

    def is_ready(self) -> bool:
        return self.producer.producer is not None

    async def send(self, message: Dict[str, Any]):
        if message.get('type') != 'status':
            return
        # KafkaProducer.send blocks on metadata; keep it off the event loop
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.producer.publish_vehicle_status, message['drone'])
