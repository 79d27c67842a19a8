import logging

import aio_pika

from .config import RABBIT_URL
from .events import EXCHANGE_NAME, build_event, to_json

logger = logging.getLogger(__name__)


class Publisher:
    def __init__(self, url: str | None):
        self._url = url
        self._conn = None
        self._channel = None
        self._exchange = None

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def start(self):
        if not self.enabled:
            return
        if self._conn and not self._conn.is_closed:
            return
        self._conn = await aio_pika.connect_robust(self._url)
        self._channel = await self._conn.channel()
        self._exchange = await self._channel.declare_exchange(
            EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
        )

    async def publish(self, routing_key: str, body: str):
        if not self.enabled:
            logger.debug(f"events disabled; dropping {routing_key}")
            return
        await self.start()
        msg = aio_pika.Message(
            body=body.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(msg, routing_key=routing_key)

    async def emit(self, event_type: str, data: dict) -> bool:
        """
        Publish a domain event after the state change is already committed.
        Failures are logged and reported, never raised.
        """
        try:
            await self.publish(event_type, to_json(build_event(event_type, data)))
            return True
        except Exception as e:
            logger.error(f"failed to publish {event_type} for {data.get('booking_id')}: {e}")
            return False

    async def close(self):
        if self._conn and not self._conn.is_closed:
            await self._conn.close()


publisher = Publisher(RABBIT_URL)
