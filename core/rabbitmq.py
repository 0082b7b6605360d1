import asyncio
import aio_pika
import json
import logging

logger = logging.getLogger(__name__)


class RabbitMQManager:
    """Durable job queue for agent runs and outbound email sends."""

    def __init__(self, rabbitmq_url: str, queue_name: str, retry_delay: int = 5):
        self.rabbitmq_url = rabbitmq_url
        self.queue_name = queue_name
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None
        self.should_reconnect = True

    async def connect(self):
        """Connect and declare the job queue, retrying until it works or we shut down"""
        while self.should_reconnect:
            try:
                logger.info(f"Connecting to RabbitMQ queue '{self.queue_name}'")
                self.connection = await aio_pika.connect_robust(
                    self.rabbitmq_url,
                    heartbeat=60,
                    connection_attempts=3,
                    retry_delay=self.retry_delay
                )
                self.channel = await self.connection.channel()
                await self.channel.set_qos(prefetch_count=1)

                queue = await self.channel.declare_queue(
                    self.queue_name,
                    durable=True
                )
                logger.info(
                    f"Connected to RabbitMQ, {queue.declaration_result.message_count} jobs waiting")
                return

            except Exception as e:
                logger.error(f"RabbitMQ connection failed, retrying in {self.retry_delay}s: {e}")
                await asyncio.sleep(self.retry_delay)

    async def disconnect(self):
        """Graceful shutdown"""
        logger.info("Disconnecting from RabbitMQ...")
        self.should_reconnect = False

        if self.channel and not self.channel.is_closed:
            await self.channel.close()
        if self.connection and not self.connection.is_closed:
            await self.connection.close()

        logger.info("Disconnected from RabbitMQ")

    async def publish(self, message: dict, message_id: str = None):
        """Persistent publish; message_id doubles as the job's idempotency key"""
        if not self.channel or self.channel.is_closed:
            logger.warning("Channel closed, reconnecting before publish")
            await self.connect()

        await self.channel.default_exchange.publish(
            aio_pika.Message(
                body=json.dumps(message).encode("utf-8"),
                content_type="application/json",
                message_id=message_id,
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT
            ),
            routing_key=self.queue_name,
        )
        logger.info(f"Job {message_id} queued on {self.queue_name}")

    async def consume(self, callback):
        """
        Feed decoded job payloads to `callback`, reconnecting on failure.
        A job is acked once the callback returns; a failing job is logged and
        acked as well so it cannot block the queue.
        """
        while self.should_reconnect:
            try:
                if not self.channel or self.channel.is_closed:
                    await self.connect()

                queue = await self.channel.declare_queue(
                    self.queue_name,
                    durable=True
                )
                logger.info(f"Starting consumer on queue: {self.queue_name}")

                async with queue.iterator() as queue_iter:
                    async for message in queue_iter:
                        async with message.process(ignore_processed=True):
                            try:
                                payload = json.loads(message.body.decode())
                                await callback(payload)
                            except Exception as e:
                                logger.error(
                                    f"Job {message.message_id} failed: {e}", exc_info=True)

            except asyncio.CancelledError:
                logger.info("Consumer task cancelled")
                raise
            except Exception as e:
                logger.error(
                    f"Consumer crashed: {e}, retrying in {self.retry_delay}s", exc_info=True)
                if self.should_reconnect:
                    await asyncio.sleep(self.retry_delay)
                else:
                    break
