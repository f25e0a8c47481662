import json
from faststream.rabbit import RabbitBroker

from src.alwayscare.core.settings import settings

broker = RabbitBroker(settings.RABBIT_URL)

async def start_broker() -> None:
    await broker.start()

async def stop_broker() -> None:
    await broker.stop()

async def enqueue_claimed_record(record_id: int) -> None:
    """Hands a record that is already `processing` to the worker."""
    await broker.publish(json.dumps({"record_id": int(record_id)}), queue=settings.QUEUE_NAME)
