import logging

from .broadcast import Broadcaster
from .readings import Reading, ReadingStore
from .registry import DeviceRegistry
from .schemas import ReadingIn, SamplePayload

logger = logging.getLogger(__name__)


class IngestionGateway:
    """
    The one store-and-broadcast routine behind both ingestion paths:
    streamed samples from the hub and one-shot HTTP posts.
    """

    def __init__(self, registry: DeviceRegistry, readings: ReadingStore, broadcaster: Broadcaster):
        self.registry = registry
        self.readings = readings
        self.broadcaster = broadcaster

    def ingest(self, device_id: str, payload: SamplePayload) -> Reading:
        created = device_id not in self.registry
        reading = self.readings.append(device_id, payload)
        if created:
            logger.info("auto-registered device %s from its first reading", device_id)
            self.broadcaster.broadcast_device_list()
        self.broadcaster.broadcast_sample(device_id, reading)
        return reading

    def ingest_request(self, body: ReadingIn) -> Reading:
        return self.ingest(body.device_id, body)
