import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from itertools import islice
from typing import Optional

from .registry import DeviceRegistry
from .schemas import Orientation, SamplePayload, Vector3


@dataclass(frozen=True)
class Reading:
    id: str
    device_id: str
    timestamp: datetime
    accelerometer: Optional[Vector3] = None
    magnetometer: Optional[Vector3] = None
    orientation: Optional[Orientation] = None
    light_level: Optional[float] = None
    air_pressure: Optional[float] = None


class ReadingStore:
    """
    Bounded, time ordered ring of recent readings per device.

    Readings for a device nobody registered yet create a minimal device
    record (name = id) instead of failing.
    """

    def __init__(self, registry: DeviceRegistry, retention: int = 1000):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.registry = registry
        self.retention = retention
        self._rings: dict[str, deque[Reading]] = {}

    def append(self, device_id: str, payload: SamplePayload) -> Reading:
        if device_id not in self.registry:
            self.registry.upsert(device_id, name=device_id)

        reading = Reading(
            id=str(uuid.uuid4()),
            device_id=device_id,
            timestamp=self.registry.clock(),
            accelerometer=payload.accelerometer,
            magnetometer=payload.magnetometer,
            orientation=payload.orientation,
            light_level=payload.light_level,
            air_pressure=payload.air_pressure,
        )
        ring = self._rings.get(device_id)
        if ring is None:
            ring = self._rings[device_id] = deque(maxlen=self.retention)
        ring.append(reading)

        # readings imply activity
        self.registry.mark_active(device_id)
        return reading

    def recent(self, device_id: str, limit: int = 50) -> list[Reading]:
        """Newest first, at most ``limit`` readings"""
        ring = self._rings.get(device_id)
        if not ring or limit <= 0:
            return []
        return list(islice(reversed(ring), limit))

    def latest(self, device_id: str) -> Optional[Reading]:
        ring = self._rings.get(device_id)
        return ring[-1] if ring else None

    def count(self, device_id: str) -> int:
        return len(self._rings.get(device_id, ()))
