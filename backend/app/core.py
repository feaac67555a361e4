from dataclasses import dataclass
from typing import Optional

from .analysis import Analyzer, build_analyzer
from .broadcast import Broadcaster
from .config import Settings, settings as default_settings
from .gateway import IngestionGateway
from .hub import ConnectionHub
from .readings import ReadingStore
from .registry import DeviceRegistry


@dataclass
class SensorCore:
    """Shared state of one process, owned by the app and passed around explicitly."""
    registry: DeviceRegistry
    readings: ReadingStore
    broadcaster: Broadcaster
    gateway: IngestionGateway
    hub: ConnectionHub
    analyzer: Analyzer


def build_core(config: Optional[Settings] = None, analyzer: Optional[Analyzer] = None) -> SensorCore:
    config = config or default_settings
    registry = DeviceRegistry()
    readings = ReadingStore(registry, retention=config.READING_RETENTION)
    broadcaster = Broadcaster(registry)
    gateway = IngestionGateway(registry, readings, broadcaster)
    hub = ConnectionHub(registry, broadcaster, gateway, outbox_size=config.OUTBOX_SIZE)
    return SensorCore(
        registry=registry,
        readings=readings,
        broadcaster=broadcaster,
        gateway=gateway,
        hub=hub,
        analyzer=analyzer or build_analyzer(config.ANALYZER_URL, config.ANALYZER_TIMEOUT),
    )
