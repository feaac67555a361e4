import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def utc_now():
    return datetime.now(timezone.utc)


def new_device_id() -> str:
    return f"DEV-{uuid.uuid4().hex[:12].upper()}"


@dataclass
class Device:
    id: str
    name: str
    user_agent: Optional[str]
    last_seen: datetime
    is_active: bool = True
    battery_level: Optional[float] = None
    connection_quality: str = "good"


class DeviceRegistry:
    """
    Authoritative table of known devices.

    Devices are never removed; a device that went away is only told apart
    by ``is_active`` and the age of ``last_seen``. Mutations of unknown ids
    are no-ops because connection events may arrive after the fact.
    Callers get copies, so the table only changes through these methods.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._devices: dict[str, Device] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def upsert(self, device_id: str, name: str, user_agent: Optional[str] = None) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            device = Device(id=device_id, name=name, user_agent=user_agent, last_seen=self.clock())
            self._devices[device_id] = device
            logger.info("device registered: %s (%s)", device_id, name)
        else:
            device.name = name
            if user_agent is not None:
                device.user_agent = user_agent
            device.last_seen = self.clock()
        return replace(device)

    def get(self, device_id: str) -> Optional[Device]:
        device = self._devices.get(device_id)
        return replace(device) if device else None

    def list_all(self) -> list[Device]:
        """Most recently seen first"""
        devices = sorted(self._devices.values(), key=lambda d: d.last_seen, reverse=True)
        return [replace(d) for d in devices]

    def mark_active(self, device_id: str) -> None:
        self._set_liveness(device_id, True)

    def mark_inactive(self, device_id: str) -> None:
        self._set_liveness(device_id, False)

    def _set_liveness(self, device_id: str, active: bool) -> None:
        device = self._devices.get(device_id)
        if device is None:
            logger.debug("liveness change for unknown device %s ignored", device_id)
            return
        device.is_active = active
        device.last_seen = self.clock()

    def update_status(
        self,
        device_id: str,
        battery_level: Optional[float] = None,
        connection_quality: Optional[str] = None,
    ) -> Optional[Device]:
        device = self._devices.get(device_id)
        if device is None:
            return None
        if battery_level is not None:
            device.battery_level = battery_level
        if connection_quality is not None:
            device.connection_quality = connection_quality
        device.last_seen = self.clock()
        return replace(device)

    def expire_stale(self, max_age: timedelta) -> list[str]:
        """Mark active devices not seen within ``max_age`` inactive."""
        cutoff = self.clock() - max_age
        expired = []
        for device in self._devices.values():
            if device.is_active and device.last_seen < cutoff:
                device.is_active = False
                expired.append(device.id)
        if expired:
            logger.info("marked %d stale device(s) inactive: %s", len(expired), ", ".join(expired))
        return expired
