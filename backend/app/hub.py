import logging
from typing import Optional

from pydantic import ValidationError

from .broadcast import Broadcaster, Connection, Peer
from .gateway import IngestionGateway
from .readings import Reading
from .registry import DeviceRegistry
from .schemas import (
    DeviceStatusUpdate, ErrorMessage, RegisterEvent, RegisterResponseMessage,
    SampleEvent, SamplePayload, StatusEvent, inbound_adapter,
)

logger = logging.getLogger(__name__)


class ConnectionHub:
    """
    Tracks open connections and which device each one publishes for.

    Every open connection is an observer. A connection becomes a
    publisher once it registers a device id; the latest registration of
    an id owns that device's liveness, older connections for the same id
    are unbound and keep observing.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        broadcaster: Broadcaster,
        gateway: IngestionGateway,
        outbox_size: int = 256,
    ):
        if outbox_size < 1:
            raise ValueError("outbox_size must be at least 1")
        self.registry = registry
        self.broadcaster = broadcaster
        self.gateway = gateway
        self.outbox_size = outbox_size
        self._bindings: dict[str, Peer] = {}

    def connection_for(self, device_id: str) -> Optional[Peer]:
        return self._bindings.get(device_id)

    def on_connect(self, connection: Connection) -> Peer:
        peer = Peer(connection, self.outbox_size, on_failure=self.on_disconnect)
        self.broadcaster.subscribe(peer)
        # current snapshot, so a reconnecting observer resynchronizes
        peer.offer(self.broadcaster.device_list_json())
        logger.debug("connection opened: %r", peer)
        return peer

    def on_register(
        self,
        peer: Peer,
        device_id: str,
        name: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if peer.closed:
            return

        previous = peer.device_id
        if previous is not None and previous != device_id:
            self._release(peer, previous)

        stale = self._bindings.get(device_id)
        if stale is not None and stale is not peer:
            logger.info("device %s re-registered on a new connection, unbinding %r", device_id, stale)
            stale.device_id = None
        self._bindings[device_id] = peer
        peer.device_id = device_id

        if device_id not in self.registry or name is not None or user_agent is not None:
            current = self.registry.get(device_id)
            fallback = current.name if current else device_id
            self.registry.upsert(device_id, name or fallback, user_agent)
        self.registry.mark_active(device_id)

        peer.offer(RegisterResponseMessage(device_id=device_id).model_dump_json(by_alias=True))
        self.broadcaster.broadcast_device_list()

    def on_disconnect(self, peer: Peer) -> None:
        if not self.broadcaster.unsubscribe(peer):
            return
        peer.close()
        device_id = peer.device_id
        peer.device_id = None
        if device_id is None:
            logger.debug("observer disconnected: %r", peer)
            return
        if self._release(peer, device_id):
            self.broadcaster.broadcast_device_list()

    def _release(self, peer: Peer, device_id: str) -> bool:
        """Drop the binding if ``peer`` still owns it; returns whether it did."""
        if self._bindings.get(device_id) is not peer:
            return False
        del self._bindings[device_id]
        self.registry.mark_inactive(device_id)
        logger.info("device %s disconnected", device_id)
        return True

    def on_inbound_sample(self, peer: Peer, payload: SamplePayload) -> Optional[Reading]:
        if peer.device_id is None:
            logger.info("sample from unregistered connection %r dropped", peer)
            return None
        return self.gateway.ingest(peer.device_id, payload)

    def on_status(self, peer: Peer, status: DeviceStatusUpdate) -> None:
        if peer.device_id is None:
            logger.info("status from unregistered connection %r dropped", peer)
            return
        self.registry.update_status(peer.device_id, status.battery_level, status.connection_quality)
        self.broadcaster.broadcast_device_list()

    def handle_message(self, peer: Peer, text: str) -> None:
        """Validate one inbound frame and dispatch it."""
        try:
            event = inbound_adapter.validate_json(text)
        except ValidationError as exc:
            logger.warning("malformed message from %r: %s", peer, exc.error_count())
            errors = exc.errors(include_url=False, include_context=False, include_input=False)
            peer.offer(ErrorMessage(detail=errors).model_dump_json(by_alias=True))
            return

        if isinstance(event, RegisterEvent):
            self.on_register(peer, event.device_id, event.name, event.user_agent)
        elif isinstance(event, SampleEvent):
            self.on_inbound_sample(peer, event.data)
        elif isinstance(event, StatusEvent):
            self.on_status(peer, event)
