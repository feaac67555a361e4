import asyncio
import logging
from typing import Callable, Optional, Protocol

from .readings import Reading
from .registry import DeviceRegistry
from .schemas import DeviceListMessage, DeviceOut, ReadingOut, SampleUpdateMessage

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The part of a transport connection the engine writes to."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Peer:
    """
    One open connection: its device binding and its outbound queue.

    Messages are queued without blocking and written by the peer's own
    writer task, so a slow connection only ever delays itself. A full
    queue or a failed write fails the peer.
    """

    def __init__(
        self,
        connection: Connection,
        outbox_size: int = 256,
        on_failure: Optional[Callable[["Peer"], None]] = None,
    ):
        # asyncio.Queue treats 0 as unbounded
        if outbox_size < 1:
            raise ValueError("outbox_size must be at least 1")
        self.connection = connection
        self.device_id: Optional[str] = None
        self.closed = False
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self._on_failure = on_failure
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Peer {id(self):#x} device={self.device_id}>"

    def start(self) -> asyncio.Task:
        """Start the writer task; needs a running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def offer(self, message: str) -> bool:
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("outbox full for %r, dropping connection", self)
            self.fail()
            return False
        return True

    async def run(self) -> None:
        try:
            while True:
                message = await self.outbox.get()
                await self.connection.send_text(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("write to %r failed (%s), dropping connection", self, exc)
            self.fail()
        finally:
            if self.closed:
                await self._close_transport()

    def fail(self) -> None:
        """Drop this peer: close it and report it to the owner."""
        if self.closed:
            return
        self.close()
        if self._on_failure is not None:
            self._on_failure(self)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _close_transport(self) -> None:
        try:
            await self.connection.close()
        except Exception as exc:
            logger.debug("closing %r: %s", self, exc)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class Broadcaster:
    """Serializes each event once and offers it to every open peer."""

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry
        self._peers: set[Peer] = set()

    @property
    def peers(self) -> frozenset[Peer]:
        return frozenset(self._peers)

    def subscribe(self, peer: Peer) -> None:
        self._peers.add(peer)

    def unsubscribe(self, peer: Peer) -> bool:
        """Returns whether the peer was subscribed."""
        if peer in self._peers:
            self._peers.discard(peer)
            return True
        return False

    def device_list_json(self) -> str:
        devices = [DeviceOut.model_validate(d) for d in self.registry.list_all()]
        return DeviceListMessage(devices=devices).model_dump_json(by_alias=True)

    def broadcast_device_list(self) -> int:
        return self.publish(self.device_list_json())

    def broadcast_sample(self, device_id: str, reading: Reading) -> int:
        message = SampleUpdateMessage(device_id=device_id, reading=ReadingOut.model_validate(reading))
        return self.publish(message.model_dump_json(by_alias=True))

    def publish(self, data: str) -> int:
        """Offer one serialized message to every peer, returns how many accepted it."""
        delivered = 0
        # failing peers unsubscribe while we iterate
        for peer in list(self._peers):
            if peer.offer(data):
                delivered += 1
        return delivered
