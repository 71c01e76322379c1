"""Connection registry and full-state broadcasting

After a successful mutation the coordinator re-reads the complete
collection(s) that changed and pushes them to every open connection, so all
clients converge on the stored state without merging diffs.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from ...auth import Actor
from .repository import RequestRepository, SlotRepository
from .schemas import ScheduleRequestResponse, ScheduleSnapshot, TimeSlotResponse

logger = logging.getLogger(__name__)

SLOTS = "slots"
REQUESTS = "requests"


@dataclass
class Connection:
    id: str
    websocket: WebSocket
    actor: Actor
    # Broadcasts from other handlers and acks from this one share the socket
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConnectionManager:
    """Active push connections keyed by connection id"""

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        # Held across each re-read and its broadcast so pushes leave in commit order
        self.publish_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, actor: Actor) -> Connection:
        await websocket.accept()
        connection = Connection(id=uuid.uuid4().hex, websocket=websocket, actor=actor)
        self._connections[connection.id] = connection
        logger.info(
            f"🔌 {actor.role} {actor.name} connected ({connection.id}), {len(self)} active"
        )
        return connection

    def disconnect(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection:
            logger.info(f"🔌 {connection.actor.name} disconnected ({connection_id}), {len(self)} active")

    async def send(self, connection: Connection, event: str, data: Any) -> None:
        async with connection.send_lock:
            await connection.websocket.send_json({"event": event, "data": data})

    async def broadcast(self, event: str, data: Any) -> None:
        """Push one event to every connection, dropping the ones that fail"""
        connections = list(self._connections.values())
        results = await asyncio.gather(
            *(self.send(connection, event, data) for connection in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️ Dropping connection {connection.id} after failed send: {result}")
                self.disconnect(connection.id)
        logger.debug(f"📡 Broadcast {event} to {len(connections)} connection(s)")


def read_slots(db) -> list[dict]:
    return [
        TimeSlotResponse.from_model(slot).model_dump(mode="json")
        for slot in SlotRepository.list_slots(db)
    ]


def read_requests(db) -> list[dict]:
    return [
        ScheduleRequestResponse.from_model(request).model_dump(mode="json")
        for request in RequestRepository.list_requests(db)
    ]


def read_processed_history(db) -> list[dict]:
    return [
        ScheduleRequestResponse.from_model(request).model_dump(mode="json")
        for request in RequestRepository.list_processed(db)
    ]


def read_snapshot(db) -> dict:
    snapshot = ScheduleSnapshot(
        timeSlots=[TimeSlotResponse.from_model(s) for s in SlotRepository.list_slots(db)],
        scheduleRequests=[
            ScheduleRequestResponse.from_model(r) for r in RequestRepository.list_requests(db)
        ],
    )
    return snapshot.model_dump(mode="json")


class BroadcastCoordinator:
    """Re-reads authoritative state and pushes it to all connections"""

    def __init__(self, manager: ConnectionManager, session_factory: sessionmaker):
        self.manager = manager
        self.session_factory = session_factory

    async def read(self, reader):
        """Run a reader against a fresh session in the threadpool"""

        def _read():
            db = self.session_factory()
            try:
                return reader(db)
            finally:
                db.close()

        return await run_in_threadpool(_read)

    async def publish(self, domains: Iterable[str]) -> None:
        """
        Push the current state of every changed collection.

        The shared publish lock spans read and broadcast, so a snapshot taken
        earlier can never reach a client after a newer one.
        """
        domains = set(domains)
        if SLOTS in domains:
            async with self.manager.publish_lock:
                slots = await self.read(read_slots)
                await self.manager.broadcast("slots-updated", {"timeSlots": slots})
        if REQUESTS in domains:
            async with self.manager.publish_lock:
                requests = await self.read(read_requests)
                await self.manager.broadcast("requests-updated", {"scheduleRequests": requests})
