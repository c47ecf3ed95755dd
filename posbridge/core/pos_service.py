"""
State mutation API.

Each operation mutates the store, persists it and then broadcasts the full
post-mutation state to every subscriber, in that order. A failed operation
neither persists nor broadcasts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .broadcast import BroadcastChannel, Subscriber
from .state_store import PosStateStore

logger = logging.getLogger(__name__)

STATE_EVENT = "state"


class PosService:
    """Mutation API over the POS state store."""

    def __init__(self, store: PosStateStore, channel: BroadcastChannel) -> None:
        self.store = store
        self.channel = channel

    def get_state(self) -> Dict[str, Any]:
        return self.store.get_public_state()

    async def replace_snapshot(self, snapshot: Any) -> Dict[str, Any]:
        self.store.replace_snapshot(snapshot)
        await self._commit()
        return {"ok": True}

    async def create_ticket(self, body: Any) -> Dict[str, Any]:
        ticket = self.store.create_ticket(body)
        await self._commit()
        return {"ok": True, "id": ticket["id"]}

    async def update_ticket_status(self, ticket_id: Any, status: Any) -> Dict[str, Any]:
        self.store.update_ticket_status(ticket_id, status)
        await self._commit()
        return {"ok": True}

    async def delete_ticket(self, ticket_id: Any) -> Dict[str, Any]:
        self.store.delete_ticket(ticket_id)
        await self._commit()
        return {"ok": True}

    async def patch_table(self, table_id: Any, patch: Any) -> Dict[str, Any]:
        table = self.store.patch_table(table_id, patch)
        await self._commit()
        return {"ok": True, "table": table}

    async def send_initial_state(self, subscriber: Subscriber) -> bool:
        """Push the current state to a newly connected subscriber only."""
        return await self.channel.send_to(subscriber, STATE_EVENT, self.store.get_state())

    async def _commit(self) -> None:
        self.store.save()
        await self.channel.broadcast(STATE_EVENT, self.store.get_state())
