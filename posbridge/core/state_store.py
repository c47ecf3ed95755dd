"""
Persisted POS state (tables + kitchen tickets).

The store is the single owner of the POS state. Every mutation goes through
one of its operations; callers only ever receive deep copies. The whole state
is mirrored to one JSON document on every save and recovered from it at
startup.
"""

import copy
import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TABLE_COUNT = 16
STATE_FILENAME = 'pos-state.json'

TABLE_STATUSES = ('free', 'occupied', 'reserved')
TICKET_STATUSES = ('NEW', 'IN_PROGRESS', 'READY')


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def make_default_tables(count: int = DEFAULT_TABLE_COUNT) -> List[Dict[str, Any]]:
    """Build the initial table layout: T1..Tn, all free with an empty 'Main' split."""
    return [
        {
            "id": idx + 1,
            "name": f"T{idx + 1}",
            "seats": (idx % 4) + 2,
            "status": "free",
            "waiter": None,
            "total": 0,
            "cart": [],
            "splits": ["Main"],
            "defaultPayer": "Main",
        }
        for idx in range(count)
    ]


def make_default_state(table_count: int = DEFAULT_TABLE_COUNT) -> Dict[str, Any]:
    return {
        "tables": make_default_tables(table_count),
        "tickets": [],
        "updatedAt": utc_now_iso(),
    }


class PosStateStore:
    """
    Single-writer store for the POS state.

    Mutations are applied under a lock and never reach into the network;
    persistence is a full-document overwrite that never raises.
    """

    def __init__(self, data_dir: str, table_count: int = DEFAULT_TABLE_COUNT,
                 filename: str = STATE_FILENAME):
        self.data_dir = data_dir
        self.table_count = table_count
        self.state_file = os.path.join(data_dir, filename)
        self._lock = threading.RLock()
        self._state = make_default_state(table_count)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def load(self) -> Dict[str, Any]:
        """
        Load the persisted state, falling back to defaults.

        A missing, unreadable or corrupt file never raises; it yields the
        default table layout with no tickets.

        Returns:
            dict: Copy of the loaded state
        """
        state = make_default_state(self.table_count)

        try:
            if os.path.exists(self.state_file):
                with open(self.state_file, 'r', encoding='utf-8') as f:
                    saved = json.load(f)

                if isinstance(saved, dict):
                    state.update(saved)
                    state["tables"] = saved["tables"] if isinstance(saved.get("tables"), list) \
                        else make_default_tables(self.table_count)
                    state["tickets"] = saved["tickets"] if isinstance(saved.get("tickets"), list) else []
                    logger.info(f"State loaded from {self.state_file} with {len(state['tables'])} tables")
                else:
                    logger.warning(f"State file {self.state_file} is not a JSON object - using default tables")
            else:
                logger.info("No state file, using default tables")
        except Exception as e:
            logger.warning(f"Failed to load state: {e}")
            state = make_default_state(self.table_count)

        with self._lock:
            self._state = state
            return copy.deepcopy(self._state)

    def save(self) -> bool:
        """
        Stamp updatedAt and overwrite the state file.

        Failures are logged and swallowed; the in-memory state stays
        authoritative.

        Returns:
            bool: True if the file was written
        """
        with self._lock:
            self._state["updatedAt"] = utc_now_iso()
            payload = json.dumps(self._state, indent=2, ensure_ascii=False)

        temp_path = self.state_file + '.tmp'
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(temp_path, self.state_file)
            return True
        except Exception as e:
            logger.warning(f"Failed to save state: {e}")
            try:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
            except OSError:
                pass
            return False

    # =========================================================================
    # READS
    # =========================================================================

    def get_state(self) -> Dict[str, Any]:
        """Full aggregate {tables, tickets, updatedAt} as a deep copy."""
        with self._lock:
            return copy.deepcopy(self._state)

    def get_public_state(self) -> Dict[str, Any]:
        """The {tables, tickets} view returned by GET pos/state."""
        with self._lock:
            return {
                "tables": copy.deepcopy(self._state["tables"]),
                "tickets": copy.deepcopy(self._state["tickets"]),
            }

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def replace_snapshot(self, snapshot: Any) -> Dict[str, bool]:
        """
        Wholesale-replace tables and/or tickets.

        Only members that are present and are lists are applied; anything
        else is ignored.

        Returns:
            dict: Which members were replaced
        """
        snapshot = snapshot if isinstance(snapshot, dict) else {}
        applied = {"tables": False, "tickets": False}

        with self._lock:
            for key in ("tables", "tickets"):
                value = snapshot.get(key)
                if isinstance(value, list):
                    self._state[key] = copy.deepcopy(value)
                    applied[key] = True

        logger.debug(f"Snapshot applied: {applied}")
        return applied

    def create_ticket(self, body: Any) -> Dict[str, Any]:
        """
        Prepend a kitchen ticket (newest first).

        A missing id is derived from the current time and made unique among
        live tickets; createdAt and status default to now and NEW.

        Returns:
            dict: Copy of the stored ticket
        """
        ticket = copy.deepcopy(body) if isinstance(body, dict) else {}

        with self._lock:
            if not ticket.get("id"):
                ticket["id"] = self._next_ticket_id()
            ticket.setdefault("createdAt", utc_now_iso())
            ticket.setdefault("status", "NEW")

            self._state["tickets"] = [ticket] + self._state["tickets"]
            logger.info(f"Ticket {ticket['id']} created for {ticket.get('table', '?')}")
            return copy.deepcopy(ticket)

    def update_ticket_status(self, ticket_id: Any, status: Any) -> Dict[str, Any]:
        """
        Set the status of the ticket with the given id.

        Raises:
            NotFoundError: If no live ticket has that id
        """
        with self._lock:
            for ticket in self._state["tickets"]:
                if isinstance(ticket, dict) and str(ticket.get("id")) == str(ticket_id):
                    ticket["status"] = status
                    logger.info(f"Ticket {ticket_id} -> {status}")
                    return copy.deepcopy(ticket)

        raise NotFoundError("not found")

    def delete_ticket(self, ticket_id: Any) -> int:
        """
        Remove every ticket with the given id.

        Returns:
            int: Number of tickets removed (0 is not an error)
        """
        with self._lock:
            before = len(self._state["tickets"])
            self._state["tickets"] = [
                t for t in self._state["tickets"]
                if not (isinstance(t, dict) and str(t.get("id")) == str(ticket_id))
            ]
            removed = before - len(self._state["tickets"])

        if removed:
            logger.info(f"Ticket {ticket_id} deleted")
        return removed

    def patch_table(self, table_id: Any, patch: Any) -> Dict[str, Any]:
        """
        Shallow-merge fields into the table with the given numeric id.

        Raises:
            NotFoundError: If the id is not numeric or no table has it
        """
        table_id = _as_int(table_id)
        patch = patch if isinstance(patch, dict) else {}

        with self._lock:
            if table_id is not None:
                for idx, table in enumerate(self._state["tables"]):
                    if isinstance(table, dict) and table.get("id") == table_id:
                        merged = dict(table)
                        merged.update(copy.deepcopy(patch))
                        merged["id"] = table["id"]
                        self._state["tables"][idx] = merged
                        logger.debug(f"Table {table_id} patched: {sorted(patch)}")
                        return copy.deepcopy(merged)

        raise NotFoundError("table not found")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _next_ticket_id(self) -> str:
        live = {str(t.get("id")) for t in self._state["tickets"] if isinstance(t, dict)}
        candidate = int(time.time() * 1000)
        while str(candidate) in live:
            candidate += 1
        return str(candidate)

    def __repr__(self) -> str:
        with self._lock:
            return (f"<PosStateStore {self.state_file} tables={len(self._state['tables'])} "
                    f"tickets={len(self._state['tickets'])}>")


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
