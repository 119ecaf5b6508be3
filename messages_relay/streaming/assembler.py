"""
Partial Tool-Call Assembler

Rebuilds complete tool calls from fragments that backends deliver
incrementally, keyed by the backend's slot (index or id) because ids may be
missing from later fragments.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from messages_relay.protocol.types import ToolCall, ToolCallFragment

logger = logging.getLogger(__name__)

Slot = Union[int, str]


class ArgsMergeStrategy(str, Enum):
    """How successive argument fragments for one call are combined."""
    # One growing JSON string split across frames
    CONCAT = "concat"
    # Each frame resends a JSON object snapshot; top-level keys are unioned
    OBJECT_MERGE = "object_merge"


@dataclass
class _LedgerEntry:
    call_id: Optional[str] = None
    name: Optional[str] = None
    args_text: str = ""
    args_object: dict[str, Any] = field(default_factory=dict)
    corrupt: bool = False
    signature: Optional[str] = None


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCallAssembler:
    """
    Per-stream ledger of partial tool calls

    One instance per request. feed() is called for every fragment in arrival
    order; finalize() is called once at stream end and freezes the ledger.
    """

    def __init__(self, strategy: ArgsMergeStrategy = ArgsMergeStrategy.CONCAT):
        self.strategy = strategy
        self._entries: dict[Slot, _LedgerEntry] = {}
        self._last_slot: Optional[Slot] = None
        self._finalized = False

    def __len__(self) -> int:
        return len(self._entries)

    def feed(
        self,
        slot: Optional[Slot],
        name: Optional[str] = None,
        args: Optional[Union[str, dict[str, Any]]] = None,
        call_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> None:
        """
        Record one fragment

        Args:
            slot: Backend slot; None continues the most recent slot
            name: Function name; the first non-empty name for a slot wins
            args: Argument text slice or decoded object snapshot
            call_id: Backend call id, when present
            signature: Opaque continuation token for the call
        """
        if self._finalized:
            raise RuntimeError("Tool-call assembler already finalized")

        if slot is None:
            slot = self._last_slot if self._last_slot is not None else 0
        entry = self._entries.get(slot)
        if entry is None:
            entry = _LedgerEntry()
            self._entries[slot] = entry
        self._last_slot = slot

        if call_id and not entry.call_id:
            entry.call_id = call_id
        if signature and not entry.signature:
            entry.signature = signature
        if name:
            if entry.name is None:
                entry.name = name
            elif entry.name != name:
                logger.debug("Ignoring rename of tool call slot %s: %s -> %s", slot, entry.name, name)

        if args is None or args == "":
            return
        if self.strategy == ArgsMergeStrategy.OBJECT_MERGE:
            self._merge_object(entry, args)
        else:
            entry.args_text += args if isinstance(args, str) else json.dumps(args, ensure_ascii=False)

    def feed_fragment(self, fragment: ToolCallFragment) -> None:
        self.feed(
            fragment.slot,
            name=fragment.name,
            args=fragment.args_chunk,
            call_id=fragment.call_id,
            signature=fragment.signature,
        )

    @staticmethod
    def _merge_object(entry: _LedgerEntry, args: Union[str, dict[str, Any]]) -> None:
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                entry.corrupt = True
                return
        if not isinstance(args, dict):
            entry.corrupt = True
            return
        entry.args_object.update(args)

    def _parse_args(self, slot: Slot, entry: _LedgerEntry) -> dict[str, Any]:
        if self.strategy == ArgsMergeStrategy.OBJECT_MERGE:
            if entry.corrupt:
                logger.warning(
                    "Tool call %s (slot %s) received non-object argument snapshots; kept merged keys",
                    entry.name, slot,
                )
            return dict(entry.args_object)

        if not entry.args_text.strip():
            return {}
        try:
            parsed = json.loads(entry.args_text)
        except json.JSONDecodeError:
            logger.warning(
                "Tool call %s (slot %s) has unparseable arguments; using empty object",
                entry.name, slot,
            )
            return {}
        if not isinstance(parsed, dict):
            logger.warning(
                "Tool call %s (slot %s) arguments are not an object; using empty object",
                entry.name, slot,
            )
            return {}
        return parsed

    def finalize(self) -> list[ToolCall]:
        """
        Freeze the ledger into complete tool calls

        Calls that never received a name are dropped with a warning.
        Missing or duplicate ids are replaced with generated ones.

        Returns:
            list[ToolCall]: Calls in first-seen slot order
        """
        self._finalized = True
        calls: list[ToolCall] = []
        seen_ids: set[str] = set()
        for slot, entry in self._entries.items():
            if not entry.name:
                logger.warning("Dropping tool call at slot %s: no function name received", slot)
                continue
            call_id = entry.call_id
            if not call_id or call_id in seen_ids:
                call_id = generate_call_id()
            seen_ids.add(call_id)
            calls.append(
                ToolCall(
                    id=call_id,
                    name=entry.name,
                    args=self._parse_args(slot, entry),
                    signature=entry.signature,
                )
            )
        return calls

    def discard(self) -> None:
        """Drop partial calls without finalizing; used when the caller disconnects."""
        if self._entries:
            logger.debug("Discarding %d partial tool call(s)", len(self._entries))
        self._entries.clear()
        self._last_slot = None
        self._finalized = True
