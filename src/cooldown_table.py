# Copyright (c) 2025 Stephen Clau
#
# This file is part of Command Cooldown.
#
# Command Cooldown is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Per-actor cooldown expiry tracking.

Expiries are absolute wall-clock instants in milliseconds since the epoch.
Each actor owns a slot with its own lock; the registry lock is only taken to
create or evict a slot, so actors never contend with each other on the hot
path.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger()

GLOBAL_ACTION_KEY = "*global*"
"""Synthetic key committed in global-cooldown mode. Not a valid command name."""

MILLIS_PER_SECOND = 1000


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * MILLIS_PER_SECOND)


def remaining_seconds(expiry: int, now: int) -> int:
    """Whole seconds until expiry, rounded up. 0 once expiry <= now."""
    if expiry <= now:
        return 0
    return -(-(expiry - now) // MILLIS_PER_SECOND)


class _ActorSlot:
    """Action key -> expiry map for a single actor."""

    __slots__ = ("lock", "expiries")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.expiries: Dict[str, int] = {}


class CooldownTable:
    """Concurrent actor -> (action key -> expiry) table."""

    def __init__(self) -> None:
        self._slots: Dict[Hashable, _ActorSlot] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, actor: Hashable) -> Optional[_ActorSlot]:
        return self._slots.get(actor)

    def _slot_for_write(self, actor: Hashable) -> _ActorSlot:
        slot = self._slots.get(actor)
        if slot is not None:
            return slot
        with self._registry_lock:
            # Insert-if-absent: a concurrent writer may have created it
            return self._slots.setdefault(actor, _ActorSlot())

    def _store(self, actor: Hashable, action_key: str, expiry: int) -> None:
        while True:
            slot = self._slot_for_write(actor)
            with slot.lock:
                slot.expiries[action_key] = expiry
            # An eviction or prune may have detached the slot meanwhile
            if self._slots.get(actor) is slot:
                return

    @contextmanager
    def hold(self, actor: Hashable) -> Iterator[None]:
        """
        Lock one actor's slot so a remaining() check and the following
        commit() run as a unit.

        A slot that is still empty on exit is dropped again, so holding an
        actor that never commits leaves nothing behind.
        """
        while True:
            slot = self._slot_for_write(actor)
            slot.lock.acquire()
            if self._slots.get(actor) is slot:
                break
            # Evicted or pruned between lookup and lock
            slot.lock.release()
        try:
            yield
        finally:
            try:
                self._discard_if_empty(actor, slot)
            finally:
                slot.lock.release()

    def _discard_if_empty(self, actor: Hashable, slot: _ActorSlot) -> bool:
        with self._registry_lock:
            # Never block on a slot lock under the registry lock
            if self._slots.get(actor) is not slot or not slot.lock.acquire(blocking=False):
                return False
            try:
                if slot.expiries:
                    return False
                del self._slots[actor]
                return True
            finally:
                slot.lock.release()

    def expiry(self, actor: Hashable, action_key: str) -> Optional[int]:
        slot = self._slot(actor)
        if slot is None:
            return None
        with slot.lock:
            return slot.expiries.get(action_key)

    def remaining(self, actor: Hashable, action_key: str, now: Optional[int] = None) -> int:
        """
        Seconds left on the actor's cooldown for action_key.

        Args:
            actor: Actor identity
            action_key: Normalized action key
            now: Epoch milliseconds (defaults to wall clock)

        Returns:
            0 if no active cooldown, otherwise remaining seconds rounded up
        """
        expiry = self.expiry(actor, action_key)
        if expiry is None:
            return 0
        return remaining_seconds(expiry, now_millis() if now is None else now)

    def commit(
        self,
        actor: Hashable,
        action_key: str,
        seconds: int,
        now: Optional[int] = None,
    ) -> Optional[int]:
        """
        Start (or restart) a cooldown.

        Args:
            actor: Actor identity
            action_key: Normalized action key
            seconds: Cooldown length; <= 0 is a no-op
            now: Epoch milliseconds (defaults to wall clock)

        Returns:
            The stored expiry, or None when nothing was committed
        """
        if seconds <= 0:
            if seconds < 0:
                logger.warning(
                    "negative_cooldown_ignored",
                    actor=str(actor),
                    action=action_key,
                    seconds=seconds,
                )
            return None

        current = now_millis() if now is None else now
        expiry = current + seconds * MILLIS_PER_SECOND
        self._store(actor, action_key, expiry)
        return expiry

    def clear(self, actor: Hashable, action_key: str) -> bool:
        """Remove one cooldown. Returns True if an entry existed."""
        slot = self._slot(actor)
        if slot is None:
            return False
        with slot.lock:
            return slot.expiries.pop(action_key, None) is not None

    def clear_all(self, actor: Hashable) -> bool:
        """Remove every cooldown of an actor. Returns True if any existed."""
        with self._registry_lock:
            slot = self._slots.pop(actor, None)
        if slot is None:
            return False
        with slot.lock:
            return bool(slot.expiries)

    def evict(self, actor: Hashable) -> None:
        """Drop an actor's slot (e.g. on logout) to bound memory."""
        if self.clear_all(actor):
            logger.debug("cooldown_actor_evicted", actor=str(actor))

    def active(self, actor: Hashable, now: Optional[int] = None) -> Dict[str, int]:
        """Non-expired cooldowns of one actor as {action_key: expiry}."""
        slot = self._slot(actor)
        if slot is None:
            return {}
        current = now_millis() if now is None else now
        with slot.lock:
            return {key: expiry for key, expiry in slot.expiries.items() if expiry > current}

    def snapshot(self, now: Optional[int] = None) -> Dict[Hashable, Dict[str, int]]:
        """Copy of every non-expired entry, actors without entries omitted."""
        current = now_millis() if now is None else now
        result: Dict[Hashable, Dict[str, int]] = {}
        for actor, _slot in self._iter_slots():
            entries = self.active(actor, current)
            if entries:
                result[actor] = entries
        return result

    def restore(self, entries: Mapping[Hashable, Mapping[str, int]], now: Optional[int] = None) -> int:
        """
        Load expiries (e.g. from persisted state), skipping lapsed ones.

        An entry already in the table with a later expiry is kept.

        Returns:
            Number of entries restored
        """
        current = now_millis() if now is None else now
        restored = 0
        for actor, cooldowns in entries.items():
            for action_key, expiry in cooldowns.items():
                if expiry <= current:
                    continue
                existing = self.expiry(actor, action_key)
                if existing is not None and existing >= expiry:
                    continue
                self._store(actor, action_key, expiry)
                restored += 1
        return restored

    def prune(self, now: Optional[int] = None) -> int:
        """Delete expired entries and empty slots. Returns entries removed."""
        current = now_millis() if now is None else now
        removed = 0
        for actor, slot in self._iter_slots():
            with slot.lock:
                expired = [key for key, expiry in slot.expiries.items() if expiry <= current]
                for key in expired:
                    del slot.expiries[key]
                removed += len(expired)
                empty = not slot.expiries

            if empty:
                # Slots held by an in-flight gate decision are left to hold()
                self._discard_if_empty(actor, slot)

        if removed:
            logger.debug("cooldowns_pruned", removed=removed, actors=len(self._slots))
        return removed

    def actors(self) -> List[Hashable]:
        return [actor for actor, _ in self._iter_slots()]

    def count(self, now: Optional[int] = None) -> int:
        """Number of non-expired entries across all actors."""
        return sum(len(entries) for entries in self.snapshot(now).values())

    def _iter_slots(self) -> Iterator[Tuple[Hashable, _ActorSlot]]:
        with self._registry_lock:
            items = list(self._slots.items())
        return iter(items)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, actor: object) -> bool:
        return actor in self._slots
