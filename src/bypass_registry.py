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

"""Standing cooldown exemptions, global or per action."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Hashable, Optional, Set

import structlog

try:
    from .utils.action_keys import normalize_key
except ImportError:
    from utils.action_keys import normalize_key

logger = structlog.get_logger()

BYPASS_PERMISSION = "commandcooldown.bypass"
BYPASS_ACTION_PERMISSION_PREFIX = "commandcooldown.bypass.specific."


class BypassRegistry:
    """Tracks actors exempt from cooldown checks."""

    def __init__(self, permission_check: Optional[Callable[[Hashable, str], bool]] = None) -> None:
        """
        Initialize bypass registry.

        Args:
            permission_check: Host callback (actor, node) -> granted, consulted
                for the bypass permission nodes after the toggled flags
        """
        self._permission_check = permission_check
        self._global: Set[Hashable] = set()
        self._actions: Dict[Hashable, Set[str]] = {}
        self._lock = threading.Lock()

    def has_global(self, actor: Hashable) -> bool:
        return actor in self._global

    def has_action(self, actor: Hashable, action_key: str) -> bool:
        with self._lock:
            keys = self._actions.get(actor)
            return keys is not None and normalize_key(action_key) in keys

    def is_bypassed(self, actor: Hashable, action_key: str) -> bool:
        """True if the actor skips cooldowns for action_key."""
        if self.has_global(actor) or self.has_action(actor, action_key):
            return True

        if self._permission_check is None:
            return False

        key = normalize_key(action_key)
        return (
            self._permission_check(actor, BYPASS_PERMISSION)
            or self._permission_check(actor, f"{BYPASS_ACTION_PERMISSION_PREFIX}{key}")
        )

    def toggle_global(self, actor: Hashable) -> bool:
        """Flip the actor's global bypass. Returns the new state."""
        with self._lock:
            if actor in self._global:
                self._global.discard(actor)
                enabled = False
            else:
                self._global.add(actor)
                enabled = True

        logger.info("bypass_toggled", actor=str(actor), enabled=enabled)
        return enabled

    def toggle_action(self, actor: Hashable, action_key: str) -> bool:
        """Flip the actor's bypass for one action. Returns the new state."""
        key = normalize_key(action_key)
        with self._lock:
            keys = self._actions.setdefault(actor, set())
            if key in keys:
                keys.discard(key)
                enabled = False
                if not keys:
                    del self._actions[actor]
            else:
                keys.add(key)
                enabled = True

        logger.info("bypass_toggled", actor=str(actor), command=key, enabled=enabled)
        return enabled

    def evict(self, actor: Hashable) -> None:
        with self._lock:
            self._global.discard(actor)
            self._actions.pop(actor, None)

    def bypassed_actors(self) -> int:
        with self._lock:
            return len(self._global | set(self._actions))
