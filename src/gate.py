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
Gate decision for a single intercepted invocation.

evaluate() runs, in order:
1. plugin disabled            -> Allow
2. derive the action key      -> Allow if the text is not a command
3. excluded / reserved / world -> Allow
4. bypass                     -> Allow
5. active cooldown            -> Deny(remaining), nothing mutated
6. resolve + commit           -> Allow
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Hashable, Optional, Tuple, Union

import structlog

try:
    from .bypass_registry import BypassRegistry
    from .cooldown_table import GLOBAL_ACTION_KEY, CooldownTable, now_millis
    from .rule_store import WILDCARD_SUFFIX, RuleStore
    from .utils.action_keys import ActionKey, derive_action_key
except ImportError:
    from bypass_registry import BypassRegistry
    from cooldown_table import GLOBAL_ACTION_KEY, CooldownTable, now_millis
    from rule_store import WILDCARD_SUFFIX, RuleStore
    from utils.action_keys import ActionKey, derive_action_key

logger = structlog.get_logger()

# Names the engine's own admin command is registered under
RESERVED_COMMANDS: FrozenSet[str] = frozenset({"commandcooldown", "cc", "opoznieniekomend", "ok"})

Tokenizer = Callable[[str, bool, int], Optional[ActionKey]]


@dataclass(frozen=True)
class Allow:
    """Invocation may proceed."""

    reason: str = "ok"
    action_key: Optional[str] = None
    committed_seconds: int = 0

    allowed = True


@dataclass(frozen=True)
class Deny:
    """Invocation is blocked by an active cooldown."""

    command: str
    action_key: str
    remaining: int

    allowed = False


GateResult = Union[Allow, Deny]


@dataclass(frozen=True)
class GateSettings:
    """Configuration slice the gate reads on every invocation."""

    enabled: bool = True
    use_global_cooldown: bool = False
    global_cooldown: int = 3
    separate_arguments: bool = False
    argument_depth: int = 1
    excluded_commands: Tuple[str, ...] = field(default_factory=tuple)
    excluded_worlds: Tuple[str, ...] = field(default_factory=tuple)


class GateDecision:
    """Composes rules, cooldown table and bypasses into Allow/Deny."""

    def __init__(
        self,
        rules: RuleStore,
        table: CooldownTable,
        bypass: BypassRegistry,
        settings: Optional[GateSettings] = None,
        tokenizer: Tokenizer = derive_action_key,
    ) -> None:
        self.rules = rules
        self.table = table
        self.bypass = bypass
        self.tokenizer = tokenizer
        self._settings = settings or GateSettings()

    @property
    def settings(self) -> GateSettings:
        return self._settings

    def update_settings(self, settings: GateSettings) -> None:
        """Swap in reloaded settings."""
        self._settings = settings

    def is_excluded(self, command: str, world: Optional[str] = None) -> bool:
        """True if command (or world) is never cooldown-gated."""
        settings = self._settings
        command = command.lower()

        if command in RESERVED_COMMANDS:
            return True

        if world is not None and world in settings.excluded_worlds:
            return True

        for excluded in settings.excluded_commands:
            if excluded == command:
                return True
            if excluded.endswith(WILDCARD_SUFFIX) and command.startswith(excluded[: -len(WILDCARD_SUFFIX)]):
                return True

        return False

    def evaluate(
        self,
        actor: Hashable,
        raw: str,
        now: Optional[int] = None,
        world: Optional[str] = None,
    ) -> GateResult:
        """
        Decide whether actor may run the invocation raw.

        Args:
            actor: Actor identity
            raw: Raw invocation text including the leading marker
            now: Epoch milliseconds (defaults to wall clock)
            world: Optional world/category the actor is in

        Returns:
            Allow (a new cooldown may have been committed) or Deny(remaining)
        """
        settings = self._settings
        if not settings.enabled:
            return Allow(reason="disabled")

        action = self.tokenizer(raw, settings.separate_arguments, settings.argument_depth)
        if action is None:
            return Allow(reason="not_a_command")

        if self.is_excluded(action.command, world):
            return Allow(reason="excluded", action_key=action.key)

        if self.bypass.is_bypassed(actor, action.key):
            return Allow(reason="bypass", action_key=action.key)

        current = now_millis() if now is None else now

        # Double submissions from one actor must not both pass the check
        with self.table.hold(actor):
            remaining = self.table.remaining(actor, action.key, current)
            if settings.use_global_cooldown:
                remaining = max(remaining, self.table.remaining(actor, GLOBAL_ACTION_KEY, current))

            if remaining > 0:
                logger.debug(
                    "invocation_denied",
                    actor=str(actor),
                    action=action.key,
                    remaining=remaining,
                )
                return Deny(command=action.command, action_key=action.key, remaining=remaining)

            seconds = self.rules.resolve_duration(actor, action.key)
            if seconds > 0:
                self.table.commit(actor, action.key, seconds, current)
                logger.debug(
                    "cooldown_committed",
                    actor=str(actor),
                    action=action.key,
                    seconds=seconds,
                )

            if settings.use_global_cooldown and settings.global_cooldown > 0:
                self.table.commit(actor, GLOBAL_ACTION_KEY, settings.global_cooldown, current)

        return Allow(reason="ok", action_key=action.key, committed_seconds=seconds)
