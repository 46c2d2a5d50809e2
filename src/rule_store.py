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
Cooldown rule resolution.

Precedence for an (actor, action key) pair:
1. Group override for the key (first eligible group, unmultiplied)
2. Group multiplier applied to the base duration
3. Base duration: exact rule > longest-prefix wildcard rule > default

Rules live in an immutable RuleSet snapshot. Reloads and admin edits build a
new snapshot and swap it in, so a resolution never sees a half-applied change.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

import structlog

try:
    from .errors import ConfigurationError
    from .utils.action_keys import normalize_key
except ImportError:
    from errors import ConfigurationError
    from utils.action_keys import normalize_key

logger = structlog.get_logger()

WILDCARD_SUFFIX = "*"
GROUP_PERMISSION_PREFIX = "commandcooldown.group."

PermissionCheck = Callable[[Hashable, str], bool]
"""(actor, permission node) -> granted. Supplied by the host."""


def _deny_all(actor: Hashable, node: str) -> bool:
    return False


@dataclass(frozen=True)
class CooldownGroup:
    """Named bundle of a duration multiplier and per-action overrides."""

    name: str
    multiplier: float = 1.0
    overrides: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Cooldown group name cannot be empty")

        if isinstance(self.multiplier, bool) or not isinstance(self.multiplier, (int, float)):
            raise ConfigurationError(
                f"Group {self.name}: multiplier must be a number, "
                f"got {type(self.multiplier).__name__}"
            )

        if math.isnan(self.multiplier) or self.multiplier < 0:
            raise ConfigurationError(
                f"Group {self.name}: multiplier must be >= 0, got {self.multiplier}"
            )

        normalized: Dict[str, int] = {}
        for key, seconds in self.overrides.items():
            if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
                raise ConfigurationError(
                    f"Group {self.name}: override for {key!r} must be a non-negative int, "
                    f"got {seconds!r}"
                )
            normalized[normalize_key(key)] = seconds

        object.__setattr__(self, "name", self.name.lower())
        object.__setattr__(self, "multiplier", float(self.multiplier))
        object.__setattr__(self, "overrides", MappingProxyType(normalized))

    @property
    def permission(self) -> str:
        return f"{GROUP_PERMISSION_PREFIX}{self.name}"


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of every configured cooldown rule."""

    default_seconds: int = 0
    rules: Mapping[str, int] = field(default_factory=dict)
    """All rules as configured, wildcard keys keep their trailing '*'."""

    groups: Tuple[CooldownGroup, ...] = ()
    """Groups in precedence order (first eligible wins)."""

    max_seconds: int = 0
    """Upper clamp on resolved durations. 0 disables the clamp."""

    _exact: Mapping[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _wildcards: Tuple[Tuple[str, int], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.default_seconds < 0:
            raise ConfigurationError(f"default cooldown must be >= 0, got {self.default_seconds}")
        if self.max_seconds < 0:
            raise ConfigurationError(f"max cooldown must be >= 0, got {self.max_seconds}")

        exact: Dict[str, int] = {}
        wildcards: List[Tuple[str, int]] = []
        rules: Dict[str, int] = {}

        for raw_key, seconds in self.rules.items():
            key = normalize_key(raw_key)
            if not key:
                raise ConfigurationError("Cooldown rule key cannot be empty")
            if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
                raise ConfigurationError(
                    f"Cooldown for {key!r} must be a non-negative int, got {seconds!r}"
                )
            rules[key] = seconds
            if key.endswith(WILDCARD_SUFFIX):
                wildcards.append((key[: -len(WILDCARD_SUFFIX)], seconds))
            else:
                exact[key] = seconds

        # sorted() is stable: equal-length prefixes keep declaration order
        wildcards = sorted(wildcards, key=lambda item: len(item[0]), reverse=True)

        object.__setattr__(self, "rules", MappingProxyType(rules))
        object.__setattr__(self, "groups", tuple(self.groups))
        object.__setattr__(self, "_exact", MappingProxyType(exact))
        object.__setattr__(self, "_wildcards", tuple(wildcards))

    @classmethod
    def build(
        cls,
        rules: Optional[Mapping[str, int]] = None,
        default_seconds: int = 0,
        groups: Iterable[CooldownGroup] = (),
        max_seconds: int = 0,
    ) -> "RuleSet":
        return cls(
            default_seconds=default_seconds,
            rules=dict(rules or {}),
            groups=tuple(groups),
            max_seconds=max_seconds,
        )

    def with_rule(self, key: str, seconds: int) -> "RuleSet":
        rules = dict(self.rules)
        rules[normalize_key(key)] = seconds
        return RuleSet.build(rules, self.default_seconds, self.groups, self.max_seconds)

    def without_rule(self, key: str) -> "RuleSet":
        rules = dict(self.rules)
        rules.pop(normalize_key(key), None)
        return RuleSet.build(rules, self.default_seconds, self.groups, self.max_seconds)

    def exact_for(self, key: str) -> Optional[int]:
        """Exact rule for the full key, falling back to its bare command name."""
        for candidate in _lookup_candidates(key):
            if candidate in self._exact:
                return self._exact[candidate]
        return None

    def wildcard_for(self, key: str) -> Optional[Tuple[str, int]]:
        """Longest wildcard prefix matching key, as (prefix, seconds)."""
        for prefix, seconds in self._wildcards:
            if key.startswith(prefix):
                return prefix, seconds
        return None

    def base_for(self, key: str) -> int:
        exact = self.exact_for(key)
        if exact is not None:
            return exact

        wildcard = self.wildcard_for(key)
        if wildcard is not None:
            return wildcard[1]

        return self.default_seconds

    def clamp(self, seconds: int) -> int:
        seconds = max(0, seconds)
        if self.max_seconds > 0:
            seconds = min(seconds, self.max_seconds)
        return seconds


def _lookup_candidates(key: str) -> Tuple[str, ...]:
    """"home base" -> ("home base", "home"); "home" -> ("home",)."""
    command = key.split(" ", 1)[0]
    if command == key:
        return (key,)
    return (key, command)


class RuleStore:
    """Read-mostly holder of the active RuleSet."""

    def __init__(
        self,
        rule_set: Optional[RuleSet] = None,
        permission_check: Optional[PermissionCheck] = None,
    ) -> None:
        """
        Initialize rule store.

        Args:
            rule_set: Initial rules (empty, default 0 if omitted)
            permission_check: Host callback deciding group eligibility
        """
        self._snapshot: RuleSet = rule_set or RuleSet()
        self._permission_check: PermissionCheck = permission_check or _deny_all
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> RuleSet:
        return self._snapshot

    def swap(self, rule_set: RuleSet) -> RuleSet:
        """Replace the active snapshot, returning the previous one."""
        with self._write_lock:
            previous = self._snapshot
            self._snapshot = rule_set

        logger.info(
            "rule_set_swapped",
            rules=len(rule_set.rules),
            groups=len(rule_set.groups),
            default_seconds=rule_set.default_seconds,
        )
        return previous

    def eligible_group(self, actor: Hashable, rule_set: Optional[RuleSet] = None) -> Optional[CooldownGroup]:
        """First configured group the actor holds, or None."""
        rules = rule_set or self._snapshot
        for group in rules.groups:
            if self._permission_check(actor, group.permission):
                return group
        return None

    def resolve_base(self, action_key: str) -> int:
        """Duration before any group adjustment."""
        return self._snapshot.base_for(normalize_key(action_key))

    def resolve_duration(self, actor: Hashable, action_key: str) -> int:
        """
        Cooldown in seconds for this actor invoking this action.

        Returns:
            Seconds >= 0. 0 means the action carries no per-action cooldown.
        """
        rules = self._snapshot
        key = normalize_key(action_key)

        group = self.eligible_group(actor, rules)
        if group is not None:
            for candidate in _lookup_candidates(key):
                if candidate in group.overrides:
                    return rules.clamp(group.overrides[candidate])

            return rules.clamp(math.floor(rules.base_for(key) * group.multiplier))

        return rules.clamp(rules.base_for(key))

    def set_rule(self, action_key: str, seconds: int) -> RuleSet:
        key = normalize_key(action_key)
        with self._write_lock:
            self._snapshot = self._snapshot.with_rule(key, seconds)
            rule_set = self._snapshot

        logger.info("cooldown_rule_set", command=key, seconds=seconds)
        return rule_set

    def remove_rule(self, action_key: str) -> bool:
        key = normalize_key(action_key)
        with self._write_lock:
            if key not in self._snapshot.rules:
                return False
            self._snapshot = self._snapshot.without_rule(key)

        logger.info("cooldown_rule_removed", command=key)
        return True

    def has_rule(self, action_key: str) -> bool:
        return normalize_key(action_key) in self._snapshot.rules

    def get_rule(self, action_key: str) -> int:
        """Base duration that applies to action_key (exact, wildcard or default)."""
        return self.resolve_base(action_key)

    def list_rules(self) -> List[Tuple[str, int]]:
        """All configured rules sorted by key."""
        return sorted(self._snapshot.rules.items())

    def describe(self) -> Dict[str, Any]:
        rules = self._snapshot
        return {
            "default_seconds": rules.default_seconds,
            "max_seconds": rules.max_seconds,
            "rules": len(rules.rules),
            "groups": [group.name for group in rules.groups],
        }
