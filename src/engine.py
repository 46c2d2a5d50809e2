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
Cooldown engine: wires rules, table, bypasses, gate and persistence together
and exposes the operations the admin front end calls.

One instance per process, built from a CooldownConfig and handed to whoever
needs it. There is no module-level accessor.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

import structlog

try:
    from .bypass_registry import BypassRegistry
    from .config import CooldownConfig, save_rules
    from .cooldown_table import CooldownTable, now_millis
    from .errors import ConfigurationError
    from .gate import GateDecision, GateResult
    from .persistence import ActorParser, CooldownStore, PersistenceCodec
    from .rule_store import PermissionCheck, RuleStore
    from .utils.action_keys import normalize_key
    from .utils.time_format import parse_time
except ImportError:
    from bypass_registry import BypassRegistry
    from config import CooldownConfig, save_rules
    from cooldown_table import CooldownTable, now_millis
    from errors import ConfigurationError
    from gate import GateDecision, GateResult
    from persistence import ActorParser, CooldownStore, PersistenceCodec
    from rule_store import PermissionCheck, RuleStore
    from utils.action_keys import normalize_key
    from utils.time_format import parse_time

logger = structlog.get_logger()

RULES_PER_PAGE = 10

RulesWriter = Callable[[Dict[str, int]], None]
ConfigLoader = Callable[[], CooldownConfig]


@dataclass(frozen=True)
class AdminResult:
    """Outcome of an admin operation, rendered by the front end."""

    ok: bool
    message: str
    """Message key, e.g. 'cooldown-set' or 'cooldown-not-found'."""

    placeholders: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RulePage:
    entries: List[Tuple[str, int]]
    page: int
    max_pages: int


class CooldownEngine:
    """Command cooldown engine."""

    def __init__(
        self,
        config: CooldownConfig,
        permission_check: Optional[PermissionCheck] = None,
        rules_writer: Optional[RulesWriter] = None,
        config_loader: Optional[ConfigLoader] = None,
        actor_parser: ActorParser = uuid.UUID,
    ) -> None:
        """
        Initialize engine.

        Args:
            config: Loaded configuration
            permission_check: Host callback (actor, node) -> granted, used for
                group eligibility and permission-based bypass
            rules_writer: Persists rule edits. Defaults to rewriting the
                config file's cooldowns section when config.config_path is set
            config_loader: Produces a fresh CooldownConfig on reload()
            actor_parser: Reads a persisted actor id back into the identity
                type the host passes to evaluate(). Actors it cannot read
                back are not persisted.
        """
        self.config = config
        self.rules = RuleStore(config.rule_set(), permission_check=permission_check)
        self.table = CooldownTable()
        self.bypass = BypassRegistry(permission_check=permission_check)
        self.gate = GateDecision(self.rules, self.table, self.bypass, config.gate_settings())
        self._codec = PersistenceCodec(actor_parser)
        self.store: Optional[CooldownStore] = self._make_store(config)

        self._config_loader = config_loader
        self._writer_from_config = rules_writer is None
        self._rules_writer = rules_writer if rules_writer is not None else self._config_writer(config)

        logger.info(
            "cooldown_engine_initialized",
            enabled=config.enabled,
            rules=len(config.cooldowns),
            groups=len(config.groups),
            persistent=self.store is not None,
        )

    def _make_store(self, config: CooldownConfig) -> Optional[CooldownStore]:
        if not config.persistent_cooldowns:
            return None
        return CooldownStore(config.data_path, self._codec)

    @staticmethod
    def _config_writer(config: CooldownConfig) -> Optional[RulesWriter]:
        if config.config_path is None:
            return None
        config_path = Path(config.config_path)
        return lambda rules: save_rules(config_path, rules)

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def evaluate(
        self,
        actor: Hashable,
        raw: str,
        now: Optional[int] = None,
        world: Optional[str] = None,
    ) -> GateResult:
        return self.gate.evaluate(actor, raw, now=now, world=world)

    def remaining(self, actor: Hashable, action_key: str, now: Optional[int] = None) -> int:
        return self.table.remaining(actor, normalize_key(action_key), now)

    def active_cooldowns(self, actor: Hashable, now: Optional[int] = None) -> Dict[str, int]:
        return self.table.active(actor, now)

    # ------------------------------------------------------------------
    # Rule administration
    # ------------------------------------------------------------------

    def set_rule(self, action_key: str, value: Any) -> AdminResult:
        """
        Create or replace a rule.

        Args:
            action_key: Action key or 'prefix*'
            value: Seconds or duration string ("30", "5m", "1h30m")

        Returns:
            AdminResult; failure for empty keys and non-positive durations
        """
        key = normalize_key(str(action_key))
        seconds = parse_time(value)
        if not key or seconds <= 0:
            return AdminResult(False, "cooldown-set-error", {"command": key, "value": str(value)})

        max_seconds = self.config.max_cooldown
        if max_seconds > 0 and seconds > max_seconds:
            logger.info("cooldown_rule_clamped", command=key, requested=seconds, max=max_seconds)
            seconds = max_seconds

        self.rules.set_rule(key, seconds)
        self.config.cooldowns[key] = seconds
        self._write_rules()
        return AdminResult(True, "cooldown-set", {"command": key, "cooldown": str(seconds)})

    def remove_rule(self, action_key: str) -> AdminResult:
        key = normalize_key(str(action_key))
        if not self.rules.remove_rule(key):
            return AdminResult(False, "cooldown-not-found", {"command": key})

        self.config.cooldowns.pop(key, None)
        self._write_rules()
        return AdminResult(True, "cooldown-removed", {"command": key})

    def get_rule(self, action_key: str) -> int:
        return self.rules.get_rule(action_key)

    def list_rules(self) -> List[Tuple[str, int]]:
        return self.rules.list_rules()

    def list_rules_page(self, page: int = 1, per_page: int = RULES_PER_PAGE) -> RulePage:
        """One page of list_rules(); out-of-range pages are clamped."""
        entries = self.list_rules()
        max_pages = max(1, math.ceil(len(entries) / per_page))
        page = max(1, min(page, max_pages))
        start = (page - 1) * per_page
        return RulePage(entries=entries[start:start + per_page], page=page, max_pages=max_pages)

    def _write_rules(self) -> None:
        if self._rules_writer is None:
            return
        try:
            self._rules_writer(dict(self.rules.snapshot.rules))
        except (OSError, ConfigurationError) as exc:
            # The in-memory rule is active either way
            logger.error("failed_to_save_rules", error=str(exc))

    # ------------------------------------------------------------------
    # Actor administration
    # ------------------------------------------------------------------

    def toggle_bypass(self, actor: Hashable, action_key: Optional[str] = None) -> bool:
        """Flip global bypass, or per-action bypass when action_key is given."""
        if action_key is None:
            return self.bypass.toggle_global(actor)
        return self.bypass.toggle_action(actor, action_key)

    def clear(self, actor: Hashable, action_key: Optional[str] = None) -> bool:
        """Remove one or all cooldowns of an actor."""
        if action_key is None:
            cleared = self.table.clear_all(actor)
        else:
            cleared = self.table.clear(actor, normalize_key(action_key))

        logger.info("cooldowns_cleared", actor=str(actor), command=action_key, cleared=cleared)
        return cleared

    def evict(self, actor: Hashable, forget_bypass: bool = False) -> None:
        """Release an actor's state when it leaves (disconnect/logout)."""
        self.table.evict(actor)
        if forget_bypass:
            self.bypass.evict(actor)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def restore(self, now: Optional[int] = None) -> int:
        """Load persisted cooldowns. No-op when persistence is disabled."""
        if self.store is None:
            return 0
        return self.store.load_into(self.table, now)

    def persist(self, now: Optional[int] = None) -> int:
        """Save live cooldowns. No-op when persistence is disabled."""
        if self.store is None:
            return 0
        return self.store.save_from(self.table, now)

    def reload(self, config: Optional[CooldownConfig] = None) -> CooldownConfig:
        """
        Apply a new configuration without dropping active cooldowns.

        Args:
            config: New configuration. Loaded via config_loader when omitted.

        Raises:
            ConfigurationError: If the new configuration is invalid; the
                current configuration stays in effect
        """
        if config is None:
            if self._config_loader is None:
                raise ConfigurationError("No configuration loader available for reload")
            config = self._config_loader()

        rule_set = config.rule_set()
        now = now_millis()

        self.persist(now)

        self.config = config
        self.rules.swap(rule_set)
        self.gate.update_settings(config.gate_settings())
        self.store = self._make_store(config)
        if self._writer_from_config:
            self._rules_writer = self._config_writer(config)

        restored = self.restore(now)
        self.table.prune(now)

        logger.info(
            "cooldown_engine_reloaded",
            rules=len(config.cooldowns),
            groups=len(config.groups),
            restored=restored,
        )
        return config

    def stats(self, now: Optional[int] = None) -> Dict[str, Any]:
        current = now_millis() if now is None else now
        return {
            "enabled": self.config.enabled,
            "tracked_actors": len(self.table),
            "active_cooldowns": self.table.count(current),
            "bypassed_actors": self.bypass.bypassed_actors(),
            "persistent": self.store is not None,
            **self.rules.describe(),
        }
