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
Tests for gate.py - the per-invocation Allow/Deny decision.

Covers:
- Deny with remaining seconds while a cooldown is active
- Fresh window once a cooldown lapses
- Denied attempts never extend the timer
- Exclusions, reserved commands, worlds, bypass, disabled switch
- Global cooldown mode
- Per-argument action keys
"""

import sys
import threading
from pathlib import Path
from typing import Callable

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from bypass_registry import BypassRegistry  # type: ignore
from cooldown_table import GLOBAL_ACTION_KEY, CooldownTable  # type: ignore
from gate import Allow, Deny, GateDecision, GateSettings  # type: ignore
from rule_store import CooldownGroup, RuleSet, RuleStore  # type: ignore


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def make_gate(permissions) -> Callable[..., GateDecision]:
    """Gate over a fixed rule set; keyword arguments are GateSettings fields."""

    def _make(**settings) -> GateDecision:
        rules = RuleSet.build(
            rules={"home": 10, "warp": 20, "warp shop": 60, "spawn": 0},
            default_seconds=0,
            groups=[CooldownGroup(name="vip", multiplier=0.5)],
        )
        return GateDecision(
            RuleStore(rules, permission_check=permissions),
            CooldownTable(),
            BypassRegistry(permission_check=permissions),
            GateSettings(**settings),
        )

    return _make


@pytest.fixture
def gate(make_gate) -> GateDecision:
    return make_gate()


# ============================================================================
# Core decision
# ============================================================================

class TestCooldownWindow:
    """Allow, Deny(remaining), Allow again."""

    def test_first_invocation_allowed_and_committed(self, gate: GateDecision, actor, t0: int) -> None:
        result = gate.evaluate(actor, "/home", t0)
        assert isinstance(result, Allow)
        assert result.allowed
        assert result.reason == "ok"
        assert result.action_key == "home"
        assert result.committed_seconds == 10
        assert gate.table.remaining(actor, "home", t0) == 10

    def test_denied_during_cooldown(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 3_000)
        assert isinstance(result, Deny)
        assert not result.allowed
        assert result.remaining == 7
        assert result.command == "home"
        assert result.action_key == "home"

    def test_fresh_window_after_expiry(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 11_000)
        assert result.allowed
        assert gate.table.remaining(actor, "home", t0 + 11_000) == 10
        assert isinstance(gate.evaluate(actor, "/home", t0 + 15_000), Deny)

    def test_denied_attempt_does_not_extend_timer(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        expiry = gate.table.expiry(actor, "home")
        for offset in (1_000, 4_000, 9_000):
            gate.evaluate(actor, "/home", t0 + offset)
        assert gate.table.expiry(actor, "home") == expiry

    def test_remaining_rounded_up(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 9_999)
        assert isinstance(result, Deny)
        assert result.remaining == 1

    def test_zero_duration_allows_without_commit(self, gate: GateDecision, actor, t0: int) -> None:
        result = gate.evaluate(actor, "/spawn", t0)
        assert result.allowed
        assert result.committed_seconds == 0
        assert gate.evaluate(actor, "/spawn", t0 + 1).allowed
        assert actor not in gate.table

    def test_other_actions_unaffected(self, gate: GateDecision, actor, other_actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        assert gate.evaluate(actor, "/warp", t0 + 1_000).allowed
        assert gate.evaluate(other_actor, "/home", t0 + 1_000).allowed

    def test_group_multiplier_applied(self, gate: GateDecision, permissions, actor, t0: int) -> None:
        permissions.grant(actor, "commandcooldown.group.vip")
        result = gate.evaluate(actor, "/home", t0)
        assert isinstance(result, Allow)
        assert result.committed_seconds == 5

    def test_arguments_ignored_by_default(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/warp shop", t0)
        result = gate.evaluate(actor, "/warp mine", t0 + 1_000)
        assert isinstance(result, Deny)
        assert result.remaining == 19

    def test_case_insensitive(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/HOME", t0)
        assert isinstance(gate.evaluate(actor, "/home", t0 + 1_000), Deny)


# ============================================================================
# Short-circuits
# ============================================================================

class TestShortCircuits:
    """Paths that allow without touching the table."""

    def test_disabled(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(enabled=False)
        for _ in range(3):
            result = gate.evaluate(actor, "/home", t0)
            assert isinstance(result, Allow)
            assert result.reason == "disabled"
        assert len(gate.table) == 0

    def test_not_a_command(self, gate: GateDecision, actor, t0: int) -> None:
        result = gate.evaluate(actor, "hello", t0)
        assert isinstance(result, Allow)
        assert result.reason == "not_a_command"

    @pytest.mark.parametrize("command", ["commandcooldown", "cc", "opoznieniekomend", "ok", "CC"])
    def test_reserved_commands_never_gated(self, make_gate, actor, t0: int, command: str) -> None:
        gate = make_gate()
        gate.rules.set_rule(command, 100)
        assert gate.evaluate(actor, f"/{command} reload", t0).reason == "excluded"
        assert gate.evaluate(actor, f"/{command} reload", t0 + 1).allowed

    def test_excluded_exact_command(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(excluded_commands=("home",))
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 1_000)
        assert isinstance(result, Allow)
        assert result.reason == "excluded"
        assert len(gate.table) == 0

    def test_excluded_prefix(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(excluded_commands=("wa*",))
        assert gate.is_excluded("warp")
        assert not gate.is_excluded("home")

    def test_excluded_world(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(excluded_worlds=("creative",))
        gate.evaluate(actor, "/home", t0, world="creative")
        assert gate.evaluate(actor, "/home", t0 + 1_000, world="creative").reason == "excluded"
        assert gate.evaluate(actor, "/home", t0 + 1_000, world="survival").reason == "ok"

    def test_global_bypass(self, gate: GateDecision, actor, t0: int) -> None:
        gate.bypass.toggle_global(actor)
        for offset in (0, 100, 200):
            result = gate.evaluate(actor, "/home", t0 + offset)
            assert result.reason == "bypass"
        assert gate.table.remaining(actor, "home", t0) == 0

    def test_action_bypass(self, gate: GateDecision, actor, t0: int) -> None:
        gate.bypass.toggle_action(actor, "home")
        gate.evaluate(actor, "/home", t0)
        assert gate.evaluate(actor, "/home", t0 + 1).reason == "bypass"
        gate.evaluate(actor, "/warp", t0)
        assert isinstance(gate.evaluate(actor, "/warp", t0 + 1), Deny)

    def test_bypass_permission(self, gate: GateDecision, permissions, actor, t0: int) -> None:
        permissions.grant(actor, "commandcooldown.bypass")
        gate.evaluate(actor, "/home", t0)
        assert gate.evaluate(actor, "/home", t0 + 1).reason == "bypass"

    def test_bypass_toggled_off_resumes_gating(self, gate: GateDecision, actor, t0: int) -> None:
        gate.bypass.toggle_global(actor)
        gate.evaluate(actor, "/home", t0)
        gate.bypass.toggle_global(actor)
        assert gate.evaluate(actor, "/home", t0 + 1).allowed
        assert isinstance(gate.evaluate(actor, "/home", t0 + 2), Deny)


# ============================================================================
# Global cooldown mode
# ============================================================================

class TestGlobalCooldown:
    """Any gated action blocks every other for global_cooldown seconds."""

    def test_blocks_other_actions(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(use_global_cooldown=True, global_cooldown=3)
        gate.evaluate(actor, "/spawn", t0)
        result = gate.evaluate(actor, "/warp", t0 + 1_000)
        assert isinstance(result, Deny)
        assert result.remaining == 2

    def test_global_window_lapses(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(use_global_cooldown=True, global_cooldown=3)
        gate.evaluate(actor, "/spawn", t0)
        assert gate.evaluate(actor, "/warp", t0 + 3_000).allowed

    def test_longer_action_cooldown_wins(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(use_global_cooldown=True, global_cooldown=3)
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 5_000)
        assert isinstance(result, Deny)
        assert result.remaining == 5

    def test_longer_global_cooldown_wins(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(use_global_cooldown=True, global_cooldown=30)
        gate.evaluate(actor, "/home", t0)
        result = gate.evaluate(actor, "/home", t0 + 15_000)
        assert isinstance(result, Deny)
        assert result.remaining == 15

    def test_global_entry_not_committed_when_mode_off(self, gate: GateDecision, actor, t0: int) -> None:
        gate.evaluate(actor, "/home", t0)
        assert gate.table.expiry(actor, GLOBAL_ACTION_KEY) is None

    def test_settings_update_applies_immediately(self, gate: GateDecision, actor, t0: int) -> None:
        gate.update_settings(GateSettings(use_global_cooldown=True, global_cooldown=3))
        gate.evaluate(actor, "/spawn", t0)
        assert isinstance(gate.evaluate(actor, "/warp", t0 + 1_000), Deny)


# ============================================================================
# Per-argument action keys
# ============================================================================

class TestSeparateArguments:
    """Cooldowns tracked per command + argument prefix."""

    def test_distinct_arguments_tracked_separately(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(separate_arguments=True, argument_depth=1)
        first = gate.evaluate(actor, "/warp shop north", t0)
        assert isinstance(first, Allow)
        assert first.action_key == "warp shop"
        assert first.committed_seconds == 60

        assert gate.evaluate(actor, "/warp mine", t0 + 1_000).allowed
        assert isinstance(gate.evaluate(actor, "/warp shop south", t0 + 1_000), Deny)

    def test_argument_key_falls_back_to_command_rule(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(separate_arguments=True, argument_depth=1)
        result = gate.evaluate(actor, "/warp mine", t0)
        assert isinstance(result, Allow)
        assert result.committed_seconds == 20

    def test_deny_reports_bare_command(self, make_gate, actor, t0: int) -> None:
        gate = make_gate(separate_arguments=True, argument_depth=1)
        gate.evaluate(actor, "/warp shop", t0)
        result = gate.evaluate(actor, "/warp shop", t0 + 1_000)
        assert isinstance(result, Deny)
        assert result.command == "warp"
        assert result.action_key == "warp shop"


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrentSubmissions:
    """Simultaneous invocations from one actor."""

    def test_only_one_of_many_parallel_attempts_passes(self, gate: GateDecision, actor, t0: int) -> None:
        results = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def attempt() -> None:
            start.wait()
            result = gate.evaluate(actor, "/home", t0)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r.allowed) == 1
        assert sum(1 for r in results if isinstance(r, Deny)) == 7
