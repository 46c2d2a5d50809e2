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

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from bypass_registry import BYPASS_PERMISSION, BypassRegistry  # type: ignore


class TestToggles:
    """Toggled bypass flags."""

    def test_global_toggle_twice_restores_state(self, actor) -> None:
        registry = BypassRegistry()
        assert registry.toggle_global(actor) is True
        assert registry.is_bypassed(actor, "home")
        assert registry.toggle_global(actor) is False
        assert not registry.is_bypassed(actor, "home")

    def test_action_toggle_is_scoped(self, actor) -> None:
        registry = BypassRegistry()
        assert registry.toggle_action(actor, "Home") is True
        assert registry.has_action(actor, "home")
        assert registry.is_bypassed(actor, "home")
        assert not registry.is_bypassed(actor, "warp")

    def test_action_toggle_twice_restores_state(self, actor) -> None:
        registry = BypassRegistry()
        registry.toggle_action(actor, "home")
        assert registry.toggle_action(actor, "home") is False
        assert not registry.is_bypassed(actor, "home")
        assert registry.bypassed_actors() == 0

    def test_actors_independent(self, actor, other_actor) -> None:
        registry = BypassRegistry()
        registry.toggle_global(actor)
        assert not registry.is_bypassed(other_actor, "home")

    def test_evict_forgets_flags(self, actor) -> None:
        registry = BypassRegistry()
        registry.toggle_global(actor)
        registry.toggle_action(actor, "home")
        assert registry.bypassed_actors() == 1
        registry.evict(actor)
        assert not registry.has_global(actor)
        assert not registry.has_action(actor, "home")
        assert registry.bypassed_actors() == 0


class TestPermissionNodes:
    """Host-granted bypass permissions."""

    def test_global_permission(self, permissions, actor) -> None:
        registry = BypassRegistry(permission_check=permissions)
        assert not registry.is_bypassed(actor, "home")
        permissions.grant(actor, BYPASS_PERMISSION)
        assert registry.is_bypassed(actor, "home")

    def test_specific_permission(self, permissions, actor) -> None:
        registry = BypassRegistry(permission_check=permissions)
        permissions.grant(actor, "commandcooldown.bypass.specific.warp shop")
        assert registry.is_bypassed(actor, "Warp  Shop")
        assert not registry.is_bypassed(actor, "warp")

    def test_permission_does_not_count_as_toggled(self, permissions, actor) -> None:
        registry = BypassRegistry(permission_check=permissions)
        permissions.grant(actor, BYPASS_PERMISSION)
        assert not registry.has_global(actor)
        assert registry.bypassed_actors() == 0
