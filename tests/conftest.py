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

"""Shared pytest fixtures for the cooldown engine tests.

Time is always passed explicitly as epoch milliseconds (``now``), so no
test depends on the wall clock.
"""

import sys
import uuid
from pathlib import Path
from typing import Callable, Dict, Hashable, Set

import pytest

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from config import CooldownConfig  # noqa: E402
from engine import CooldownEngine  # noqa: E402

T0 = 1_700_000_000_000
"""Fixed epoch-millisecond instant used as 'now' throughout the tests."""


class FakePermissions:
    """Host permission callback backed by a dict of actor -> granted nodes."""

    def __init__(self) -> None:
        self.granted: Dict[Hashable, Set[str]] = {}

    def grant(self, actor: Hashable, *nodes: str) -> None:
        self.granted.setdefault(actor, set()).update(nodes)

    def revoke(self, actor: Hashable, node: str) -> None:
        self.granted.get(actor, set()).discard(node)

    def __call__(self, actor: Hashable, node: str) -> bool:
        return node in self.granted.get(actor, set())


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def t0() -> int:
    return T0


@pytest.fixture
def actor() -> uuid.UUID:
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def other_actor() -> uuid.UUID:
    return uuid.UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture
def permissions() -> FakePermissions:
    return FakePermissions()


@pytest.fixture
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run in an empty directory with no engine-related env vars set."""
    monkeypatch.chdir(tmp_path)
    for key in (
        "CONFIG_DIR",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "HEALTH_CHECK_HOST",
        "HEALTH_CHECK_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


@pytest.fixture
def make_engine(
    tmp_path: Path, permissions: FakePermissions
) -> Callable[..., CooldownEngine]:
    """
    Factory building an engine rooted in tmp_path.

    Keyword arguments are CooldownConfig fields. Rule edits are written to
    tmp_path/config.yml and persisted state to tmp_path/data.yml.
    """

    def _make(**overrides) -> CooldownEngine:
        overrides.setdefault("config_path", tmp_path / "config.yml")
        overrides.setdefault("data_path", tmp_path / "data.yml")
        config = CooldownConfig(**overrides)
        return CooldownEngine(config, permission_check=permissions)

    return _make
