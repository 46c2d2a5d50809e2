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
General-purpose utilities for Command Cooldown.

Framework-agnostic helpers shared by the engine and its front ends.
"""

from .action_keys import ActionKey, Invocation, derive_action_key, normalize_key, parse_invocation
from .time_format import DurationResult, format_time, parse_duration, parse_time

__all__ = [
    # Invocation tokenizing
    "ActionKey",
    "Invocation",
    "derive_action_key",
    "normalize_key",
    "parse_invocation",
    # Durations
    "DurationResult",
    "format_time",
    "parse_duration",
    "parse_time",
]
