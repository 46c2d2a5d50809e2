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
Invocation tokenizer.

Turns a raw invocation such as "/home base" into the action key the
engine tracks cooldowns under.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

COMMAND_MARKER = "/"


@dataclass(frozen=True)
class Invocation:
    """A parsed invocation: bare command name plus argument tokens."""

    command: str
    arguments: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ActionKey:
    """Normalized identifier a cooldown is tracked under."""

    command: str
    """Bare command name, lower-cased."""

    key: str
    """Command plus up to N argument tokens, space-joined and lower-cased."""

    @property
    def has_arguments(self) -> bool:
        return self.key != self.command


def normalize_key(key: str) -> str:
    """Lower-case and collapse whitespace so "Home  Base" == "home base"."""
    return " ".join(key.lower().split())


def parse_invocation(raw: str, marker: str = COMMAND_MARKER) -> Optional[Invocation]:
    """
    Strip the leading marker and split the invocation into tokens.

    Returns:
        Invocation, or None if raw is not a marker-prefixed command
    """
    if not raw or len(raw) <= len(marker) or not raw.startswith(marker):
        return None

    tokens = raw[len(marker):].split()
    if not tokens:
        return None

    return Invocation(
        command=tokens[0].lower(),
        arguments=tuple(t.lower() for t in tokens[1:]),
    )


def derive_action_key(
    raw: str,
    separate_arguments: bool = False,
    argument_depth: int = 1,
    marker: str = COMMAND_MARKER,
) -> Optional[ActionKey]:
    """
    Derive the action key for a raw invocation.

    Args:
        raw: Raw invocation text, e.g. "/warp shop north"
        separate_arguments: Track cooldowns per argument prefix
        argument_depth: Number of argument tokens included when separate_arguments is on
        marker: Leading marker that identifies a command

    Returns:
        ActionKey, or None if raw is not a command invocation
    """
    invocation = parse_invocation(raw, marker=marker)
    if invocation is None:
        return None

    if not separate_arguments or argument_depth <= 0:
        return ActionKey(command=invocation.command, key=invocation.command)

    tokens = (invocation.command,) + invocation.arguments[:argument_depth]
    return ActionKey(command=invocation.command, key=" ".join(tokens))
