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
Duration parsing and formatting (framework-agnostic).

Accepted inputs: "30", "30s", "5m", "1h30m", "1d12h30m45s".
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

try:
    from ..errors import ConfigurationError  # type: ignore
except ImportError:
    from errors import ConfigurationError

TIME_PATTERN = re.compile(
    r"^(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$",
    re.IGNORECASE | re.ASCII,
)

INTEGER_PATTERN = re.compile(r"^[+-]?\d+$", re.ASCII)

SECONDS_PER_UNIT = (86400, 3600, 60, 1)


@dataclass(frozen=True)
class DurationResult:
    """Outcome of parsing a duration: seconds on success, error otherwise."""

    seconds: int = 0
    error: Optional[ConfigurationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> int:
        """Return seconds or raise the stored ConfigurationError."""
        if self.error is not None:
            raise self.error
        return self.seconds


def _failure(value: Any, reason: str) -> DurationResult:
    return DurationResult(error=ConfigurationError(f"Invalid duration {value!r}: {reason}"))


def parse_duration(value: Any) -> DurationResult:
    """
    Parse a configured duration into whole seconds.

    Args:
        value: int seconds or a duration string

    Returns:
        DurationResult with seconds >= 0, or with error set. Never raises.
    """
    # bool is an int subclass; "cooldown: yes" is a config mistake
    if value is None or isinstance(value, bool):
        return _failure(value, "expected a number or duration string")

    if isinstance(value, int):
        if value < 0:
            return _failure(value, "must not be negative")
        return DurationResult(seconds=value)

    if not isinstance(value, str):
        return _failure(value, f"unsupported type {type(value).__name__}")

    text = value.strip().lower()
    if not text:
        return _failure(value, "empty")

    if INTEGER_PATTERN.match(text):
        seconds = int(text)
        if seconds < 0:
            return _failure(value, "must not be negative")
        return DurationResult(seconds=seconds)

    match = TIME_PATTERN.match(text)
    if match is None or not any(match.groups()):
        return _failure(value, "expected format like 30, 30s, 5m, 1h30m or 1d12h")

    seconds = sum(
        int(group) * unit
        for group, unit in zip(match.groups(), SECONDS_PER_UNIT)
        if group is not None
    )
    return DurationResult(seconds=seconds)


def parse_time(value: Any) -> int:
    """Lenient variant for admin input: malformed values become 0."""
    result = parse_duration(value)
    return result.seconds if result.ok else 0


def format_time(seconds: int) -> str:
    """
    Format seconds as a compact duration string.

    Examples:
        format_time(0) == "0s"
        format_time(90) == "1m30s"
        format_time(90061) == "1d1h1m1s"
    """
    if seconds <= 0:
        return "0s"

    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return "".join(parts)
