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

"""Exception hierarchy for the cooldown engine."""


class CooldownError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(CooldownError, ValueError):
    """Malformed duration string or invalid group/rule definition.

    Raised (or returned inside a DurationResult) at configuration load time.
    The gate never sees one.
    """


class StorageError(CooldownError, OSError):
    """Persisted cooldown data could not be read or written."""
