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
Cooldown persistence across restarts.

Layout of the data file (YAML):

    cooldowns:
      <actor uuid>:
        <action key>: <expiry, epoch milliseconds>

Only entries still in the future are written, and lapsed entries are dropped
again on load, so the file never grows past the set of live cooldowns.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Mapping, Optional

import structlog
import yaml

try:
    from .cooldown_table import CooldownTable, now_millis
    from .errors import StorageError
except ImportError:
    from cooldown_table import CooldownTable, now_millis
    from errors import StorageError

logger = structlog.get_logger()

ROOT_KEY = "cooldowns"

ActorParser = Callable[[str], Hashable]


class PersistenceCodec:
    """Serializes CooldownTable contents to and from bytes."""

    def __init__(self, actor_parser: ActorParser = uuid.UUID) -> None:
        """
        Initialize codec.

        Args:
            actor_parser: Converts a stored actor id back to an actor identity.
                Raises ValueError for ids it rejects.
        """
        self.actor_parser = actor_parser

    def actor_id(self, actor: Hashable) -> Optional[str]:
        """
        Stored id for actor, or None if actor_parser cannot read it back as
        the same identity (it would be dropped or re-keyed on load).
        """
        actor_id = str(actor)
        try:
            parsed = self.actor_parser(actor_id)
        except (ValueError, TypeError):
            return None
        return actor_id if parsed == actor else None

    def encode(self, entries: Mapping[Hashable, Mapping[str, int]], now: Optional[int] = None) -> bytes:
        current = now_millis() if now is None else now
        document: Dict[str, Dict[str, Dict[str, int]]] = {ROOT_KEY: {}}

        for actor, cooldowns in entries.items():
            live = {key: int(expiry) for key, expiry in cooldowns.items() if expiry > current}
            if not live:
                continue
            actor_id = self.actor_id(actor)
            if actor_id is None:
                logger.warning("persisted_actor_unsupported", actor=str(actor), entries=len(live))
                continue
            document[ROOT_KEY][actor_id] = live

        return yaml.safe_dump(document, allow_unicode=True, sort_keys=True).encode("utf-8")

    def decode(self, payload: Optional[bytes], now: Optional[int] = None) -> Dict[Hashable, Dict[str, int]]:
        """
        Parse persisted bytes.

        Returns:
            {actor: {action_key: expiry}} with lapsed or malformed entries dropped

        Raises:
            StorageError: If payload is not valid YAML or has the wrong shape
        """
        if not payload or not payload.strip():
            return {}

        current = now_millis() if now is None else now

        try:
            data: Any = yaml.safe_load(payload)
        except yaml.YAMLError as e:
            raise StorageError(f"Persisted cooldowns are not valid YAML: {e}") from e

        if data is None:
            return {}

        if not isinstance(data, dict):
            raise StorageError(f"Persisted cooldowns root must be a mapping, got {type(data).__name__}")

        section = data.get(ROOT_KEY)
        if section is None:
            return {}

        if not isinstance(section, dict):
            raise StorageError(f"'{ROOT_KEY}' must be a mapping, got {type(section).__name__}")

        result: Dict[Hashable, Dict[str, int]] = {}
        for raw_actor, cooldowns in section.items():
            try:
                actor = self.actor_parser(str(raw_actor))
            except (ValueError, TypeError):
                logger.warning("persisted_actor_invalid", actor=str(raw_actor))
                continue

            if not isinstance(cooldowns, dict):
                logger.warning(
                    "persisted_cooldowns_not_mapping",
                    actor=str(raw_actor),
                    type=type(cooldowns).__name__,
                )
                continue

            live: Dict[str, int] = {}
            for action_key, expiry in cooldowns.items():
                if isinstance(expiry, bool) or not isinstance(expiry, int):
                    logger.warning(
                        "persisted_expiry_invalid",
                        actor=str(raw_actor),
                        action=str(action_key),
                        expiry=repr(expiry),
                    )
                    continue
                if expiry > current:
                    live[str(action_key)] = expiry

            if live:
                result[actor] = live

        return result

    def save(self, table: CooldownTable, now: Optional[int] = None) -> bytes:
        """Serialize every live entry of table."""
        current = now_millis() if now is None else now
        return self.encode(table.snapshot(current), current)

    def load(self, payload: Optional[bytes], now: Optional[int] = None) -> CooldownTable:
        """Build a fresh table from persisted bytes."""
        current = now_millis() if now is None else now
        table = CooldownTable()
        table.restore(self.decode(payload, current), current)
        return table


class CooldownStore:
    """File-backed persistence for a CooldownTable."""

    def __init__(self, path: Path, codec: Optional[PersistenceCodec] = None) -> None:
        self.path = Path(path)
        self.codec = codec or PersistenceCodec()

    def load_into(self, table: CooldownTable, now: Optional[int] = None) -> int:
        """
        Restore persisted cooldowns into table.

        A missing, unreadable or corrupt file counts as empty state; the
        failure is logged and never propagates.

        Returns:
            Number of entries restored
        """
        if not self.path.exists():
            logger.debug("cooldown_data_file_missing", file=str(self.path))
            return 0

        current = now_millis() if now is None else now

        try:
            entries = self.codec.decode(self.path.read_bytes(), current)
        except (StorageError, OSError) as exc:
            logger.error(
                "failed_to_load_cooldowns",
                error=str(exc),
                file=str(self.path),
            )
            return 0

        restored = table.restore(entries, current)
        logger.info("cooldowns_restored", count=restored, actors=len(entries), file=str(self.path))
        return restored

    def save_from(self, table: CooldownTable, now: Optional[int] = None) -> int:
        """
        Write live cooldowns of table to disk atomically.

        Returns:
            Number of entries written, or -1 if the write failed
        """
        current = now_millis() if now is None else now
        entries = table.snapshot(current)
        count = sum(
            len(cooldowns) for actor, cooldowns in entries.items()
            if self.codec.actor_id(actor) is not None
        )

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(self.codec.encode(entries, current))
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error(
                "failed_to_save_cooldowns",
                error=str(exc),
                file=str(self.path),
            )
            return -1

        logger.info("cooldowns_saved", count=count, actors=len(entries), file=str(self.path))
        return count
