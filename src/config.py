# Copyright (c) 2025 Stephen Clau

# This file is part of Command Cooldown.

# Command Cooldown is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for Command Cooldown.

- config.yml holds rules, groups, exclusions and feature flags
- A missing config.yml falls back to defaults (memory-only, no rules)
- Logging and health check settings come from environment variables
- Malformed rules and groups are skipped with a warning; malformed scalar
  settings reject the whole load with ConfigurationError
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List
import os
import yaml
import structlog

try:
    from .errors import ConfigurationError
    from .gate import GateSettings
    from .rule_store import CooldownGroup, RuleSet
    from .utils.action_keys import normalize_key
    from .utils.time_format import parse_duration
except ImportError:
    from errors import ConfigurationError
    from gate import GateSettings
    from rule_store import CooldownGroup, RuleSet
    from utils.action_keys import normalize_key
    from utils.time_format import parse_duration

logger = structlog.get_logger()

CONFIG_FILE_NAME = "config.yml"
DEFAULT_DATA_FILE = "data.yml"

# Keys read by the engine. Anything else (sound, title, actionbar, ...) belongs
# to the presentation layer and is ignored here.
ENGINE_KEYS = {
    "enabled", "debug", "default-cooldown", "use-global-cooldown",
    "global-cooldown", "max-cooldown", "persistent-cooldowns",
    "separate-arguments", "argument-depth", "cooldowns",
    "excluded-commands", "excluded-worlds", "cooldown-groups", "data-file",
}


def get_config_value(
    env_var: str,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get configuration value from environment variables.

    Tries in order:
    1. Environment variable {env_var}
    2. Default value if provided
    3. Raise error if required and not found

    Args:
        env_var: Environment variable name (e.g., 'LOG_LEVEL')
        required: If True, raises ConfigurationError when value not found
        default: Default value if not found in env

    Returns:
        Configuration value from env var or default

    Raises:
        ConfigurationError: If required=True and value not found
    """
    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        logger.debug("config_value_loaded_from_default", source="default", var=env_var)
        return default

    if required:
        raise ConfigurationError(
            f"Required configuration value not found for '{env_var}'. "
            f"Checked: environment variable '{env_var}'"
        )

    return None


def _safe_int(value: Any, field_name: str, default: int) -> int:
    """
    Safely convert value to int with proper type checking.

    Args:
        value: Value to convert (can be None, int, or str)
        field_name: Field name for error messages
        default: Default value if None

    Returns:
        Converted int value

    Raises:
        ConfigurationError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ConfigurationError(f"Cannot convert {field_name} to int: bool")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Invalid integer for {field_name}: {value}")

    raise ConfigurationError(f"Cannot convert {field_name} to int: {type(value).__name__}")


def _safe_float(value: Any, field_name: str, default: float) -> float:
    """
    Safely convert value to float with proper type checking.

    Raises:
        ConfigurationError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ConfigurationError(f"Cannot convert {field_name} to float: bool")

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Invalid float for {field_name}: {value}")

    raise ConfigurationError(f"Cannot convert {field_name} to float: {type(value).__name__}")


def _safe_bool(value: Any, field_name: str, default: bool) -> bool:
    """
    Safely convert value to bool.

    Accepts YAML booleans and the strings true/false/yes/no/on/off/1/0.

    Raises:
        ConfigurationError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on", "1"):
            return True
        if lowered in ("false", "no", "off", "0"):
            return False
        raise ConfigurationError(f"Invalid boolean for {field_name}: {value}")

    raise ConfigurationError(f"Cannot convert {field_name} to bool: {type(value).__name__}")


def _safe_duration(value: Any, field_name: str, default: int) -> int:
    """Duration field (int or "5m"-style string). Raises ConfigurationError."""
    if value is None:
        return default

    result = parse_duration(value)
    if not result.ok:
        raise ConfigurationError(f"Invalid duration for {field_name}: {value!r}")
    return result.seconds


def _string_list(value: Any, field_name: str, lower: bool = True) -> List[str]:
    if value is None:
        return []

    if not isinstance(value, list):
        raise ConfigurationError(f"{field_name} must be a list, got {type(value).__name__}")

    result: List[str] = []
    for item in value:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            logger.warning("config_list_item_skipped", field=field_name, item=repr(item))
            continue
        text = str(item).strip()
        if text:
            result.append(text.lower() if lower else text)
    return result


@dataclass
class CooldownConfig:
    """Main engine configuration."""

    enabled: bool = True
    """Master switch. When False every invocation is allowed untouched."""

    debug: bool = False
    """Forces debug-level logging."""

    default_cooldown: int = 0
    """Fallback duration (seconds) for actions without a rule."""

    use_global_cooldown: bool = False
    """Block every action for global_cooldown seconds after any gated action."""

    global_cooldown: int = 3
    """Global cooldown length in seconds."""

    max_cooldown: int = 86400
    """Upper clamp for rule durations. 0 disables the clamp."""

    persistent_cooldowns: bool = False
    """Save cooldowns on shutdown/reload and restore them on startup."""

    separate_arguments: bool = False
    """Track cooldowns per argument prefix ("warp shop" vs "warp mine")."""

    argument_depth: int = 1
    """Argument tokens included in the action key when separate_arguments is on."""

    cooldowns: Dict[str, int] = field(default_factory=dict)
    """Action key (or 'prefix*') -> seconds."""

    excluded_commands: List[str] = field(default_factory=list)
    """Commands never gated. Entries ending in '*' match by prefix."""

    excluded_worlds: List[str] = field(default_factory=list)
    """Worlds/categories in which nothing is gated."""

    groups: List[CooldownGroup] = field(default_factory=list)
    """Cooldown groups in precedence order."""

    config_path: Optional[Path] = None
    """config.yml this configuration belongs to; rule edits are written here."""

    data_path: Path = field(default_factory=lambda: Path(DEFAULT_DATA_FILE))
    """Persisted cooldown state file."""

    # Logging configuration
    log_level: str = "info"
    """Logging level: debug, info, warning, error. Default: info"""

    log_format: str = "console"
    """Logging format: console or json. Default: console"""

    # Health check configuration
    health_check_host: str = "0.0.0.0"
    """Host to bind health check server to. Default: 0.0.0.0"""

    health_check_port: int = 8080
    """Port to bind health check server to. Default: 8080"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        for name in ("default_cooldown", "global_cooldown", "max_cooldown"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)}")

        if self.argument_depth < 0:
            raise ConfigurationError(f"argument_depth must be >= 0, got {self.argument_depth}")

        if not isinstance(self.data_path, Path):
            self.data_path = Path(self.data_path)

        # Validate log level
        valid_levels = {"debug", "info", "warning", "error"}
        if self.log_level.lower() not in valid_levels:
            raise ConfigurationError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )

        # Validate log format
        valid_formats = {"console", "json"}
        if self.log_format.lower() not in valid_formats:
            raise ConfigurationError(
                f"Invalid log_format '{self.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
            )

        # Validate health check port
        if not 1 <= self.health_check_port <= 65535:
            raise ConfigurationError(
                f"Invalid health_check_port: {self.health_check_port}. Must be 1-65535"
            )

    @property
    def effective_log_level(self) -> str:
        return "debug" if self.debug else self.log_level

    def rule_set(self) -> RuleSet:
        """Immutable rule snapshot for the RuleStore."""
        return RuleSet.build(
            rules=self.cooldowns,
            default_seconds=self.default_cooldown,
            groups=self.groups,
            max_seconds=self.max_cooldown,
        )

    def gate_settings(self) -> GateSettings:
        return GateSettings(
            enabled=self.enabled,
            use_global_cooldown=self.use_global_cooldown,
            global_cooldown=self.global_cooldown,
            separate_arguments=self.separate_arguments,
            argument_depth=self.argument_depth,
            excluded_commands=tuple(self.excluded_commands),
            excluded_worlds=tuple(self.excluded_worlds),
        )


def _parse_rules(section: Any, source: str) -> Dict[str, int]:
    """Parse the cooldowns section, skipping malformed entries."""
    if section is None:
        return {}

    if not isinstance(section, dict):
        raise ConfigurationError(f"cooldowns must be a mapping, got {type(section).__name__}")

    rules: Dict[str, int] = {}
    for raw_key, raw_value in section.items():
        key = normalize_key(str(raw_key))
        if not key:
            logger.warning("cooldown_rule_empty_key", file=source)
            continue

        result = parse_duration(raw_value)
        if not result.ok:
            logger.warning(
                "cooldown_rule_invalid",
                command=key,
                value=repr(raw_value),
                error=str(result.error),
                file=source,
            )
            continue

        rules[key] = result.seconds
    return rules


def _parse_group(name: str, data: Any, source: str) -> Optional[CooldownGroup]:
    """Build one group, or None (with a warning) if the definition is invalid."""
    if not isinstance(data, dict):
        logger.warning(
            "cooldown_group_not_mapping",
            group=name,
            type=type(data).__name__,
            file=source,
        )
        return None

    try:
        multiplier = _safe_float(data.get("multiplier"), f"group {name} multiplier", 1.0)

        overrides: Dict[str, int] = {}
        commands = data.get("commands") or {}
        if not isinstance(commands, dict):
            raise ConfigurationError(
                f"group {name} commands must be a mapping, got {type(commands).__name__}"
            )
        for raw_key, raw_value in commands.items():
            overrides[normalize_key(str(raw_key))] = parse_duration(raw_value).unwrap()

        return CooldownGroup(name=name, multiplier=multiplier, overrides=overrides)
    except ConfigurationError as e:
        logger.warning("cooldown_group_invalid", group=name, error=str(e), file=source)
        return None


def _parse_groups(section: Any, source: str) -> List[CooldownGroup]:
    if section is None:
        return []

    if not isinstance(section, dict):
        raise ConfigurationError(f"cooldown-groups must be a mapping, got {type(section).__name__}")

    groups: List[CooldownGroup] = []
    seen: set[str] = set()
    # YAML mapping order is the precedence order
    for raw_name, data in section.items():
        name = str(raw_name).strip().lower()
        if not name or name in seen:
            logger.warning("cooldown_group_duplicate_or_empty", group=name, file=source)
            continue
        group = _parse_group(name, data, source)
        if group is not None:
            groups.append(group)
            seen.add(name)
    return groups


def parse_config(data: Any, base_dir: Path = Path("."), source: str = "<memory>") -> CooldownConfig:
    """
    Build a CooldownConfig from a loaded YAML document.

    Args:
        data: Parsed config.yml contents (None means empty)
        base_dir: Directory relative data-file paths resolve against
        source: Name used in log messages

    Returns:
        Validated CooldownConfig

    Raises:
        ConfigurationError: If the document or a scalar setting is malformed
    """
    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: root must be a mapping, got {type(data).__name__}")

    ignored = sorted(str(k) for k in data.keys() if k not in ENGINE_KEYS)
    if ignored:
        logger.debug("config_keys_ignored", keys=ignored, file=source)

    data_file = Path(str(data.get("data-file") or DEFAULT_DATA_FILE))
    if not data_file.is_absolute():
        data_file = base_dir / data_file

    return CooldownConfig(
        enabled=_safe_bool(data.get("enabled"), "enabled", True),
        debug=_safe_bool(data.get("debug"), "debug", False),
        default_cooldown=_safe_duration(data.get("default-cooldown"), "default-cooldown", 0),
        use_global_cooldown=_safe_bool(data.get("use-global-cooldown"), "use-global-cooldown", False),
        global_cooldown=_safe_duration(data.get("global-cooldown"), "global-cooldown", 3),
        max_cooldown=_safe_duration(data.get("max-cooldown"), "max-cooldown", 86400),
        persistent_cooldowns=_safe_bool(data.get("persistent-cooldowns"), "persistent-cooldowns", False),
        separate_arguments=_safe_bool(data.get("separate-arguments"), "separate-arguments", False),
        argument_depth=_safe_int(data.get("argument-depth"), "argument-depth", 1),
        cooldowns=_parse_rules(data.get("cooldowns"), source),
        excluded_commands=_string_list(data.get("excluded-commands"), "excluded-commands"),
        excluded_worlds=_string_list(data.get("excluded-worlds"), "excluded-worlds", lower=False),
        groups=_parse_groups(data.get("cooldown-groups"), source),
        data_path=data_file,
    )


def load_config(config_dir: Optional[Path] = None) -> CooldownConfig:
    """
    Load configuration from config.yml and environment variables.

    Priority order:
    1. Environment variables (logging, health check)
    2. config.yml
    3. Hardcoded defaults

    Args:
        config_dir: Directory holding config.yml. Defaults to $CONFIG_DIR or "."

    Returns:
        Fully populated CooldownConfig

    Raises:
        ConfigurationError: If config.yml is malformed
    """
    if config_dir is None:
        config_dir = Path(get_config_value(env_var="CONFIG_DIR", default=".") or ".")

    config_path = Path(config_dir) / CONFIG_FILE_NAME

    data: Any = None
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"{config_path} is not valid YAML: {e}") from e
    else:
        logger.warning("config_file_not_found", path=str(config_path), message="Using defaults")

    config = parse_config(data, base_dir=Path(config_dir), source=str(config_path))
    config.config_path = config_path

    config.log_level = get_config_value(env_var="LOG_LEVEL", default="info") or "info"
    config.log_format = get_config_value(env_var="LOG_FORMAT", default="console") or "console"
    config.health_check_host = get_config_value(env_var="HEALTH_CHECK_HOST", default="0.0.0.0") or "0.0.0.0"
    config.health_check_port = _safe_int(
        get_config_value(env_var="HEALTH_CHECK_PORT", default="8080"),
        "health_check_port",
        8080,
    )
    # Re-run validation for the environment-sourced fields
    config.__post_init__()

    logger.info(
        "config_loaded",
        file=str(config_path),
        rules=len(config.cooldowns),
        groups=[g.name for g in config.groups],
        persistent=config.persistent_cooldowns,
    )
    return config


def save_rules(config_path: Path, rules: Dict[str, int]) -> None:
    """
    Rewrite the cooldowns section of config.yml, keeping every other key.

    Args:
        config_path: Path to config.yml (created if missing)
        rules: Complete rule mapping to store

    Raises:
        ConfigurationError: If the existing file is not a YAML mapping
        OSError: If the file cannot be written
    """
    data: Any = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"{config_path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path}: root must be a mapping")

    data["cooldowns"] = dict(sorted(rules.items()))

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)

    logger.debug("config_rules_saved", file=str(config_path), rules=len(rules))
