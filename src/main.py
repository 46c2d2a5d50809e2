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
Command Cooldown - Main Entry Point

Hosts the cooldown engine as a long-running service:
- config.yml loaded at startup (CONFIG_DIR)
- Persisted cooldowns restored on startup and saved on shutdown
- Health/stats HTTP endpoint for container orchestration
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional, Any

import structlog

# Import helpers with support for package vs. flat layout
try:
    # Package-style imports (python -m src.main)
    from .config import load_config  # type: ignore
    from .engine import CooldownEngine  # type: ignore
    from .health import HealthCheckServer  # type: ignore
except ImportError:
    # Flat layout (tests and direct execution)
    from config import load_config  # type: ignore
    from engine import CooldownEngine  # type: ignore
    from health import HealthCheckServer  # type: ignore

logger = structlog.get_logger()


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("logging_configured", level=log_level, format=log_format)


class Application:
    """Service wrapper: owns the engine and the health server."""

    def __init__(self) -> None:
        """Initialize application components."""
        self.config: Any = None
        self.engine: Optional[CooldownEngine] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()

    async def setup(self) -> None:
        """Load configuration, build the engine and restore persisted state."""
        logger.info("application_starting")

        try:
            self.config = load_config()
        except Exception as e:
            logger.error("config_load_failed", error=str(e))
            raise

        assert self.config is not None

        setup_logging(self.config.effective_log_level, self.config.log_format)

        self.engine = CooldownEngine(self.config, config_loader=load_config)
        restored = self.engine.restore()

        self.health_server = HealthCheckServer(
            host=self.config.health_check_host,
            port=self.config.health_check_port,
            engine=self.engine,
        )

        logger.info(
            "application_configured",
            health_port=self.config.health_check_port,
            rules=len(self.config.cooldowns),
            restored_cooldowns=restored,
        )

    async def start(self) -> None:
        """Start all application components."""
        assert self.config is not None, "Config not loaded"
        assert self.health_server is not None, "Health server not initialized"

        await self.health_server.start()

        logger.info(
            "application_running",
            url=f"http://{self.config.health_check_host}:"
            f"{self.config.health_check_port}/health",
        )

    def reload(self) -> None:
        """Reload config.yml into the running engine."""
        if self.engine is None:
            logger.warning("reload_before_setup")
            return

        try:
            self.config = self.engine.reload()
        except Exception as e:
            logger.error("reload_failed", error=str(e))

    async def stop(self) -> None:
        """Gracefully stop all components."""
        logger.info("application_stopping")

        # Engine state first: persistence must not depend on the HTTP side
        if self.engine is not None:
            try:
                self.engine.persist()
            except Exception as e:
                logger.error("cooldown_persist_failed", error=str(e))

        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.error("health_server_stop_failed", error=str(e))

            logger.debug("health_server_stopped")

        logger.info("application_stopped")

    async def run(self) -> None:
        """Main application run loop."""
        try:
            await self.setup()
            await self.start()
            await self.shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info("received_keyboard_interrupt")
        except Exception as e:
            logger.error("application_error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()


async def main() -> None:
    """Main async entry point."""
    app = Application()

    # Signal handlers for graceful shutdown and reload
    def _signal_handler(signum: int, frame: Any) -> None:
        logger.info("received_signal", signal=signal.Signals(signum).name)
        app.shutdown_event.set()

    def _reload_handler(signum: int, frame: Any) -> None:
        logger.info("received_signal", signal=signal.Signals(signum).name)
        app.reload()

    # Only register signals on real OS (not always available on Windows/threads)
    try:
        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)
        signal.signal(signal.SIGHUP, _reload_handler)
    except (AttributeError, ValueError):
        pass

    try:
        await app.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
        sys.exit(0)


if __name__ == "__main__":
    run()
