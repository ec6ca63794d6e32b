"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (daemon_started, exporter_listening, heartbeat, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup and goes to stderr, keeping stdout free for
the oneshot exposition dump. JSON file output via structlog remains separate
(machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from proc_mem_exporter.config import Config

_console = Console(stderr=True, highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    HEARTBEAT = "[magenta]♡[/]"
    OWNER_ADDED = "[bright_green]▲[/]"
    OWNER_EVICTED = "[bright_red]▼[/]"
    SIGNAL = "⚡"
    LISTENING = "[green]⬤[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def version_info(name: str, version: str) -> None:
    """Log version info."""
    info(f"[bold cyan]{name}[/] v{version}")


def config_summary(hostgroup: str, instance: str, interval: float) -> None:
    """Log label and cadence config."""
    info(
        f"Labels: hostgroup=[cyan]{hostgroup}[/], instance=[cyan]{instance}[/] "
        f"[dim](every {interval:g}s)[/]"
    )


def daemon_started() -> None:
    """Log daemon startup complete."""
    info("Daemon started", Icon.OK)


def daemon_stopping() -> None:
    """Log daemon shutdown initiated."""
    info("Daemon stopping...", Icon.WAIT)


def daemon_stopped() -> None:
    """Log daemon shutdown complete."""
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def exporter_listening(url: str) -> None:
    """Log metrics endpoint ready."""
    info(f"Listening on [cyan]{url}[/]", Icon.LISTENING)


def exporter_bind_failed(address: str, error_msg: str) -> None:
    """Log metrics endpoint bind failure. Sampling continues without it."""
    error(f"Cannot listen on [bold]{address}[/]: {error_msg}", Icon.FAIL)


def sample_failed(error_msg: str) -> None:
    """Log sample collection failed."""
    error(f"Sample failed: {error_msg}", Icon.FAIL)


def owners_changed(added: list[str], evicted: list[str]) -> None:
    """Log owners that appeared or were evicted this cycle."""
    if added:
        info(f"[cyan]{', '.join(sorted(added))}[/] now running processes", Icon.OWNER_ADDED)
    if evicted:
        info(
            f"[cyan]{', '.join(sorted(evicted))}[/] no longer running processes",
            Icon.OWNER_EVICTED,
        )


def heartbeat(
    cycles: int,
    failures: int,
    owners: int,
    processes: int,
    rss_mb: float,
) -> None:
    """Log periodic heartbeat stats. rss_mb is the current resident size."""
    failed = f"[red]{failures} failed[/]" if failures else "0 failed"
    info(
        f"[cyan]{owners}[/] owners, [cyan]{processes}[/] processes "
        f"[dim]({cycles} cycles, {failed}, {round(rss_mb, 1)}MB RSS)[/]",
        Icon.HEARTBEAT,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, *, to_file: bool = True) -> None:
    """Configure structlog, optionally writing JSON Lines to a rotating file.

    Console output is handled by Rich (see log functions above); structlog
    events only go to the file. With to_file False (oneshot runs, or
    system.log_to_file disabled) structlog events at WARNING and above are
    still rendered to stderr so failures are not lost.

    Args:
        config: Application config with paths
        to_file: Write structured events to config.log_path
    """
    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source("daemon"),
        structlog.processors.format_exc_info,
    ]

    if to_file and config.system.log_to_file:
        config.state_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            config.log_path,
            maxBytes=config.system.log_max_bytes,
            backupCount=config.system.log_backup_count,
            encoding="utf-8",
        )
        handler.setLevel(logging.INFO)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=pre_chain,
            )
        )
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.WARNING)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=False),
                foreign_pre_chain=pre_chain,
            )
        )
    stdlib_root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

